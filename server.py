"""
Justified gallery API.

Computes justified row layouts synchronously and renders placeholder previews
of them in a Celery worker. Render jobs are tracked in Redis (see ``jobs``).
"""

import asyncio
import hashlib
import json
import logging
import os
import time
import uuid
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Any, Deque, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from pydantic import BaseModel, Field

from celery_app import celery_app
from config import AppSettings
from jobs import JobStatus, JobStore, RenderJob, count_active
from layout_engine import Frame, Layout, LayoutError, compute_layout, layout_width
from placement import place_layout
from renderer import OutputFormat, PreviewConfig

settings = AppSettings()


def configure_logging(settings: AppSettings) -> logging.Logger:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if settings.log_to_file:
        handlers.append(RotatingFileHandler(
            settings.log_file_path,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        ))
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )
    return logging.getLogger("gallery.api")


logger = configure_logging(settings)

OUTPUT_DIR = settings.output_dir
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
MAX_FRAMES = settings.max_frames
PREVIEW_PREFIX = "gallery_"
MEDIA_TYPES = {
    OutputFormat.PNG.value: "image/png",
    OutputFormat.JPEG.value: "image/jpeg",
    OutputFormat.WEBP.value: "image/webp",
}

REQUESTS = Counter('gallery_http_requests_total', 'HTTP requests served', ['method', 'route', 'status'])
REQUEST_SECONDS = Histogram('gallery_http_request_seconds', 'HTTP request latency (seconds)', ['method', 'route'])
LAYOUT_FRAMES = Histogram(
    'gallery_layout_frames',
    'Number of frames per computed layout',
    buckets=(1, 10, 50, 100, 500, 1000, 5000),
)
LAYOUT_ERRORS = Counter('gallery_layout_errors_total', 'Rejected layout requests', ['error'])
RENDER_JOBS_ACTIVE = Gauge('gallery_render_jobs_active', 'Render jobs pending or processing')


class RateLimiter:
    """Sliding-window request counter per client address"""

    def __init__(self, limit: int, window_seconds: float):
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def allow(self, client: str) -> bool:
        now = time.monotonic()
        hits = self._hits[client]
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if len(hits) >= self.limit:
            return False
        hits.append(now)
        return True


rate_limiter = RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)
job_store: Optional[JobStore] = None


def _build_store() -> JobStore:
    return JobStore.from_settings(settings)


def get_store() -> JobStore:
    global job_store
    if job_store is None:
        job_store = _build_store()
    return job_store


async def remove_orphaned_previews(store: JobStore) -> int:
    """Delete rendered previews whose job record has expired or been removed."""
    removed = 0
    for path in OUTPUT_DIR.glob(f"{PREVIEW_PREFIX}*"):
        if not await store.exists(path.stem[len(PREVIEW_PREFIX):]):
            path.unlink(missing_ok=True)
            removed += 1
    return removed


async def cleanup_pass(store: JobStore) -> int:
    try:
        removed = await remove_orphaned_previews(store)
    except Exception:
        logger.exception("Preview cleanup pass failed")
        return 0
    if removed:
        logger.info(f"Removed {removed} orphaned previews")
    return removed


async def _cleanup_loop(store: JobStore) -> None:
    while True:
        await asyncio.sleep(settings.cleanup_interval_seconds)
        await cleanup_pass(store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global job_store
    job_store = _build_store()
    app.state.cleanup_task = asyncio.create_task(_cleanup_loop(job_store))
    try:
        yield
    finally:
        app.state.cleanup_task.cancel()
        try:
            await app.state.cleanup_task
        except asyncio.CancelledError:
            pass
        await job_store.close()


app = FastAPI(
    title=settings.app_name,
    description="Compute justified gallery layouts and render previews",
    version=settings.app_version,
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


class FrameIn(BaseModel):
    # Geometry is checked by the layout engine so the caller gets its error
    width: float
    height: float
    payload: Any = None


class FrameOut(BaseModel):
    width: int
    height: int
    payload: Any = None


class LayoutRequest(BaseModel):
    frames: List[FrameIn] = Field(default_factory=list)
    container_width: int = Field(default=settings.default_container_width, ge=1, le=settings.max_container_width)
    max_row_height: int = Field(default=settings.default_max_row_height, ge=1, le=settings.max_row_height_limit)
    spacing: int = Field(default=settings.default_spacing, ge=0, le=1000)


class LayoutResponse(BaseModel):
    container_width: int
    spacing: int
    frame_count: int
    row_count: int
    row_widths: List[int]
    rows: List[List[FrameOut]]


class PlaceRequest(LayoutRequest):
    row_gap: int = Field(default=0, ge=0, le=1000)


class PlacementOut(BaseModel):
    x: int
    y: int
    width: int
    height: int
    row: int
    column: int
    payload: Any = None


class PlaceResponse(BaseModel):
    width: int
    height: int
    row_count: int
    placements: List[PlacementOut]


class RenderRequest(PlaceRequest, PreviewConfig):
    """Layout parameters plus the preview options the worker renders with"""


class RenderAccepted(BaseModel):
    job_id: str
    status: JobStatus
    message: str


def run_layout(request: LayoutRequest) -> Layout:
    """Run the layout engine for a request, mapping engine errors to HTTP 400"""
    if len(request.frames) > MAX_FRAMES:
        raise HTTPException(status_code=400, detail=f"Maximum {MAX_FRAMES} frames allowed")
    frames = [Frame(width=f.width, height=f.height, payload=f.payload) for f in request.frames]
    try:
        layout = compute_layout(frames, request.container_width, request.max_row_height, request.spacing)
    except LayoutError as e:
        LAYOUT_ERRORS.labels(error=type(e).__name__).inc()
        logger.warning(f"Layout rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    LAYOUT_FRAMES.observe(len(frames))
    return layout


async def _require_job(store: JobStore, job_id: str) -> RenderJob:
    job = await store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "endpoints": {
            "compute_layout": "/api/layout/compute",
            "place_layout": "/api/layout/place",
            "render_gallery": "/api/gallery/render",
            "get_status": "/api/gallery/status/{job_id}",
            "download": "/api/gallery/download/{job_id}",
            "list_jobs": "/api/gallery/jobs",
        },
    }


@app.post("/api/layout/compute", response_model=LayoutResponse)
async def compute_layout_endpoint(request: LayoutRequest):
    """Compute justified rows for the given frames"""
    layout = run_layout(request)
    logger.info(f"Layout computed: {len(request.frames)} frames, {len(layout)} rows, container={request.container_width}px")
    return LayoutResponse(
        container_width=request.container_width,
        spacing=request.spacing,
        frame_count=sum(len(row) for row in layout),
        row_count=len(layout),
        row_widths=[layout_width(row, request.spacing) for row in layout],
        rows=[[FrameOut(width=f.width, height=f.height, payload=f.payload) for f in row] for row in layout],
    )


@app.post("/api/layout/place", response_model=PlaceResponse)
async def place_layout_endpoint(request: PlaceRequest):
    """Compute justified rows and return absolute frame positions"""
    placed = place_layout(run_layout(request), request.container_width, request.spacing, request.row_gap)
    return PlaceResponse(
        width=placed.width,
        height=placed.height,
        row_count=placed.row_count,
        placements=[PlacementOut(**vars(p)) for p in placed.placements],
    )


@app.post("/api/gallery/render", response_model=RenderAccepted)
async def render_gallery(request: RenderRequest, store: JobStore = Depends(get_store)):
    """Queue a preview render. Geometry is validated here so bad input never becomes a job."""
    if not request.frames:
        raise HTTPException(status_code=400, detail="At least 1 frame required")
    layout = run_layout(request)

    job = RenderJob(job_id=str(uuid.uuid4()), frame_count=len(request.frames), row_count=len(layout))
    await store.save(job)
    celery_app.send_task("tasks.render_gallery_task", args=[job.job_id, request.model_dump(mode="json")])
    logger.info(f"Render job {job.job_id} queued: {job.frame_count} frames in {job.row_count} rows as {request.output_format.value}")

    return RenderAccepted(job_id=job.job_id, status=job.status, message="Gallery rendering started")


@app.get("/api/gallery/status/{job_id}", response_model=RenderJob)
async def get_status(job_id: str, store: JobStore = Depends(get_store)):
    return await _require_job(store, job_id)


@app.get("/api/gallery/download/{job_id}")
async def download_gallery(job_id: str, store: JobStore = Depends(get_store)):
    """Serve a finished preview"""
    job = await _require_job(store, job_id)
    if job.status != JobStatus.COMPLETED or not job.output_file:
        raise HTTPException(status_code=400, detail=f"Preview not ready (status: {job.status.value})")

    path = OUTPUT_DIR / job.output_file
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Output file not found")

    # Previews are immutable per job, so job id and size identify the content
    etag = hashlib.md5(f"{job_id}-{path.stat().st_size}".encode()).hexdigest()  # nosec - cache tag only
    return FileResponse(
        path=path,
        media_type=MEDIA_TYPES.get(path.suffix.lstrip('.').lower(), "application/octet-stream"),
        filename=job.output_file,
        headers={"ETag": f'W/"{etag}"', "Cache-Control": "private, max-age=31536000, immutable"},
    )


@app.get("/api/gallery/jobs", response_model=List[RenderJob])
async def list_jobs(store: JobStore = Depends(get_store)):
    return sorted(await store.all(), key=lambda job: job.created_at)


@app.delete("/api/gallery/cleanup/{job_id}")
async def cleanup_job(job_id: str, store: JobStore = Depends(get_store)):
    """Remove a job record and its preview file"""
    job = await _require_job(store, job_id)
    if job.output_file:
        (OUTPUT_DIR / job.output_file).unlink(missing_ok=True)
    await store.delete(job_id)
    return {"message": "Job cleaned up successfully"}


@app.middleware("http")
async def observe_requests(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    client = request.client.host if request.client else "unknown"

    if not rate_limiter.allow(client):
        logger.warning(json.dumps({"event": "rate_limited", "request_id": request_id, "client": client, "path": request.url.path}))
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded. Please try again later.", "request_id": request_id},
            headers={"X-Request-ID": request_id},
        )

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Content-Type-Options"] = "nosniff"

    route = request.scope.get("route")
    route_path = route.path if route is not None else request.url.path
    REQUESTS.labels(method=request.method, route=route_path, status=response.status_code).inc()
    REQUEST_SECONDS.labels(method=request.method, route=route_path).observe(elapsed)
    logger.info(json.dumps({
        "event": "request",
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status": response.status_code,
        "duration_ms": round(elapsed * 1000, 2),
        "client": client,
    }))
    return response


@app.get("/metrics")
async def metrics(store: JobStore = Depends(get_store)):
    try:
        RENDER_JOBS_ACTIVE.set(count_active(await store.all()))
    except Exception as e:
        logger.warning(f"Could not refresh job gauge: {e}")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
async def health_check(store: JobStore = Depends(get_store)):
    try:
        redis_ok = await store.ping()
    except Exception as e:
        logger.warning(f"Redis ping failed: {e}")
        redis_ok = False
    output_writable = os.access(OUTPUT_DIR, os.W_OK)
    healthy = redis_ok and output_writable
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "version": settings.app_version,
            "redis_connected": redis_ok,
            "output_dir_writable": output_writable,
        },
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
