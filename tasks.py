from __future__ import annotations

from datetime import datetime
from typing import Dict
import logging

from celery import shared_task

from config import AppSettings
from jobs import JobStatus, SyncJobStore
from layout_engine import compute_layout, frames_from_dicts
from placement import place_layout
from renderer import GalleryRenderer, PreviewConfig


settings = AppSettings()
logger = logging.getLogger(__name__)


def _job_store() -> SyncJobStore:
    return SyncJobStore.from_settings(settings)


@shared_task(name="tasks.render_gallery_task")
def render_gallery_task(job_id: str, request_data: Dict) -> str:
    """Lay out the frames, draw the preview and record progress on the job."""
    store = _job_store()
    try:
        store.update(job_id, status=JobStatus.PROCESSING, progress=10)

        # Layout keys in the payload are ignored by the preview model
        config = PreviewConfig.model_validate(request_data)
        container_width = request_data["container_width"]
        spacing = request_data.get("spacing", 0)

        layout = compute_layout(
            frames_from_dicts(request_data.get("frames", [])),
            container_width,
            request_data["max_row_height"],
            spacing,
        )
        placed = place_layout(layout, container_width, spacing, request_data.get("row_gap", 0))
        store.update(job_id, progress=50, row_count=len(layout))

        output_filename = f"gallery_{job_id}.{config.output_format.value}"
        settings.output_dir.mkdir(parents=True, exist_ok=True)
        GalleryRenderer(config, max_canvas_pixels=settings.max_canvas_pixels).render(
            placed, str(settings.output_dir / output_filename)
        )

        store.update(
            job_id,
            status=JobStatus.COMPLETED,
            completed_at=datetime.now(),
            output_file=output_filename,
            progress=100,
        )
        logger.info(f"Render job {job_id} completed: {output_filename}")
        return output_filename
    except Exception as exc:
        logger.error(f"Render job {job_id} failed: {exc}")
        store.update(job_id, status=JobStatus.FAILED, error_message=str(exc), progress=0)
        raise
