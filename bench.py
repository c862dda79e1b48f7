import argparse
import asyncio
import os
import random
import sys
import time
from dataclasses import dataclass
from statistics import mean, median
from typing import Dict, List, Optional

import httpx


DEFAULT_URL = "http://localhost:8000/api/layout/compute"

# Common photo shapes: landscape, portrait, square, panorama
ASPECTS = [(3, 2), (2, 3), (4, 3), (3, 4), (1, 1), (16, 9), (5, 2)]


@dataclass
class RequestResult:
    ok: bool
    status_code: int
    latency_s: float
    row_count: Optional[int]
    error: Optional[str]


def random_frames(rng: random.Random, count: int) -> List[Dict]:
    frames = []
    for i in range(count):
        aw, ah = rng.choice(ASPECTS)
        scale = rng.randint(100, 800)
        frames.append({"width": aw * scale, "height": ah * scale, "payload": {"title": f"frame {i}"}})
    return frames


async def send_request(client: httpx.AsyncClient, url: str, body: Dict) -> RequestResult:
    start = time.perf_counter()
    try:
        resp = await client.post(url, json=body, timeout=None)
        latency = time.perf_counter() - start
        row_count: Optional[int] = None
        if resp.is_success:
            row_count = resp.json().get("row_count")
        return RequestResult(ok=resp.is_success, status_code=resp.status_code, latency_s=latency, row_count=row_count, error=None if resp.is_success else resp.text)
    except httpx.HTTPError as e:
        latency = time.perf_counter() - start
        return RequestResult(ok=False, status_code=0, latency_s=latency, row_count=None, error=str(e))


async def worker(client: httpx.AsyncClient, url: str, bodies: List[Dict], jobs: asyncio.Queue, results: asyncio.Queue):
    while True:
        index = await jobs.get()
        res = await send_request(client, url, bodies[index % len(bodies)])
        await results.put(res)
        jobs.task_done()


def percentile(values: List[float], p: float) -> float:
    if not values:
        return 0.0
    values_sorted = sorted(values)
    k = (len(values_sorted) - 1) * (p / 100.0)
    f = int(k)
    c = min(f + 1, len(values_sorted) - 1)
    if f == c:
        return values_sorted[int(k)]
    d0 = values_sorted[f] * (c - k)
    d1 = values_sorted[c] * (k - f)
    return d0 + d1


def print_summary(results: List[RequestResult], wall_s: float):
    total = len(results)
    ok = sum(1 for r in results if r.ok)
    latencies = [r.latency_s for r in results]
    print("=== Benchmark Summary ===")
    print(f"Requests: total={total}, success={ok}, errors={total - ok}")
    if wall_s > 0:
        print(f"Throughput: {total / wall_s:.2f} req/s")
    if latencies:
        print("Latency (s):")
        print(f"  mean={mean(latencies):.3f}  median={median(latencies):.3f}  p90={percentile(latencies,90):.3f}  p95={percentile(latencies,95):.3f}  p99={percentile(latencies,99):.3f}")
    errors = [r.error for r in results if r.error]
    if errors:
        print(f"First error: {errors[0][:200]}")


async def run_benchmark(
    url: str,
    total_requests: int,
    concurrency: int,
    frames_per_request: int,
    container_width: int,
    max_row_height: int,
    spacing: int,
    seed: int,
):
    rng = random.Random(seed)
    # A small pool of distinct bodies keeps generation cost out of the timings
    bodies = [
        {
            "frames": random_frames(rng, frames_per_request),
            "container_width": container_width,
            "max_row_height": max_row_height,
            "spacing": spacing,
        }
        for _ in range(min(total_requests, 16))
    ]

    limits = httpx.Limits(max_connections=concurrency, max_keepalive_connections=concurrency)
    async with httpx.AsyncClient(limits=limits, timeout=httpx.Timeout(None)) as client:
        jobs_q: asyncio.Queue = asyncio.Queue()
        results_q: asyncio.Queue = asyncio.Queue()
        for i in range(total_requests):
            jobs_q.put_nowait(i)

        workers = [asyncio.create_task(worker(client, url, bodies, jobs_q, results_q)) for _ in range(concurrency)]

        start_wall = time.perf_counter()
        await jobs_q.join()
        wall_elapsed = time.perf_counter() - start_wall

        for w in workers:
            w.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        results: List[RequestResult] = []
        while not results_q.empty():
            results.append(results_q.get_nowait())

    print_summary(results, wall_elapsed)


def parse_args(argv: List[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Concurrent benchmark for the justified layout API")
    p.add_argument("--url", default=os.environ.get("BENCH_URL", DEFAULT_URL), help="Layout endpoint URL")
    p.add_argument("--requests", type=int, default=100, help="Total number of requests")
    p.add_argument("--concurrency", type=int, default=10, help="Concurrent workers")
    p.add_argument("--frames", type=int, default=200, help="Frames per request")
    p.add_argument("--container-width", type=int, default=1200)
    p.add_argument("--max-row-height", type=int, default=300)
    p.add_argument("--spacing", type=int, default=8)
    p.add_argument("--seed", type=int, default=0, help="Seed for frame generation")
    return p.parse_args(argv)


def main(argv: List[str]) -> int:
    args = parse_args(argv)
    if args.requests < 1 or args.concurrency < 1 or args.frames < 1:
        print("--requests, --concurrency and --frames must be >= 1", file=sys.stderr)
        return 2
    asyncio.run(
        run_benchmark(
            url=args.url,
            total_requests=args.requests,
            concurrency=args.concurrency,
            frames_per_request=args.frames,
            container_width=args.container_width,
            max_row_height=args.max_row_height,
            spacing=args.spacing,
            seed=args.seed,
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
