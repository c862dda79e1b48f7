import platform
from typing import Any, Dict

from celery import Celery

from config import AppSettings
from jobs import redis_url


settings = AppSettings()


def _worker_pool_options() -> Dict[str, Any]:
    """Pick the worker pool: explicit settings win, else solo on Windows and prefork elsewhere"""
    if settings.celery_worker_pool:
        options: Dict[str, Any] = {'worker_pool': settings.celery_worker_pool}
    elif platform.system() == 'Windows':
        options = {'worker_pool': 'solo', 'worker_concurrency': 1}
    else:
        options = {'worker_pool': 'prefork', 'worker_concurrency': 4}
    if settings.celery_worker_concurrency:
        options['worker_concurrency'] = settings.celery_worker_concurrency
    return options


celery_app = Celery('gallery_worker', broker=redis_url(settings), backend=redis_url(settings), include=['tasks'])
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Job state lives in the job store; the result backend only needs to outlive it
    result_expires=settings.job_ttl_seconds,
    **_worker_pool_options(),
)
