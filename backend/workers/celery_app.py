"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "shoplens",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.analysis"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.analysis.*": {"queue": "analysis"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Analysis supervision ────────────────────────────────────
        "fail-stale-analyses-5m": {
            "task": "workers.analysis.fail_stale_analyses",
            "schedule": crontab(minute="*/5"),
            "options": {"queue": "analysis"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
