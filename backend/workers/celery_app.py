"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "deliveryscore",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.scoring"],
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
        "workers.scoring.apply_delivery_score": {"queue": "scoring"},
        "workers.scoring.check_delivery_score_integrity": {"queue": "maintenance"},
        "workers.scoring.dispatch_integrity_checks": {"queue": "maintenance"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        "delivery-score-integrity-daily": {
            "task": "workers.scoring.dispatch_integrity_checks",
            "schedule": crontab(hour=settings.integrity_check_hour, minute=0),
            "options": {"queue": "maintenance"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
