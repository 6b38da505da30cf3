from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "newshub",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={"newshub.services.ingestion.run_scheduled_ingestion": {"queue": "ingestion"}},
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=("newshub.services.ingestion",),
    beat_schedule={
        # Daily batch ingestion across all configured sources
        "scheduled-news-ingestion": {
            "task": "newshub.services.ingestion.run_scheduled_ingestion",
            "schedule": crontab(hour=settings.INGEST_SCHEDULE_HOUR, minute=0),
        },
    },
)
