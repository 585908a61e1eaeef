from celery import Celery
from celery.schedules import crontab

from docindex.config import settings

celery = Celery(
    "docindex",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "embed-pending-nightly": {
            "task": "docindex.workers.embedding_tasks.embed_all_pending",
            "schedule": crontab(hour=3, minute=0),  # 3 AM UTC
        },
    },
)

celery.autodiscover_tasks(["docindex.workers"], related_name="embedding_tasks")
