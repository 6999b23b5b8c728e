from celery import Celery
from core.config import settings

# Use Redis for production/development
broker_url = settings.REDIS_URL
backend_url = settings.REDIS_URL

# Create Celery app
celery_app = Celery(
    "lawry_payments",
    broker=broker_url,
    backend=backend_url,
    include=["tasks.email_tasks", "tasks.payment_tasks"]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    task_always_eager=False,
    task_eager_propagates=False,
    beat_schedule={
        "expire-stale-payments": {
            "task": "tasks.payment_tasks.expire_stale_payments_task",
            "schedule": float(settings.PAYMENT_SWEEP_INTERVAL_SECONDS),
        },
    },
)
