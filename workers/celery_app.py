"""Celery application configuration."""

from celery import Celery
from celery.signals import setup_logging

from teams_proxy.config import settings
from teams_proxy.observability import configure_logging
from workers.schedules import get_schedules

# Create Celery app
app = Celery(
    "teams_proxy",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "workers.tasks.stats",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes
    task_soft_time_limit=1500,  # 25 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=86400,  # 24 hours
    task_routes={
        "workers.tasks.stats.collect_team_stats": {"queue": "stats"},
        "workers.tasks.stats.collect_all_team_stats": {"queue": "scheduling"},
    },
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = get_schedules()


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()


if __name__ == "__main__":
    app.start()
