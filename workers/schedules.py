"""Celery beat schedules for periodic tasks."""

from teams_proxy.config import settings

# Schedule definitions
# These are imported into celery_app.py

SCHEDULES = {
    # Fan out one stats task per team
    "collect-team-stats": {
        "task": "workers.tasks.stats.collect_all_team_stats",
        "schedule": float(settings.stats_collection_interval_seconds),
        "options": {"queue": "scheduling"},
    },
}


def get_schedules():
    """Get all schedules for Celery beat."""
    return SCHEDULES
