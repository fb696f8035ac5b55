"""
Celery workers for sync jobs.
"""

from dealsync.workers.celery_app import celery_app

__all__ = ["celery_app"]
