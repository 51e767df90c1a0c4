"""
tasks/activity_tasks.py
Celery sink for the human-readable activity feed.

Producers never call this directly; they go through
shared.utils.activity.publish_activity, which only enqueues.
"""

import logging
import uuid
from typing import Optional

from celery import Task
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def sync_database_url(url: str) -> str:
    """Map the async driver in DATABASE_URL onto its synchronous counterpart."""
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


# ── Base Task with DB session ──────────────────────────────────────────────────

class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True
    _engines: dict = {}

    def get_session(self):
        """Get a synchronous SQLAlchemy session (Celery runs sync by default)."""
        sync_url = sync_database_url(settings.DATABASE_URL)
        engine = self._engines.get(sync_url)
        if engine is None:
            engine = create_engine(sync_url, pool_pre_ping=True)
            self._engines[sync_url] = engine
        return sessionmaker(bind=engine)()


@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=30)
def record_activity(
    self,
    user_id: str,
    activity_type: str,
    description: str,
    booking_id: Optional[str] = None,
):
    """Persist one activity entry. Retries on connection-level failures only."""
    from shared.models.models import ActivityLog

    db = self.get_session()
    try:
        db.add(ActivityLog(
            user_id=uuid.UUID(user_id),
            activity_type=activity_type,
            description=description,
            booking_id=uuid.UUID(booking_id) if booking_id else None,
        ))
        db.commit()
    except OperationalError as e:
        db.rollback()
        logger.warning(f"record_activity failed, retrying: {e}")
        raise self.retry(exc=e, countdown=30 * (2 ** self.request.retries))
    finally:
        db.close()
