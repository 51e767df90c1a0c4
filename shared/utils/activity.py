"""
shared/utils/activity.py
Best-effort activity feed publisher.

Called after a unit of work has committed. The entry is handed to Celery
behind a circuit breaker; when the broker is unreachable the breaker opens
and entries are dropped with a warning until it recovers. Nothing here ever
raises into the caller.
"""

import logging
from typing import Optional

from pybreaker import CircuitBreaker, CircuitBreakerError

from config.settings import settings

logger = logging.getLogger(__name__)

activity_breaker = CircuitBreaker(
    fail_max=settings.ACTIVITY_BREAKER_FAIL_MAX,
    reset_timeout=settings.ACTIVITY_BREAKER_RESET_SECONDS,
    name="activity-log",
)


def _enqueue(user_id: str, activity_type: str, description: str, booking_id: Optional[str]) -> None:
    from tasks.activity_tasks import record_activity

    record_activity.apply_async(
        kwargs={
            "user_id": user_id,
            "activity_type": activity_type,
            "description": description,
            "booking_id": booking_id,
        },
        retry=False,
    )


def publish_activity(
    actor_id,
    activity_type: str,
    description: str,
    booking_id=None,
) -> bool:
    """Returns True when the entry was handed to the broker."""
    try:
        activity_breaker.call(
            _enqueue,
            str(actor_id),
            activity_type,
            description,
            str(booking_id) if booking_id else None,
        )
        return True
    except CircuitBreakerError:
        logger.warning(f"Activity log circuit open, dropped: {activity_type} for {actor_id}")
    except Exception as e:
        logger.warning(f"Activity log publish failed ({activity_type} for {actor_id}): {e}")
    return False
