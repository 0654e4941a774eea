import logging
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config.config import settings
from ..db.redis_client import RedisClient

logger = logging.getLogger(__name__)


class RotatorState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


def generate_pin() -> str:
    """Uniformly random 4-digit PIN between 1000 and 9999."""
    return str(1000 + secrets.randbelow(9000))


class CredentialRotator:
    """
    Issues and rotates the short-lived PIN of a unit's active session.

    The rotation schedule is a job in the shared APScheduler instance with the id
    `pin_rotation:{unit_id}`; a unit is RUNNING exactly when that job exists.
    """

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        redis_client: RedisClient,
        interval_seconds: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.scheduler = scheduler
        self.redis_client = redis_client
        self.interval_seconds = interval_seconds or settings.PIN_ROTATION_SECONDS
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def job_id(unit_id: UUID) -> str:
        return f"pin_rotation:{unit_id}"

    def state(self, unit_id: UUID) -> RotatorState:
        return RotatorState.RUNNING if self.scheduler.get_job(self.job_id(unit_id)) else RotatorState.STOPPED

    async def rotate(self, unit_id: UUID, session_id: str) -> Optional[str]:
        """Generates a fresh PIN and publishes it. Stops the schedule if the session is gone."""
        pin = generate_pin()
        published = await self.redis_client.publish_pin(unit_id, session_id, pin, self._clock())
        if not published:
            logger.info(f"Session {session_id} of unit {unit_id} is no longer active; stopping its PIN rotation.")
            # A newer session of the same unit may already own the job id.
            self.stop(unit_id, session_id=session_id)
            return None
        return pin

    async def start(self, unit_id: UUID, session_id: str) -> Optional[str]:
        """
        STOPPED -> RUNNING. Publishes the first PIN immediately, then every `interval_seconds`.
        Calling it again for the same unit replaces the existing schedule.
        """
        pin = await self.rotate(unit_id, session_id)
        if pin is None:
            return None
        self.scheduler.add_job(
            self.rotate,
            "interval",
            seconds=self.interval_seconds,
            args=[unit_id, session_id],
            id=self.job_id(unit_id),
            replace_existing=True,
        )
        logger.info(f"PIN rotation started for session {session_id} (every {self.interval_seconds}s).")
        return pin

    def stop(self, unit_id: UUID, session_id: Optional[str] = None) -> bool:
        """
        RUNNING -> STOPPED. Returns False if nothing was scheduled.
        With `session_id`, the job is only removed while it still rotates that session.
        """
        if session_id is not None:
            job = self.scheduler.get_job(self.job_id(unit_id))
            if job is None or job.args[1] != session_id:
                return False
        try:
            self.scheduler.remove_job(self.job_id(unit_id))
        except JobLookupError:
            return False
        logger.info(f"PIN rotation stopped for unit {unit_id}.")
        return True
