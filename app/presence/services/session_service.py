import logging
import secrets
from typing import Callable, Optional
from uuid import UUID
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import AttendanceSession, SessionState
from ..models.redis_models import ActiveSessionRedis, Geofence, SessionPublicState
from ..tools.credential_rotator import CredentialRotator
from .errors import SessionConflictError, StorageUnavailableError, UnitNotFoundError, STORAGE_ERRORS

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id(now: datetime) -> str:
    """Creation time in epoch millis plus a random suffix, e.g. '1718000000123-9f2c41ab'."""
    return f"{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


class ExpiryCheck(BaseModel):
    state: SessionState
    session: Optional[ActiveSessionRedis] = None

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE


class SessionService:
    """
    Owns the lifecycle of attendance sessions: start, end, expiry and the public snapshot.

    Redis holds the live state of the (at most one) active session per unit; Postgres holds
    the durable session row and the unit's session history. Expiry is enforced lazily by
    `check_expiry`, which every sign-in calls first; the periodic sweep only makes it proactive.
    """
    def __init__(
        self,
        redis_client: RedisClient,
        db_client: AsyncPostgresClient,
        rotator: CredentialRotator,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.redis_client = redis_client
        self.db_client = db_client
        self.rotator = rotator
        self._clock = clock or utc_now

    async def start_session(self, unit_id: UUID, duration_minutes: float, geofence: Optional[Geofence] = None) -> SessionPublicState:
        if duration_minutes <= 0 or duration_minutes > settings.MAX_SESSION_DURATION_MINUTES:
            raise ValueError(
                f"duration_minutes must be between 0 and {settings.MAX_SESSION_DURATION_MINUTES}, got {duration_minutes}."
            )

        try:
            unit = await self.db_client.get_unit(unit_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error loading unit {unit_id} before starting a session.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while starting the session.") from e
        if not unit:
            raise UnitNotFoundError(f"Unit ({unit_id}) not found.")

        # A session that expired without anyone noticing must not block a new one.
        await self.check_expiry(unit_id)

        now = self._clock()
        session = ActiveSessionRedis(
            session_id=new_session_id(now),
            unit_id=unit_id,
            owner_id=unit.owner_id,
            start_time=now,
            end_time=now + timedelta(minutes=duration_minutes),
            geofence=geofence,
        )

        try:
            created = await self.redis_client.create_active_session(session, grace_seconds=settings.ACTIVE_SESSION_GRACE_SECONDS)
        except STORAGE_ERRORS as e:
            logger.error(f"Error claiming the active session slot of unit {unit_id}.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while starting the session.") from e
        if not created:
            logger.warning(f"Tried to start a new session for unit {unit_id} while another one is active.")
            raise SessionConflictError("This unit already has an active attendance session. Please end it first.")

        try:
            await self.db_client.add_session(AttendanceSession(
                session_id=session.session_id,
                unit_id=unit_id,
                start_time=session.start_time,
                end_time=session.end_time,
                state=SessionState.ACTIVE,
                geofence_latitude=geofence.center.latitude if geofence else None,
                geofence_longitude=geofence.center.longitude if geofence else None,
                geofence_radius_meters=geofence.radius_meters if geofence else None,
            ))
        except STORAGE_ERRORS as e:
            logger.error(f"Error persisting session {session.session_id}; releasing the active slot.", exc_info=True)
            await self._release_slot_quietly(session)
            raise StorageUnavailableError("A storage error occurred while starting the session.") from e

        try:
            await self.rotator.start(unit_id, session.session_id)
            current = await self.redis_client.get_active_session(unit_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error issuing the first PIN for session {session.session_id}; closing it.", exc_info=True)
            await self._abort_start_quietly(session)
            raise StorageUnavailableError("A storage error occurred while starting the session.") from e

        logger.info(f"Session {session.session_id} started for unit {unit_id}, ends at {session.end_time.isoformat()}.")
        return (current or session).to_public_state()

    async def end_session(self, unit_id: UUID) -> Optional[str]:
        """Closes the active session of the unit. Ending a unit with no active session is a no-op."""
        try:
            session = await self.redis_client.get_active_session(unit_id)
            if not session:
                return None
            await self._close(session, SessionState.CLOSED, self._clock())
        except STORAGE_ERRORS as e:
            logger.error(f"Error while ending the session of unit {unit_id}.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while ending the session.") from e

        logger.info(f"Session {session.session_id} of unit {unit_id} closed.")
        return session.session_id

    async def check_expiry(self, unit_id: UUID, now: Optional[datetime] = None) -> ExpiryCheck:
        now = now or self._clock()
        try:
            session = await self.redis_client.get_active_session(unit_id)
            if not session:
                return ExpiryCheck(state=SessionState.INACTIVE)
            if now > session.end_time:
                await self._close(session, SessionState.EXPIRED, now)
                logger.info(f"Session {session.session_id} of unit {unit_id} expired at {session.end_time.isoformat()}.")
                return ExpiryCheck(state=SessionState.EXPIRED, session=session)
        except STORAGE_ERRORS as e:
            logger.error(f"Error while checking expiry for unit {unit_id}.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while reading the session.") from e
        return ExpiryCheck(state=SessionState.ACTIVE, session=session)

    async def get_public_state(self, unit_id: UUID) -> Optional[SessionPublicState]:
        check = await self.check_expiry(unit_id)
        return check.session.to_public_state() if check.is_active else None

    async def _close(self, session: ActiveSessionRedis, state: SessionState, now: datetime):
        self.rotator.stop(session.unit_id)
        await self.redis_client.delete_active_session(session.unit_id, session.session_id)
        await self.db_client.close_session(session.session_id, state, now)

    async def _release_slot_quietly(self, session: ActiveSessionRedis):
        try:
            await self.redis_client.delete_active_session(session.unit_id, session.session_id)
        except STORAGE_ERRORS:
            # The key carries a TTL, so it disappears on its own after end_time + grace.
            logger.error(f"Could not release the active slot of unit {session.unit_id}.", exc_info=True)

    async def _abort_start_quietly(self, session: ActiveSessionRedis):
        """Undoes a start whose first PIN never reached Redis, so the same request can be retried."""
        self.rotator.stop(session.unit_id, session_id=session.session_id)
        await self._release_slot_quietly(session)
        try:
            await self.db_client.close_session(session.session_id, SessionState.CLOSED, self._clock())
        except STORAGE_ERRORS:
            logger.error(f"Could not close the aborted session {session.session_id}.", exc_info=True)
