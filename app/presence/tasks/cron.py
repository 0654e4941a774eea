import logging
from datetime import datetime, timezone
from typing import List
from uuid import UUID

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..models.db_models import SessionState
from ..services.session_service import SessionService
from ..tools.credential_rotator import CredentialRotator, RotatorState

logger = logging.getLogger(__name__)


async def expire_sessions_task(redis_client: RedisClient, db_client: AsyncPostgresClient, scheduler: AsyncIOScheduler) -> List[UUID]:
    """
    Periodically closes sessions whose end_time has passed, so clients get proactive feedback.
    Sign-ins do not depend on this task; they run the same check lazily.
    Rows whose Redis key already disappeared through its TTL are expired directly in Postgres.
    """
    rotator = CredentialRotator(scheduler=scheduler, redis_client=redis_client)
    service = SessionService(redis_client=redis_client, db_client=db_client, rotator=rotator)

    expired_units = []
    for unit_id in await redis_client.get_active_unit_ids():
        try:
            check = await service.check_expiry(unit_id)
            if check.state == SessionState.EXPIRED:
                expired_units.append(unit_id)
        except Exception as e:
            logger.error(f"Failed to check expiry for unit {unit_id}: {e}", exc_info=True)

    if expired_units:
        logger.info(f"Expired {len(expired_units)} attendance session(s).")

    try:
        stale = await db_client.expire_stale_sessions(datetime.now(timezone.utc))
        if stale:
            logger.info(f"Expired {len(stale)} stale session row(s) without a live Redis key.")
    except Exception as e:
        logger.error(f"Failed to expire stale session rows: {e}", exc_info=True)

    return expired_units


async def resume_pin_rotation(redis_client: RedisClient, scheduler: AsyncIOScheduler) -> List[UUID]:
    """
    After a restart the in-memory schedule is gone while sessions may still be active in Redis.
    Restarts PIN rotation for every such session that this process is not rotating yet.
    """
    rotator = CredentialRotator(scheduler=scheduler, redis_client=redis_client)
    resumed = []
    for unit_id in await redis_client.get_active_unit_ids():
        if rotator.state(unit_id) == RotatorState.RUNNING:
            continue
        session = await redis_client.get_active_session(unit_id)
        if session and await rotator.start(unit_id, session.session_id):
            resumed.append(unit_id)
    if resumed:
        logger.info(f"Resumed PIN rotation for {len(resumed)} active session(s).")
    return resumed
