import logging
from typing import List, Optional
from uuid import UUID
from datetime import datetime, timezone
import redis.asyncio as redis
from redis.exceptions import WatchError

from ..models.redis_models import ActiveSessionRedis

logger = logging.getLogger(__name__)


def _active_session_key(unit_id: UUID) -> str:
    return f"active_session:{unit_id}"


class RedisClient:
    """
    Aktif yoklama oturumlarının canlı durumunu yöneten Redis istemcisi.
    Her ders (unit) için en fazla bir anahtar bulunur: `active_session:{unit_id}`.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)

    async def create_active_session(self, session: ActiveSessionRedis, grace_seconds: int = 0) -> bool:
        """
        Oturumu yalnızca ders için başka aktif oturum yoksa kaydeder (SET NX).
        Anahtar, bitiş zamanından `grace_seconds` sonra Redis tarafından da silinir.
        """
        key = _active_session_key(session.unit_id)
        remaining = (session.end_time - datetime.now(timezone.utc)).total_seconds()
        ttl = max(int(remaining) + grace_seconds, 1)
        created = await self._redis.set(key, session.model_dump_json(), nx=True, ex=ttl)
        return bool(created)

    async def get_active_session(self, unit_id: UUID) -> Optional[ActiveSessionRedis]:
        """Dersin aktif oturumunu getirir; süre kontrolü yapmaz."""
        session_json = await self._redis.get(_active_session_key(unit_id))
        return ActiveSessionRedis.model_validate_json(session_json) if session_json else None

    async def publish_pin(self, unit_id: UUID, session_id: str, pin: str, issued_at: datetime) -> bool:
        """
        Yeni PIN'i oturumun herkese açık durumuna yazar.
        Oturum bu arada bitmiş ya da yenisiyle değişmişse hiçbir şey yazmaz ve False döner.
        """
        key = _active_session_key(unit_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                session_json = await pipe.get(key)
                if not session_json:
                    return False
                session = ActiveSessionRedis.model_validate_json(session_json)
                if session.session_id != session_id:
                    return False
                session.current_pin = pin
                session.pin_issued_at = issued_at
                pipe.multi()
                pipe.set(key, session.model_dump_json(), keepttl=True)
                await pipe.execute()
                return True
            except WatchError:
                logger.warning(f"Active session of unit {unit_id} changed while publishing a PIN; skipping this rotation.")
                return False

    async def delete_active_session(self, unit_id: UUID, session_id: str) -> bool:
        """Aktif oturumu, yalnızca hala aynı oturum ise siler."""
        key = _active_session_key(unit_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                session_json = await pipe.get(key)
                if not session_json:
                    return False
                if ActiveSessionRedis.model_validate_json(session_json).session_id != session_id:
                    return False
                pipe.multi()
                pipe.delete(key)
                results = await pipe.execute()
                return bool(results[0])
            except WatchError:
                logger.warning(f"Active session of unit {unit_id} changed during delete; another writer won.")
                return False

    async def get_active_unit_ids(self) -> List[UUID]:
        """Aktif oturumu olan tüm derslerin ID'lerini döndürür (cron job için)."""
        unit_ids = []
        async for key in self._redis.scan_iter("active_session:*"):
            try:
                unit_ids.append(UUID(key.split(":", 1)[1]))
            except ValueError:
                logger.warning(f"Ignoring malformed active session key '{key}'.")
        return unit_ids
