#app/presence/api/dependencies.py
from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..tools.credential_rotator import CredentialRotator
from ..services.unit_service import UnitService
from ..services.session_service import SessionService
from ..services.ledger_service import AttendanceLedger
from ..services.sign_in_service import SignInService
from ..services.analytics_service import AnalyticsService


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """
    Uygulamanın state'inden Redis bağlantı havuzunu alır ve bir bağımlılık olarak sağlar.
    """
    return request.app.state.redis_pool


def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """
    Uygulamanın state'inden PostgreSQL bağlantı havuzunu alır ve bir bağımlılık olarak sağlar.
    """
    return request.app.state.postgres_pool


def get_scheduler(request: Request) -> AsyncIOScheduler:
    """PIN rotasyon işlerinin kaydedildiği, uygulama ömrü boyunca yaşayan zamanlayıcı."""
    return request.app.state.scheduler


def get_unit_service(postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)) -> UnitService:
    return UnitService(db_client=AsyncPostgresClient(pool=postgres_pool))


def get_ledger(postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)) -> AttendanceLedger:
    return AttendanceLedger(db_client=AsyncPostgresClient(pool=postgres_pool))


def get_session_service(
    redis_pool: redis.ConnectionPool = Depends(get_redis_pool),
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool),
    scheduler: AsyncIOScheduler = Depends(get_scheduler)
) -> SessionService:
    """
    Her istek için yeni bir SessionService nesnesi oluşturur.

    İstemciler (clients) paylaşımlı havuzlar üzerinden her istekte yeniden yaratılır;
    zamanlayıcı ise paylaşımlıdır, böylece bir istekte başlatılan PIN rotasyonu
    başka bir istekte durdurulabilir.
    """
    redis_client = RedisClient(pool=redis_pool)
    db_client = AsyncPostgresClient(pool=postgres_pool)
    rotator = CredentialRotator(scheduler=scheduler, redis_client=redis_client)
    return SessionService(redis_client=redis_client, db_client=db_client, rotator=rotator)


def get_sign_in_service(
    session_service: SessionService = Depends(get_session_service),
    ledger: AttendanceLedger = Depends(get_ledger),
    unit_service: UnitService = Depends(get_unit_service)
) -> SignInService:
    return SignInService(session_service=session_service, ledger=ledger, unit_service=unit_service)


def get_analytics_service(
    ledger: AttendanceLedger = Depends(get_ledger),
    unit_service: UnitService = Depends(get_unit_service)
) -> AnalyticsService:
    return AnalyticsService(ledger=ledger, unit_service=unit_service)
