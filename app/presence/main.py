# app/presence/main.py
from fastapi import FastAPI
from contextlib import asynccontextmanager
import redis.asyncio as redis
import asyncpg
from apscheduler.schedulers.asyncio import AsyncIOScheduler as Scheduler
import logging

# Rate limiting için gerekli importlar
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from fastapi.middleware.cors import CORSMiddleware

# Proje ayarlarını ve modüllerini import edelim
from .config.config import settings
from .logging.logging_config import setup_logging
from .api import instructor, student

# Gerekli istemci ve görev (task) fonksiyonlarını import edelim
from .db.redis_client import RedisClient
from .db.db_client import AsyncPostgresClient
from .tasks.cron import expire_sessions_task, resume_pin_rotation

from .api.utilities.limiter import limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Uygulama başlatıldığında ve durdurulduğunda çalışacak olan yaşam döngüsü yöneticisi.
    """
    setup_logging()
    logger.info("Uygulama başlatılıyor...")

    try:
        postgres_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL, min_size=5, max_size=20
        )
        redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL, decode_responses=True
        )

        app.state.postgres_pool = postgres_pool
        app.state.redis_pool = redis_pool
        logger.info("PostgreSQL ve Redis bağlantı havuzları başarıyla oluşturuldu.")

        db_client = AsyncPostgresClient(pool=postgres_pool)
        redis_client = RedisClient(pool=redis_pool)

        if settings.AUTO_CREATE_SCHEMA:
            await db_client.create_schema()
            logger.info("Veritabanı şeması doğrulandı.")

        scheduler = Scheduler()
        scheduler.add_job(
            expire_sessions_task,
            "interval",
            seconds=settings.EXPIRY_SWEEP_SECONDS,
            args=[redis_client, db_client, scheduler],
            id="expire_sessions",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        app.state.scheduler = scheduler

        # Yeniden başlatma sonrası hâlâ aktif olan oturumların PIN rotasyonunu sürdür.
        await resume_pin_rotation(redis_client, scheduler)
        logger.info("Zamanlanmış görevler (cron jobs) başarıyla başlatıldı.")
    except Exception:
        logger.critical("Başlangıç sırasında bir hata oluştu.", exc_info=True)
        raise

    yield

    logger.info("Uygulama kapatılıyor...")
    app.state.scheduler.shutdown(wait=False)
    logger.info("Scheduler kapatıldı.")
    await app.state.postgres_pool.close()
    logger.info("PostgreSQL bağlantı havuzu kapatıldı.")
    await app.state.redis_pool.disconnect()
    logger.info("Redis bağlantı havuzu kapatıldı.")


# Ana FastAPI uygulamasını oluştur
app = FastAPI(
    title="ATTN Presence API",
    description="Canlı yoklama oturumları, dönen PIN'ler ve konum doğrulamalı katılım API'si",
    version="1.0.0",
    lifespan=lifespan
)

origins = [
   "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limit aşıldığında çalışacak hata yöneticisini ekle
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# API router'larını uygulamaya dahil et
app.include_router(instructor.router, prefix="/api/v1")
app.include_router(student.router, prefix="/api/v1")

@app.get("/health", tags=["System"])
def health_check():
    """Uygulamanın ayakta ve sağlıklı olup olmadığını kontrol etmek için basit bir endpoint."""
    return {"status": "ok", "message": "ATTN Presence API is running."}
