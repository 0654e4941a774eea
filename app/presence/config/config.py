import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Ortam değişkenlerinden ayarları doğrudan ve basit bir şekilde tutan sınıf.
    """
    # Veritabanı
    DATABASE_URL: str = os.environ.get("DATABASE_URL")
    AUTO_CREATE_SCHEMA: bool = _env_bool("AUTO_CREATE_SCHEMA", True)

    # Redis: aktif oturumların canlı durumu ve rate limiter deposu
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL", "memory://")

    # JWT (token'lar harici kimlik sağlayıcısı tarafından imzalanır)
    SECRET_KEY: str = os.environ.get("SECRET_KEY")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")

    # Yoklama oturumu motoru
    PIN_ROTATION_SECONDS: int = int(os.environ.get("PIN_ROTATION_SECONDS", 15))
    EXPIRY_SWEEP_SECONDS: int = int(os.environ.get("EXPIRY_SWEEP_SECONDS", 5))
    MAX_SESSION_DURATION_MINUTES: int = int(os.environ.get("MAX_SESSION_DURATION_MINUTES", 720))
    ACTIVE_SESSION_GRACE_SECONDS: int = int(os.environ.get("ACTIVE_SESSION_GRACE_SECONDS", 3600))

    # Loglama
    LOG_DIR: str = os.environ.get("LOG_DIR", "logs")

# Ayarların tek ve içe aktarılabilir bir örneğini oluştur
settings = Config()
