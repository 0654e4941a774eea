# app/presence/api/utilities/limiter.py

from fastapi import Request
import jwt

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings


def get_limiter_key(request: Request) -> str:
    """
    Rate limit için bir anahtar döndürür.
    İstekte geçerli bir JWT varsa kullanıcı kimliğini (sub), yoksa istemcinin IP adresini kullanır.
    Aynı sınıftaki öğrenciler genellikle aynı NAT arkasında olduğu için kullanıcı bazlı anahtar önemlidir.
    """
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer ") and settings.SECRET_KEY:
        token = auth_header.split(" ")[1]
        try:
            # Sadece içindeki kullanıcı kimliğini almak istiyoruz, süre kontrolüne gerek yok.
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"verify_exp": False}
            )
            user_id = payload.get("sub")
            if user_id:
                return str(user_id)
        except jwt.PyJWTError:
            # Token geçersizse IP bazlı limite geri dön.
            pass

    return get_remote_address(request)


# RATE_LIMITER_REDIS_URL verilmezse bellek içi depolama kullanılır.
limiter = Limiter(key_func=get_limiter_key, storage_uri=settings.RATE_LIMITER_REDIS_URL)
