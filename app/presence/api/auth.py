import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from datetime import datetime, timedelta, timezone
import jwt
from pydantic import ValidationError

from .schemas.user import TokenData
from ..models.db_models import User
from ..config.config import settings

# Bu modül için özel bir logger oluşturuyoruz.
logger = logging.getLogger(__name__)

# Token'lar harici kimlik sağlayıcısı tarafından üretilir; bu servis sadece doğrular.
bearer_scheme = HTTPBearer()

INSTRUCTOR_ROLE = "Instructor"
STUDENT_ROLE = "Student"


def create_access_token(data: dict, expires_delta: timedelta) -> str:
    """Verilen data ve süre ile yeni bir JWT access token oluşturur (test ve geliştirme araçları için)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> User:
    """
    Token'ı decode eder, Pydantic ile doğrular ve kimliği doğrulanmış User nesnesini döndürür.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenData.model_validate(payload)
    except (jwt.PyJWTError, ValidationError) as e:
        # Hem JWT hatalarını (süre dolması, imza hatası) hem de Pydantic doğrulama hatalarını yakalıyoruz.
        logger.warning(f"Token validation error: {e}")
        raise credentials_exception

    if token_data.sub is None or token_data.role is None:
        logger.warning(f"Token is valid but missing 'sub' or 'role': {payload}")
        raise credentials_exception

    return User(user_id=token_data.sub, full_name=token_data.name or "", role=token_data.role)
