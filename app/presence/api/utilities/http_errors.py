# app/presence/api/utilities/http_errors.py

from fastapi import HTTPException, status

from ...services.errors import (
    AlreadyEnrolledError, AuthorizationError, DuplicateJoinCodeError, ServiceError,
    SessionConflictError, StorageUnavailableError, UnitNotFoundError
)


def to_http_exception(e: ServiceError) -> HTTPException:
    """Servis katmanı hatalarını uygun HTTP durum kodlarına çevirir."""
    if isinstance(e, StorageUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if isinstance(e, (SessionConflictError, DuplicateJoinCodeError, AlreadyEnrolledError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    # Yetkisiz erişimde birimin varlığını da sızdırmıyoruz.
    if isinstance(e, (UnitNotFoundError, AuthorizationError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
