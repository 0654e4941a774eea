import asyncio

import asyncpg
from redis.exceptions import RedisError


# --- Custom Service Layer Exception Classes ---
class ServiceError(Exception):
    """General exception class for the service layer."""
    pass


class AuthorizationError(ServiceError):
    """Exception class for authorization-related errors."""
    pass


class UnitNotFoundError(ServiceError):
    pass


class DuplicateJoinCodeError(ServiceError):
    pass


class AlreadyEnrolledError(ServiceError):
    pass


class SessionConflictError(ServiceError):
    """A unit already has an active session."""
    pass


class StorageUnavailableError(ServiceError):
    """Postgres or Redis could not be reached. The same request is safe to retry."""
    pass


# Errors that mean "the storage layer is unavailable", as opposed to a bug.
STORAGE_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    RedisError,
    OSError,
    asyncio.TimeoutError,
)
