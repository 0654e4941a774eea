import logging
from typing import List
from uuid import UUID, uuid4

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import Unit
from .errors import (
    AlreadyEnrolledError, AuthorizationError, DuplicateJoinCodeError,
    StorageUnavailableError, UnitNotFoundError, STORAGE_ERRORS
)

logger = logging.getLogger(__name__)


class UnitService:
    """
    Creating units, enrolling students and the ownership checks the instructor endpoints rely on.
    """
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def create_unit(self, owner_id: str, name: str, join_code: str, attendance_threshold: int) -> Unit:
        new_unit = Unit(
            unit_id=uuid4(),
            name=name,
            join_code=join_code,
            owner_id=owner_id,
            attendance_threshold=attendance_threshold,
        )
        try:
            created = await self.db_client.add_unit(new_unit)
        except STORAGE_ERRORS as e:
            logger.error(f"Error creating unit '{join_code}'.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while creating the unit.") from e
        if not created:
            raise DuplicateJoinCodeError("A unit with this code already exists.")
        logger.info(f"Unit {created.unit_id} ('{join_code}') created by '{owner_id}'.")
        return created

    async def join_unit(self, join_code: str, student_id: str) -> Unit:
        try:
            unit = await self.db_client.enroll_student(join_code, student_id)
            if unit:
                logger.info(f"Student '{student_id}' enrolled in unit {unit.unit_id}.")
                return unit
            existing = await self.db_client.get_unit_by_join_code(join_code)
        except STORAGE_ERRORS as e:
            logger.error(f"Error enrolling student '{student_id}' with code '{join_code}'.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while joining the unit.") from e

        if not existing:
            raise UnitNotFoundError("Unit with this code not found.")
        raise AlreadyEnrolledError("You are already enrolled in this unit.")

    async def get_unit(self, unit_id: UUID) -> Unit:
        try:
            unit = await self.db_client.get_unit(unit_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error loading unit {unit_id}.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while loading the unit.") from e
        if not unit:
            raise UnitNotFoundError(f"Unit ({unit_id}) not found.")
        return unit

    async def get_and_verify_unit_owner(self, unit_id: UUID, owner_id: str) -> Unit:
        unit = await self.get_unit(unit_id)
        if unit.owner_id != owner_id:
            raise AuthorizationError("Unit not found or you are not authorized to manage it.")
        return unit

    async def list_units_for_owner(self, owner_id: str) -> List[Unit]:
        try:
            return await self.db_client.get_units_by_owner(owner_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error listing units of '{owner_id}'.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while listing units.") from e
