import logging
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from ..db.db_client import AsyncPostgresClient
from ..models.db_models import AttendanceRecord, SignInMethod
from .errors import StorageUnavailableError, STORAGE_ERRORS

logger = logging.getLogger(__name__)


class LedgerResult(BaseModel):
    """Outcome of a ledger write. `already_recorded` is a normal outcome, not an error."""
    record: Optional[AttendanceRecord] = None
    already_recorded: bool = False


class AttendanceLedger:
    """
    Append-only store of attendance records.

    At most one record exists per (student_id, session_id). The guarantee comes from the
    unique constraint in Postgres and a single conditional INSERT, so it holds across
    concurrent requests and across multiple engine instances.
    """
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def record(
        self,
        unit_id: UUID,
        session_id: str,
        student_id: str,
        method: SignInMethod,
        device_fingerprint: Optional[str] = None
    ) -> LedgerResult:
        try:
            inserted = await self.db_client.insert_attendance_record(
                unit_id=unit_id,
                session_id=session_id,
                student_id=student_id,
                method=method,
                device_fingerprint=device_fingerprint,
            )
            if inserted:
                if inserted.is_duplicate_device:
                    logger.warning(f"Device already used in session {session_id}; flagged record of student '{student_id}'.")
                logger.info(f"Recorded attendance of student '{student_id}' for session {session_id} via {method.value}.")
                return LedgerResult(record=inserted)

            existing = await self.db_client.get_attendance_record(session_id, student_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error recording attendance of student '{student_id}' for session {session_id}.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while recording attendance.") from e

        logger.info(f"Student '{student_id}' was already recorded for session {session_id}.")
        return LedgerResult(record=existing, already_recorded=True)

    async def was_device_used(self, session_id: str, device_fingerprint: str) -> bool:
        try:
            return await self.db_client.was_device_used(session_id, device_fingerprint)
        except STORAGE_ERRORS as e:
            logger.error(f"Error looking up device usage for session {session_id}.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while reading the ledger.") from e

    async def records_for_session(self, session_id: str) -> List[AttendanceRecord]:
        try:
            return await self.db_client.get_records_for_session(session_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error reading records of session {session_id}.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while reading the ledger.") from e

    async def records_for_student(self, unit_id: UUID, student_id: str) -> List[AttendanceRecord]:
        try:
            return await self.db_client.get_records_for_student(unit_id, student_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error reading records of student '{student_id}' in unit {unit_id}.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while reading the ledger.") from e

    async def records_for_unit(self, unit_id: UUID) -> List[AttendanceRecord]:
        try:
            return await self.db_client.get_records_for_unit(unit_id)
        except STORAGE_ERRORS as e:
            logger.error(f"Error reading records of unit {unit_id}.", exc_info=True)
            raise StorageUnavailableError("A storage error occurred while reading the ledger.") from e
