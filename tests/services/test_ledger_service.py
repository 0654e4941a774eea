import pytest
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from app.presence.services.ledger_service import AttendanceLedger
from app.presence.services.errors import StorageUnavailableError
from app.presence.models.db_models import AttendanceRecord, SignInMethod

UNIT_ID = uuid.uuid4()


def make_record(student_id: str = "S001", is_duplicate_device: bool = False) -> AttendanceRecord:
    return AttendanceRecord(
        record_id=uuid.uuid4(), student_id=student_id, session_id="s-1", unit_id=UNIT_ID,
        recorded_at=datetime.now(timezone.utc), method=SignInMethod.LOCATION,
        device_fingerprint="device-a", is_duplicate_device=is_duplicate_device
    )

@pytest.fixture
def ledger_and_db():
    mock_db_client = AsyncMock()
    return AttendanceLedger(db_client=mock_db_client), mock_db_client

@pytest.mark.asyncio
async def test_record_inserts_new_record(ledger_and_db):
    ledger, mock_db = ledger_and_db
    inserted = make_record()
    mock_db.insert_attendance_record.return_value = inserted

    result = await ledger.record(UNIT_ID, "s-1", "S001", SignInMethod.LOCATION, "device-a")

    assert result.record == inserted
    assert result.already_recorded is False
    mock_db.get_attendance_record.assert_not_awaited()

@pytest.mark.asyncio
async def test_record_returns_existing_on_conflict(ledger_and_db):
    ledger, mock_db = ledger_and_db
    existing = make_record()
    mock_db.insert_attendance_record.return_value = None
    mock_db.get_attendance_record.return_value = existing

    result = await ledger.record(UNIT_ID, "s-1", "S001", SignInMethod.QR_CODE)

    assert result.already_recorded is True
    assert result.record == existing
    mock_db.get_attendance_record.assert_awaited_once_with("s-1", "S001")

@pytest.mark.asyncio
async def test_duplicate_device_is_flagged_but_accepted(ledger_and_db):
    ledger, mock_db = ledger_and_db
    mock_db.insert_attendance_record.return_value = make_record("S002", is_duplicate_device=True)

    result = await ledger.record(UNIT_ID, "s-1", "S002", SignInMethod.LOCATION, "device-a")

    assert result.already_recorded is False
    assert result.record.is_duplicate_device is True

@pytest.mark.asyncio
async def test_storage_errors_are_wrapped(ledger_and_db):
    ledger, mock_db = ledger_and_db
    mock_db.insert_attendance_record.side_effect = OSError("connection refused")

    with pytest.raises(StorageUnavailableError):
        await ledger.record(UNIT_ID, "s-1", "S001", SignInMethod.MANUAL)

@pytest.mark.asyncio
async def test_read_paths_delegate_to_db(ledger_and_db):
    ledger, mock_db = ledger_and_db
    records = [make_record()]
    mock_db.get_records_for_session.return_value = records
    mock_db.get_records_for_student.return_value = records
    mock_db.get_records_for_unit.return_value = records
    mock_db.was_device_used.return_value = True

    assert await ledger.records_for_session("s-1") == records
    assert await ledger.records_for_student(UNIT_ID, "S001") == records
    assert await ledger.records_for_unit(UNIT_ID) == records
    assert await ledger.was_device_used("s-1", "device-a") is True
