import pytest
import pytest_asyncio
import uuid
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from app.presence.services.session_service import SessionService, new_session_id
from app.presence.services.errors import SessionConflictError, StorageUnavailableError, UnitNotFoundError
from app.presence.models.db_models import Unit, SessionState
from app.presence.models.redis_models import ActiveSessionRedis, Coordinate, Geofence

FIXED_NOW = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)

# --- Test Fixtures ---

@pytest.fixture
def unit() -> Unit:
    return Unit(unit_id=uuid.uuid4(), name="Calculus I", join_code="CALC1", owner_id="I001", attendance_threshold=75)

def make_active_session(unit: Unit, end_time: datetime, session_id: str = "1718010000000-aaaa0001") -> ActiveSessionRedis:
    return ActiveSessionRedis(
        session_id=session_id,
        unit_id=unit.unit_id,
        owner_id=unit.owner_id,
        start_time=end_time - timedelta(minutes=15),
        end_time=end_time,
        current_pin="4821",
        pin_issued_at=end_time - timedelta(minutes=1),
    )

@pytest_asyncio.fixture
async def service_instance(unit):
    """Creates a SessionService with mocked clients and a fixed clock."""
    mock_redis_client = AsyncMock()
    mock_db_client = AsyncMock()
    mock_rotator = MagicMock()
    mock_rotator.start = AsyncMock(return_value="4821")

    mock_db_client.get_unit.return_value = unit
    mock_redis_client.get_active_session.return_value = None
    mock_redis_client.create_active_session.return_value = True

    service = SessionService(
        redis_client=mock_redis_client, db_client=mock_db_client, rotator=mock_rotator, clock=lambda: FIXED_NOW
    )
    return service, mock_redis_client, mock_db_client, mock_rotator

# --- Test Scenarios ---

def test_new_session_id_starts_with_epoch_millis():
    session_id = new_session_id(FIXED_NOW)
    millis, suffix = session_id.split("-")
    assert int(millis) == int(FIXED_NOW.timestamp() * 1000)
    assert len(suffix) == 8
    assert new_session_id(FIXED_NOW) != session_id

@pytest.mark.asyncio
async def test_start_session_success(service_instance, unit):
    service, mock_redis, mock_db, mock_rotator = service_instance
    geofence = Geofence(center=Coordinate(latitude=41.0, longitude=29.0), radius_meters=50)

    state = await service.start_session(unit.unit_id, 15, geofence)

    created: ActiveSessionRedis = mock_redis.create_active_session.call_args.args[0]
    assert created.unit_id == unit.unit_id
    assert created.end_time == FIXED_NOW + timedelta(minutes=15)
    assert state.session_id == created.session_id
    assert state.active is True
    assert state.geofence_radius_meters == 50

    persisted = mock_db.add_session.call_args.args[0]
    assert persisted.session_id == created.session_id
    assert persisted.state == SessionState.ACTIVE
    assert persisted.geofence_latitude == 41.0
    mock_rotator.start.assert_awaited_once_with(unit.unit_id, created.session_id)

@pytest.mark.asyncio
async def test_start_session_returns_published_pin(service_instance, unit):
    service, mock_redis, _, _ = service_instance
    published = make_active_session(unit, FIXED_NOW + timedelta(minutes=15))
    # First read is the lazy expiry check, second is after the first PIN was published.
    mock_redis.get_active_session.side_effect = [None, published]

    state = await service.start_session(unit.unit_id, 15)

    assert state.current_pin == "4821"

@pytest.mark.asyncio
async def test_start_session_conflict(service_instance, unit):
    service, mock_redis, mock_db, mock_rotator = service_instance
    mock_redis.create_active_session.return_value = False

    with pytest.raises(SessionConflictError):
        await service.start_session(unit.unit_id, 15)

    mock_db.add_session.assert_not_awaited()
    mock_rotator.start.assert_not_awaited()

@pytest.mark.asyncio
async def test_start_session_closes_session_when_first_pin_fails(service_instance, unit):
    service, mock_redis, mock_db, mock_rotator = service_instance
    mock_rotator.start.side_effect = RedisConnectionError("connection reset")

    with pytest.raises(StorageUnavailableError):
        await service.start_session(unit.unit_id, 15)

    created = mock_redis.create_active_session.call_args.args[0]
    mock_rotator.stop.assert_called_once_with(unit.unit_id, session_id=created.session_id)
    mock_redis.delete_active_session.assert_awaited_once_with(unit.unit_id, created.session_id)
    mock_db.close_session.assert_awaited_once_with(created.session_id, SessionState.CLOSED, FIXED_NOW)

@pytest.mark.asyncio
async def test_failed_start_cleanup_tolerates_storage_outage(service_instance, unit):
    service, mock_redis, mock_db, mock_rotator = service_instance
    mock_rotator.start.side_effect = RedisConnectionError("connection reset")
    mock_redis.delete_active_session.side_effect = RedisConnectionError("still down")
    mock_db.close_session.side_effect = OSError("db down")

    with pytest.raises(StorageUnavailableError):
        await service.start_session(unit.unit_id, 15)

@pytest.mark.asyncio
@pytest.mark.parametrize("duration", [0, -5, 100000])
async def test_start_session_rejects_invalid_duration(service_instance, unit, duration):
    service, mock_redis, mock_db, _ = service_instance

    with pytest.raises(ValueError):
        await service.start_session(unit.unit_id, duration)

    mock_db.get_unit.assert_not_awaited()
    mock_redis.create_active_session.assert_not_awaited()

@pytest.mark.asyncio
async def test_start_session_unknown_unit(service_instance, unit):
    service, mock_redis, mock_db, _ = service_instance
    mock_db.get_unit.return_value = None

    with pytest.raises(UnitNotFoundError):
        await service.start_session(unit.unit_id, 15)
    mock_redis.create_active_session.assert_not_awaited()

@pytest.mark.asyncio
async def test_start_session_replaces_an_expired_session(service_instance, unit):
    service, mock_redis, mock_db, mock_rotator = service_instance
    stale = make_active_session(unit, FIXED_NOW - timedelta(seconds=1))
    mock_redis.get_active_session.side_effect = [stale, None]

    await service.start_session(unit.unit_id, 15)

    mock_rotator.stop.assert_called_once_with(unit.unit_id)
    mock_redis.delete_active_session.assert_awaited_once_with(unit.unit_id, stale.session_id)
    mock_db.close_session.assert_awaited_once_with(stale.session_id, SessionState.EXPIRED, FIXED_NOW)
    mock_redis.create_active_session.assert_awaited_once()

@pytest.mark.asyncio
async def test_start_session_releases_slot_when_persisting_fails(service_instance, unit):
    service, mock_redis, mock_db, mock_rotator = service_instance
    mock_db.add_session.side_effect = OSError("connection reset")

    with pytest.raises(StorageUnavailableError):
        await service.start_session(unit.unit_id, 15)

    created = mock_redis.create_active_session.call_args.args[0]
    mock_redis.delete_active_session.assert_awaited_once_with(unit.unit_id, created.session_id)
    mock_rotator.start.assert_not_awaited()

@pytest.mark.asyncio
async def test_end_session_closes_and_stops_rotation(service_instance, unit):
    service, mock_redis, mock_db, mock_rotator = service_instance
    live = make_active_session(unit, FIXED_NOW + timedelta(minutes=5))
    mock_redis.get_active_session.return_value = live

    assert await service.end_session(unit.unit_id) == live.session_id

    mock_rotator.stop.assert_called_once_with(unit.unit_id)
    mock_redis.delete_active_session.assert_awaited_once_with(unit.unit_id, live.session_id)
    mock_db.close_session.assert_awaited_once_with(live.session_id, SessionState.CLOSED, FIXED_NOW)

@pytest.mark.asyncio
async def test_end_session_without_active_session_is_noop(service_instance, unit):
    service, mock_redis, mock_db, mock_rotator = service_instance

    assert await service.end_session(unit.unit_id) is None
    assert await service.end_session(unit.unit_id) is None

    mock_redis.delete_active_session.assert_not_awaited()
    mock_db.close_session.assert_not_awaited()
    mock_rotator.stop.assert_not_called()

@pytest.mark.asyncio
async def test_check_expiry_one_second_after_end(service_instance, unit):
    service, mock_redis, mock_db, _ = service_instance
    live = make_active_session(unit, FIXED_NOW)
    mock_redis.get_active_session.return_value = live

    check = await service.check_expiry(unit.unit_id, now=FIXED_NOW + timedelta(seconds=1))

    assert check.state == SessionState.EXPIRED
    assert not check.is_active
    mock_db.close_session.assert_awaited_once_with(live.session_id, SessionState.EXPIRED, FIXED_NOW + timedelta(seconds=1))

@pytest.mark.asyncio
async def test_check_expiry_at_exact_end_time_is_still_active(service_instance, unit):
    service, mock_redis, mock_db, _ = service_instance
    mock_redis.get_active_session.return_value = make_active_session(unit, FIXED_NOW)

    check = await service.check_expiry(unit.unit_id, now=FIXED_NOW)

    assert check.is_active
    assert check.session.current_pin == "4821"
    mock_db.close_session.assert_not_awaited()

@pytest.mark.asyncio
async def test_check_expiry_without_session_is_inactive(service_instance, unit):
    service, _, _, _ = service_instance
    check = await service.check_expiry(unit.unit_id)
    assert check.state == SessionState.INACTIVE
    assert check.session is None

@pytest.mark.asyncio
async def test_check_expiry_wraps_redis_errors(service_instance, unit):
    service, mock_redis, _, _ = service_instance
    mock_redis.get_active_session.side_effect = RedisConnectionError("down")

    with pytest.raises(StorageUnavailableError):
        await service.check_expiry(unit.unit_id)

@pytest.mark.asyncio
async def test_public_state_of_live_session(service_instance, unit):
    service, mock_redis, _, _ = service_instance
    live = make_active_session(unit, FIXED_NOW + timedelta(minutes=5))
    mock_redis.get_active_session.return_value = live

    state = await service.get_public_state(unit.unit_id)

    assert state.session_id == live.session_id
    assert state.current_pin == "4821"

@pytest.mark.asyncio
async def test_public_state_is_none_after_expiry(service_instance, unit):
    service, mock_redis, _, _ = service_instance
    mock_redis.get_active_session.return_value = make_active_session(unit, FIXED_NOW - timedelta(seconds=1))

    assert await service.get_public_state(unit.unit_id) is None
