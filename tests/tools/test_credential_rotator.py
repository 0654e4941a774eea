import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, ANY

import pytest
from apscheduler.jobstores.base import JobLookupError

from app.presence.tools.credential_rotator import CredentialRotator, RotatorState, generate_pin

FIXED_NOW = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def rotator_and_mocks():
    scheduler = MagicMock()
    redis_client = AsyncMock()
    redis_client.publish_pin.return_value = True
    rotator = CredentialRotator(scheduler=scheduler, redis_client=redis_client, interval_seconds=15, clock=lambda: FIXED_NOW)
    return rotator, scheduler, redis_client


def test_generate_pin_is_four_digits_in_range():
    for _ in range(500):
        pin = generate_pin()
        assert len(pin) == 4
        assert 1000 <= int(pin) <= 9999


@pytest.mark.asyncio
async def test_start_publishes_immediately_and_schedules_rotation(rotator_and_mocks):
    rotator, scheduler, redis_client = rotator_and_mocks
    unit_id = uuid.uuid4()

    pin = await rotator.start(unit_id, "s-1")

    assert pin is not None and len(pin) == 4
    redis_client.publish_pin.assert_awaited_once_with(unit_id, "s-1", pin, FIXED_NOW)
    scheduler.add_job.assert_called_once_with(
        rotator.rotate,
        "interval",
        seconds=15,
        args=[unit_id, "s-1"],
        id=f"pin_rotation:{unit_id}",
        replace_existing=True,
    )


@pytest.mark.asyncio
async def test_start_does_not_schedule_when_session_is_gone(rotator_and_mocks):
    rotator, scheduler, redis_client = rotator_and_mocks
    redis_client.publish_pin.return_value = False

    assert await rotator.start(uuid.uuid4(), "s-1") is None
    scheduler.add_job.assert_not_called()


@pytest.mark.asyncio
async def test_rotate_stops_itself_once_session_is_replaced(rotator_and_mocks):
    rotator, scheduler, redis_client = rotator_and_mocks
    unit_id = uuid.uuid4()
    redis_client.publish_pin.return_value = False
    scheduler.get_job.return_value = MagicMock(args=[unit_id, "old-session"])

    assert await rotator.rotate(unit_id, "old-session") is None
    scheduler.remove_job.assert_called_once_with(f"pin_rotation:{unit_id}")


@pytest.mark.asyncio
async def test_late_tick_of_ended_session_keeps_new_session_rotating(rotator_and_mocks):
    rotator, scheduler, redis_client = rotator_and_mocks
    unit_id = uuid.uuid4()
    jobs = {}
    scheduler.add_job.side_effect = lambda func, trigger, seconds, args, id, replace_existing: jobs.__setitem__(id, MagicMock(args=args))
    scheduler.get_job.side_effect = jobs.get
    scheduler.remove_job.side_effect = jobs.pop
    await rotator.start(unit_id, "session-a")

    async def publish_while_session_is_replaced(unit_id, session_id, pin, issued_at):
        # Session A ends and B starts while A's tick is still waiting on Redis.
        if session_id == "session-a":
            rotator.stop(unit_id)
            await rotator.start(unit_id, "session-b")
            return False
        return True
    redis_client.publish_pin.side_effect = publish_while_session_is_replaced

    assert await rotator.rotate(unit_id, "session-a") is None

    assert rotator.state(unit_id) == RotatorState.RUNNING
    assert jobs[f"pin_rotation:{unit_id}"].args == [unit_id, "session-b"]


@pytest.mark.asyncio
async def test_rotate_publishes_a_new_pin(rotator_and_mocks):
    rotator, _, redis_client = rotator_and_mocks
    unit_id = uuid.uuid4()

    pin = await rotator.rotate(unit_id, "s-1")

    assert pin is not None
    redis_client.publish_pin.assert_awaited_once_with(unit_id, "s-1", pin, ANY)


def test_stop_is_idempotent(rotator_and_mocks):
    rotator, scheduler, _ = rotator_and_mocks
    unit_id = uuid.uuid4()

    assert rotator.stop(unit_id) is True
    scheduler.remove_job.side_effect = JobLookupError(f"pin_rotation:{unit_id}")
    assert rotator.stop(unit_id) is False


def test_state_reflects_scheduled_job(rotator_and_mocks):
    rotator, scheduler, _ = rotator_and_mocks
    unit_id = uuid.uuid4()

    scheduler.get_job.return_value = None
    assert rotator.state(unit_id) == RotatorState.STOPPED

    scheduler.get_job.return_value = MagicMock()
    assert rotator.state(unit_id) == RotatorState.RUNNING
    scheduler.get_job.assert_called_with(f"pin_rotation:{unit_id}")
