import asyncio
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from ota_fleet.models import JobStatus
from ota_fleet.services import registry
from ota_fleet.services.errors import InvalidTransitionError, NotFoundError


def drain(subscription):
    messages = []
    while not subscription._queue.empty():
        messages.append(subscription._queue.get_nowait())
    return messages


def test_scheduled_job_runs_to_completion(db, operator, upload, state_machine, broadcaster, scheduler, session_factory):
    for idx in range(3):
        registry.register(db, f"cam-{idx}", f"Cam {idx}", "esp32-cam", actor=operator)
    job = state_machine.trigger(db, upload().id, "mqtt", "sequential", operator)
    job_id = job.id

    async def scenario():
        async with broadcaster.subscribe() as subscription:
            task = scheduler.schedule(job_id)
            assert scheduler.schedule(job_id) is task
            await asyncio.wait_for(task, timeout=5)
            return drain(subscription), scheduler.is_running(job_id)

    messages, running = asyncio.run(scenario())

    assert not running
    assert [m.data["status"] for m in messages][-1] == "completed"
    assert messages[-1].data["terminal"] is True
    assert sum(1 for m in messages if m.data.get("outcome") == "completed") == 3
    with session_factory() as session:
        stored = state_machine.get_job(session, job_id)
        assert stored.status == JobStatus.completed
        assert stored.progress == 100


def test_cancel_right_after_trigger(db, operator, upload, state_machine, broadcaster, session_factory):
    from ota_fleet.services.scheduler import JobScheduler

    for idx in range(3):
        registry.register(db, f"cam-{idx}", f"Cam {idx}", "esp32-cam", actor=operator)
    job = state_machine.trigger(db, upload().id, "mqtt", "sequential", operator)
    job_id = job.id
    scheduler = JobScheduler(state_machine, broadcaster, session_factory, start_delay=0.2, tick_interval=0.05)

    async def scenario():
        async with broadcaster.subscribe() as subscription:
            scheduler.schedule(job_id)
            cancelled = await scheduler.cancel(job_id, operator)
            await asyncio.sleep(0.5)
            return cancelled, drain(subscription), scheduler.is_running(job_id)

    cancelled, messages, running = asyncio.run(scenario())

    assert cancelled.status == JobStatus.cancelled
    assert cancelled.progress == 0
    assert not running
    assert len(messages) == 1
    assert messages[0].data["status"] == "cancelled"
    assert messages[0].data["terminal"] is True
    with session_factory() as session:
        stored = state_machine.get_job(session, job_id)
        assert stored.status == JobStatus.cancelled
        assert stored.completed_devices == 0


def test_jobs_progress_independently(firmware_service, state_machine, broadcaster, file_session_factory):
    from ota_fleet.models import UserRole
    from ota_fleet.services.firmware import parse_metadata
    from ota_fleet.services.scheduler import JobScheduler
    from ota_fleet.services.users import create_user, identity_for

    with file_session_factory() as session:
        admin = identity_for(create_user(session, "admin", "admin-password", UserRole.admin, actor=None))
        for idx in range(2):
            registry.register(session, f"cam-{idx}", f"Cam {idx}", "esp32-cam", actor=admin)
        metadata = parse_metadata(name="Main", version="2.0.0", target_device_group="esp32-cam", transport_type="ble")
        firmware = firmware_service.upload_firmware(session, b"\x01" * 512, metadata, admin)
        first = state_machine.trigger(session, firmware.id, "mqtt", "sequential", admin).id
        second = state_machine.trigger(session, firmware.id, "ble", "parallel", admin).id
    scheduler = JobScheduler(state_machine, broadcaster, file_session_factory, start_delay=0, tick_interval=0)

    async def scenario():
        await asyncio.wait_for(asyncio.gather(scheduler.schedule(first), scheduler.schedule(second)), timeout=5)

    asyncio.run(scenario())

    with file_session_factory() as session:
        assert state_machine.get_job(session, first).status == JobStatus.completed
        assert state_machine.get_job(session, second).status == JobStatus.completed


def test_shutdown_stops_running_jobs(db, operator, upload, state_machine, broadcaster, session_factory):
    from ota_fleet.services.scheduler import JobScheduler

    registry.register(db, "cam-0", "Cam", "esp32-cam", actor=operator)
    job_id = state_machine.trigger(db, upload().id, "mqtt", "sequential", operator).id
    scheduler = JobScheduler(state_machine, broadcaster, session_factory, start_delay=10, tick_interval=10)

    async def scenario():
        scheduler.schedule(job_id)
        await asyncio.sleep(0)
        await scheduler.shutdown()
        return scheduler.is_running(job_id)

    assert asyncio.run(scenario()) is False
    with session_factory() as session:
        assert state_machine.get_job(session, job_id).status == JobStatus.pending


def test_failed_cancels_leave_no_locks_behind(db, operator, upload, state_machine, scheduler):
    finished = state_machine.trigger(db, upload(group="nobody").id, "mqtt", "sequential", operator)
    state_machine.advance(db, finished.id)
    pending = state_machine.trigger(db, upload(group="nobody", version="1.0.1").id, "mqtt", "sequential", operator)
    finished_id, pending_id = finished.id, pending.id

    async def scenario():
        for _ in range(50):
            with pytest.raises(NotFoundError):
                await scheduler.cancel(uuid.uuid4(), operator)
        with pytest.raises(InvalidTransitionError):
            await scheduler.cancel(finished_id, operator)
        await scheduler.cancel(pending_id, operator)
        return len(scheduler._locks)

    assert asyncio.run(scenario()) == 0


def test_failing_tick_is_retried_once(
    db, operator, upload, state_machine, scheduler, monkeypatch, session_factory
):
    registry.register(db, "cam-0", "Cam", "esp32-cam", actor=operator)
    job_id = state_machine.trigger(db, upload().id, "mqtt", "sequential", operator).id
    advance = state_machine.advance
    calls = []

    def flaky_advance(session, target_id):
        calls.append(target_id)
        if len(calls) == 1:
            raise OperationalError("UPDATE", {}, Exception("database is locked"))
        return advance(session, target_id)

    monkeypatch.setattr(state_machine, "advance", flaky_advance)

    async def scenario():
        return await scheduler.tick(job_id)

    assert asyncio.run(scenario()) is True
    assert len(calls) == 2
    with session_factory() as session:
        assert state_machine.get_job(session, job_id).status == JobStatus.completed


def test_repeatedly_failing_job_is_marked_failed(
    db, operator, upload, state_machine, broadcaster, scheduler, monkeypatch, session_factory
):
    registry.register(db, "cam-0", "Cam", "esp32-cam", actor=operator)
    job_id = state_machine.trigger(db, upload().id, "mqtt", "sequential", operator).id

    def broken_advance(session, target_id):
        raise OperationalError("UPDATE", {}, Exception("database is locked"))

    monkeypatch.setattr(state_machine, "advance", broken_advance)

    async def scenario():
        async with broadcaster.subscribe() as subscription:
            await asyncio.wait_for(scheduler.schedule(job_id), timeout=5)
            return drain(subscription), scheduler.is_running(job_id)

    messages, running = asyncio.run(scenario())

    assert not running
    assert len(messages) == 1
    assert messages[0].data["status"] == "failed"
    assert messages[0].data["terminal"] is True
    assert messages[0].data["reason"] == "tick_failed"
    with session_factory() as session:
        assert state_machine.get_job(session, job_id).status == JobStatus.failed


def test_resume_schedules_unfinished_jobs(db, operator, upload, state_machine, scheduler, session_factory):
    registry.register(db, "cam-0", "Cam", "esp32-cam", actor=operator)
    firmware = upload()
    pending = state_machine.trigger(db, firmware.id, "mqtt", "sequential", operator).id
    cancelled = state_machine.trigger(db, firmware.id, "mqtt", "sequential", operator).id
    state_machine.cancel(db, cancelled, operator)

    async def scenario():
        resumed = await scheduler.resume()
        await asyncio.wait_for(scheduler.schedule(pending), timeout=5)
        return resumed

    assert asyncio.run(scenario()) == 1
    with session_factory() as session:
        assert state_machine.get_job(session, pending).status == JobStatus.completed
        assert state_machine.get_job(session, cancelled).status == JobStatus.cancelled
