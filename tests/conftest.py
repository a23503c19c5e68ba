import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("MASTER_KEY", "test-master-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ALLOW_INSECURE_HTTP", "true")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ota_fleet.db.base import Base
from ota_fleet.models import UserRole
from ota_fleet.services.broadcaster import ProgressBroadcaster
from ota_fleet.services.container import Services
from ota_fleet.services.content_store import ContentStore
from ota_fleet.services.firmware import FirmwareService, parse_metadata
from ota_fleet.services.integrity import IntegrityPipeline
from ota_fleet.services.jobs import JobStateMachine
from ota_fleet.services.scheduler import JobScheduler
from ota_fleet.services.transport import SimulatedTransport
from ota_fleet.services.users import create_user, identity_for

MASTER_KEY = b"test-master-key"


class ScriptedTransport:
    """Fails delivery for the listed device identifiers and records every attempt."""

    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.delivered: list[str] = []

    def deliver(self, device, firmware, transport_type) -> bool:
        self.delivered.append(device.device_identifier)
        return device.device_identifier not in self.failing


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture()
def file_session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'ota.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def admin(db):
    return identity_for(create_user(db, "admin", "admin-password", UserRole.admin, actor=None))


@pytest.fixture()
def operator(db, admin):
    return identity_for(create_user(db, "operator", "operator-password", UserRole.operator, actor=admin))


@pytest.fixture()
def master_key():
    return MASTER_KEY


@pytest.fixture()
def store(tmp_path):
    return ContentStore(str(tmp_path / "blobs"))


@pytest.fixture()
def pipeline(store):
    return IntegrityPipeline(store, MASTER_KEY, encrypt=True)


@pytest.fixture()
def firmware_service(pipeline):
    return FirmwareService(pipeline)


@pytest.fixture()
def transport():
    return ScriptedTransport()


@pytest.fixture()
def scripted_transport():
    return ScriptedTransport


@pytest.fixture()
def state_machine(firmware_service, transport):
    return JobStateMachine(firmware_service, transport, parallel_concurrency=10, rolling_batch_size=2)


@pytest.fixture()
def broadcaster():
    return ProgressBroadcaster(max_queue_size=100)


@pytest.fixture()
def scheduler(state_machine, broadcaster, session_factory):
    return JobScheduler(state_machine, broadcaster, session_factory, start_delay=0, tick_interval=0)


@pytest.fixture()
def upload(db, firmware_service, operator):
    def _upload(group: str = "esp32-cam", data: bytes = b"\xa5" * 1024, version: str = "1.0.0"):
        metadata = parse_metadata(
            name="Main", version=version, target_device_group=group, transport_type="mqtt"
        )
        return firmware_service.upload_firmware(db, data, metadata, operator)

    return _upload


@pytest.fixture()
def client(file_session_factory, tmp_path):
    from fastapi.testclient import TestClient

    from ota_fleet.api.deps import get_db, login_limiter
    from ota_fleet.main import app

    session_factory = file_session_factory

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    pipeline = IntegrityPipeline(ContentStore(str(tmp_path / "api-blobs")), MASTER_KEY, encrypt=True)
    firmware = FirmwareService(pipeline)
    jobs = JobStateMachine(firmware, SimulatedTransport(0.0))
    broadcaster = ProgressBroadcaster()
    app.state.services = Services(
        firmware=firmware,
        jobs=jobs,
        broadcaster=broadcaster,
        scheduler=JobScheduler(jobs, broadcaster, session_factory, start_delay=0, tick_interval=0),
    )
    app.dependency_overrides[get_db] = override_get_db

    with session_factory() as session:
        create_user(session, "admin", "admin-password", UserRole.admin, actor=None)

    login_limiter.reset("testclient")
    with TestClient(app) as test_client:
        yield test_client

    login_limiter.reset("testclient")
    app.dependency_overrides.clear()
    app.state.services = None
