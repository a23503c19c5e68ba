from ota_fleet.api.routes.audit import router as audit_router
from ota_fleet.api.routes.auth import router as auth_router
from ota_fleet.api.routes.devices import router as devices_router
from ota_fleet.api.routes.events import router as events_router
from ota_fleet.api.routes.firmware import router as firmware_router
from ota_fleet.api.routes.jobs import router as jobs_router

__all__ = ["audit_router", "auth_router", "devices_router", "events_router", "firmware_router", "jobs_router"]
