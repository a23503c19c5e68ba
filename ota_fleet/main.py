import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ota_fleet.api.routes import (
    audit_router,
    auth_router,
    devices_router,
    events_router,
    firmware_router,
    jobs_router,
)
from ota_fleet.config import get_settings
from ota_fleet.db import SessionLocal
from ota_fleet.services.container import build_services
from ota_fleet.services.errors import OTAError, ValidationError

settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not getattr(app.state, "services", None):
        app.state.services = build_services(settings, SessionLocal)
    await app.state.services.scheduler.resume()
    yield
    await app.state.services.scheduler.shutdown()


app = FastAPI(title=settings.app_name, lifespan=lifespan)


@app.middleware("http")
async def enforce_https(request: Request, call_next):
    if not settings.allow_insecure_http:
        proto = request.headers.get("x-forwarded-proto") or request.url.scheme
        if proto != "https":
            return JSONResponse(status_code=400, content={"detail": "HTTPS required"})
    return await call_next(request)


@app.exception_handler(OTAError)
async def handle_ota_error(request: Request, exc: OTAError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    content = {"detail": exc.message, "error": exc.kind}
    if isinstance(exc, ValidationError) and exc.fields:
        content["fields"] = exc.fields
    return JSONResponse(status_code=exc.status_code, content=content)


app.include_router(auth_router)
app.include_router(firmware_router)
app.include_router(devices_router)
app.include_router(jobs_router)
app.include_router(audit_router)
app.include_router(events_router)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
