from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ota_fleet.config import get_settings
from ota_fleet.db import SessionLocal
from ota_fleet.services.auth import CallerIdentity, TokenData, TokenExpired, TokenInvalid, decode_access_token
from ota_fleet.services.container import Services
from ota_fleet.services.rate_limit import RateLimiter

settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)
login_limiter = RateLimiter(settings.rate_limit_login_per_minute, 60)


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def rate_limit_login(request: Request) -> None:
    if login_limiter.blocked(get_client_ip(request)):
        raise HTTPException(status_code=429, detail="Too many requests")


def decode_token_or_401(token: str) -> TokenData:
    try:
        return decode_access_token(token)
    except TokenExpired:
        raise HTTPException(status_code=401, detail="Token expired")
    except TokenInvalid:
        raise HTTPException(status_code=401, detail="Token invalid")


def get_token_data(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> TokenData:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return decode_token_or_401(credentials.credentials)


def get_identity(token_data: TokenData = Depends(get_token_data)) -> CallerIdentity:
    return token_data.identity
