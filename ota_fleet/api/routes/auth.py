import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ota_fleet.api.deps import get_client_ip, get_db, get_identity, login_limiter, rate_limit_login
from ota_fleet.models import User
from ota_fleet.schemas import LoginRequest, TokenResponse, UserCreateRequest, UserResponse
from ota_fleet.services import users
from ota_fleet.services.auth import CallerIdentity, create_access_token

router = APIRouter(prefix="/api/auth", tags=["auth"])

logger = logging.getLogger(__name__)


def serialize_user(user: User) -> UserResponse:
    return UserResponse(id=user.id, username=user.username, role=user.role)


@router.post("/login", response_model=TokenResponse, dependencies=[Depends(rate_limit_login)])
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)) -> TokenResponse:
    client_ip = get_client_ip(request)
    user = users.authenticate(db, payload.username, payload.password)
    if not user:
        failures = login_limiter.record_failure(client_ip)
        logger.warning("Failed login for %s from %s (%d in window)", payload.username, client_ip, failures)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    login_limiter.reset(client_ip)

    token, token_data = create_access_token(users.identity_for(user))
    return TokenResponse(access_token=token, expires_at=token_data.expires_at, user=serialize_user(user))


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreateRequest,
    identity: CallerIdentity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> UserResponse:
    user = users.create_user(db, payload.username, payload.password, payload.role, actor=identity)
    return serialize_user(user)


@router.get("/me", response_model=UserResponse)
def me(identity: CallerIdentity = Depends(get_identity)) -> UserResponse:
    return UserResponse(id=identity.user_id, username=identity.username, role=identity.role)
