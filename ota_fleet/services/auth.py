from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import bcrypt
import jwt

from ota_fleet.config import get_settings
from ota_fleet.models import UserRole
from ota_fleet.services.errors import AuthorizationError
from ota_fleet.utils.time import utcnow

READ = "read"
DEVICES_WRITE = "devices:write"
FIRMWARE_WRITE = "firmware:write"
JOBS_WRITE = "jobs:write"
USERS_MANAGE = "users:manage"
AUDIT_READ = "audit:read"

_OPERATOR_CAPABILITIES = frozenset({READ, DEVICES_WRITE, FIRMWARE_WRITE, JOBS_WRITE})

ROLE_CAPABILITIES: dict[UserRole, frozenset[str]] = {
    UserRole.operator: _OPERATOR_CAPABILITIES,
    UserRole.admin: _OPERATOR_CAPABILITIES | {USERS_MANAGE, AUDIT_READ},
}


class TokenError(Exception):
    pass


class TokenExpired(TokenError):
    pass


class TokenInvalid(TokenError):
    pass


@dataclass(frozen=True)
class CallerIdentity:
    user_id: UUID
    username: str
    role: UserRole

    @property
    def capabilities(self) -> frozenset[str]:
        return ROLE_CAPABILITIES.get(self.role, frozenset())

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class TokenData:
    identity: CallerIdentity
    issued_at: datetime
    expires_at: datetime


def require_capability(identity: CallerIdentity, capability: str) -> None:
    if not identity.can(capability):
        raise AuthorizationError(f"Role '{identity.role.value}' lacks '{capability}'")


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(
    identity: CallerIdentity,
    issued_at: datetime | None = None,
    ttl_hours: int | None = None,
    secret: str | None = None,
    algorithm: str | None = None,
) -> tuple[str, TokenData]:
    settings = None
    issued_at = issued_at or utcnow()
    if ttl_hours is None or secret is None or algorithm is None:
        settings = get_settings()
    ttl_hours = ttl_hours if ttl_hours is not None else settings.token_ttl_hours
    expires_at = issued_at + timedelta(hours=ttl_hours)

    payload = {
        "sub": str(identity.user_id),
        "username": identity.username,
        "role": identity.role.value,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }

    token = jwt.encode(
        payload,
        secret or settings.jwt_secret,
        algorithm=algorithm or settings.jwt_algorithm,
    )
    return token, TokenData(identity=identity, issued_at=issued_at, expires_at=expires_at)


def decode_access_token(
    token: str,
    secret: str | None = None,
    algorithm: str | None = None,
) -> TokenData:
    settings = None
    if secret is None or algorithm is None:
        settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            secret or settings.jwt_secret,
            algorithms=[algorithm or settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpired("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenInvalid("Token invalid") from exc

    user_id = payload.get("sub")
    username = payload.get("username")
    role = payload.get("role")
    issued_at = payload.get("iat")
    expires_at = payload.get("exp")
    if not user_id or not username or not role or not issued_at or not expires_at:
        raise TokenInvalid("Token payload missing required claims")

    try:
        identity = CallerIdentity(user_id=UUID(user_id), username=username, role=UserRole(role))
    except ValueError as exc:
        raise TokenInvalid("Token payload malformed") from exc

    return TokenData(
        identity=identity,
        issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
    )
