import logging

from sqlalchemy.orm import Session

from ota_fleet.models import User, UserRole
from ota_fleet.services import audit
from ota_fleet.services.auth import USERS_MANAGE, CallerIdentity, hash_password, require_capability, verify_password
from ota_fleet.services.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
# bcrypt only accepts secrets up to 72 bytes
MAX_PASSWORD_BYTES = 72


def identity_for(user: User) -> CallerIdentity:
    return CallerIdentity(user_id=user.id, username=user.username, role=user.role)


def create_user(
    db: Session,
    username: str,
    password: str,
    role: UserRole,
    actor: CallerIdentity | None,
) -> User:
    """Create a user.

    ``actor`` must hold ``users:manage``; ``None`` is reserved for bootstrap
    scripts running with direct database access.
    """
    if actor is not None:
        require_capability(actor, USERS_MANAGE)

    username = username.strip()
    if not username:
        raise ValidationError("Username required", fields={"username": "must not be empty"})
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            "Password too short", fields={"password": f"at least {MIN_PASSWORD_LENGTH} characters"}
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            "Password too long", fields={"password": f"at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded"}
        )
    if db.query(User).filter(User.username == username).first():
        raise ConflictError("Username already exists")

    user = User(username=username, password_hash=hash_password(password), role=role)
    db.add(user)
    db.flush()
    audit.record(
        db,
        actor_id=actor.user_id if actor else user.id,
        action="user_create",
        target_type="user",
        target_id=user.id,
        details={"username": user.username, "role": user.role.value},
    )
    db.commit()
    db.refresh(user)
    logger.info("Created user %s (%s)", user.username, user.role.value)
    return user


def authenticate(db: Session, username: str, password: str) -> User | None:
    user = db.query(User).filter(User.username == username).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    audit.record(db, actor_id=user.id, action="login", target_type="user", target_id=user.id,
                 details={"username": username})
    db.commit()
    return user
