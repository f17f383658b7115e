"""
Access control: token issuing/verification, role and ownership checks.

The FastAPI dependencies at the bottom wrap the plain functions so routers
can declare `identity: Identity = Depends(get_current_user)`.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jwt import ExpiredSignatureError, InvalidTokenError
from pymongo.database import Database

from database import get_db
from errors import (
    ExpiredCredential,
    InvalidCredential,
    MissingCredential,
    NotOwner,
    RoleNotPermitted,
    Unauthorized,
    UnknownOrInactiveSubject,
)
from schemas import ALL_ROLES, Role
from settings import get_settings
from users import get_user_by_id

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


@dataclass
class Identity:
    id: str
    email: str
    role: Role
    user: dict = field(repr=False)


def issue_token(user_id: str, now: Optional[datetime] = None) -> str:
    settings = get_settings()
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + timedelta(days=settings.token_expire_days),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> str:
    """Verify a token and return its subject id."""
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise ExpiredCredential()
    except InvalidTokenError:
        raise InvalidCredential()
    user_id = payload.get("sub")
    if not user_id:
        raise InvalidCredential()
    return user_id


def authenticate(db: Database, token: Optional[str]) -> Identity:
    if not token:
        raise MissingCredential()
    user_id = decode_token(token)
    user = get_user_by_id(db, user_id)
    if user is None or not user.get("is_active", True):
        raise UnknownOrInactiveSubject()
    role = Role(user.get("role") or Role.ADMINISTRATOR.value)
    return Identity(id=str(user["_id"]), email=user.get("email", ""), role=role, user=user)


def authenticate_optional(db: Database, token: Optional[str]) -> Optional[Identity]:
    try:
        return authenticate(db, token)
    except Unauthorized:
        return None


def require_role(identity: Identity, allowed_roles: Iterable[Role]) -> Identity:
    allowed = [Role(r) for r in allowed_roles]
    if identity.role not in allowed:
        raise RoleNotPermitted(
            f"Role '{identity.role.value}' not authorized. Required roles: "
            + ", ".join(r.value for r in allowed)
        )
    return identity


def require_ownership(identity: Identity, resource_owner_id: Optional[str]) -> Identity:
    if resource_owner_id and resource_owner_id != identity.id:
        raise NotOwner()
    return identity


# ----------------------
# FastAPI dependencies
# ----------------------
def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Identity:
    return authenticate(db, token)


def get_optional_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Optional[Identity]:
    return authenticate_optional(db, token)


class RoleChecker:
    def __init__(self, allowed_roles: Iterable[Role] = ALL_ROLES):
        self.allowed_roles = tuple(allowed_roles)

    def __call__(self, identity: Identity = Depends(get_current_user)) -> Identity:
        return require_role(identity, self.allowed_roles)


def owner_path_guard(user_id: str, identity: Identity = Depends(get_current_user)) -> Identity:
    return require_ownership(identity, user_id)
