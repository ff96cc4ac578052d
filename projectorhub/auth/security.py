import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import settings
from ..errors import UnauthorizedError
from ..models.models import ROLE_ADMIN, ROLE_FIELD_WORKER


http_bearer = HTTPBearer(auto_error=False)

ROLES = (ROLE_ADMIN, ROLE_FIELD_WORKER)


@dataclass(frozen=True)
class Actor:
    """Signed-in caller as asserted by the identity service."""
    id: uuid.UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def ensure_role(actor: Optional[Actor], *allowed: str) -> Actor:
    if actor is None or actor.role not in allowed:
        raise UnauthorizedError(f"Requires role: {' or '.join(allowed)}")
    return actor


def create_access_token(user_id: str, role: str, ttl_seconds: Optional[int] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds or settings.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_actor(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Actor:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    try:
        actor_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    role = payload.get("role")
    if role not in ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid role")
    return Actor(id=actor_id, role=role)


def require_roles(*required_roles: str):
    def _dep(actor: Actor = Depends(get_current_actor)):
        return ensure_role(actor, *required_roles)

    return _dep
