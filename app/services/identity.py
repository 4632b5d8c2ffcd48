"""Signed-in identity, as handed to us by the hosted identity provider."""
import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from ..errors import AuthRequired

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "dev-secret-change")
JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")


class Identity(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None


def identity_from_token(token: str) -> Identity:
    """Verifies a provider-issued access token and returns its identity."""
    try:
        payload = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError:
        raise AuthRequired("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthRequired("Invalid token")
    metadata = payload.get("user_metadata") or {}
    return Identity(
        id=str(user_id),
        email=payload.get("email"),
        full_name=metadata.get("full_name"),
    )


def create_access_token(identity: Identity, expires_in_seconds: Optional[int] = None) -> str:
    """Issues a token the way the provider does. Used for local runs and tests."""
    claims = {"sub": identity.id}
    if identity.email:
        claims["email"] = identity.email
    if identity.full_name:
        claims["user_metadata"] = {"full_name": identity.full_name}
    if expires_in_seconds is not None:
        claims["exp"] = datetime.now(timezone.utc) + timedelta(seconds=expires_in_seconds)
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


class IdentityService:
    """Holds the current identity for one session.

    Other services only ask two things of it: is somebody signed in, and who.
    """

    def __init__(self, identity: Optional[Identity] = None) -> None:
        self._identity = identity
        self._sign_out_listeners: List[Callable[[], None]] = []

    @property
    def current(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    def require(self) -> Identity:
        if self._identity is None:
            raise AuthRequired()
        return self._identity

    def sign_in(self, identity: Identity) -> None:
        self._identity = identity
        logger.info(f"👤 Signed in: {identity.id}")

    def on_sign_out(self, listener: Callable[[], None]) -> None:
        self._sign_out_listeners.append(listener)

    def sign_out(self) -> None:
        if self._identity is None:
            return
        logger.info(f"👋 Signed out: {self._identity.id}")
        self._identity = None
        for listener in self._sign_out_listeners:
            listener()
