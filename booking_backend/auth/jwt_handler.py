from datetime import datetime, timedelta, timezone

import jwt

from booking_backend.core import config
from booking_backend.core.actor import Actor, ActorRole


def create_access_token(actor: Actor, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {
        "sub": str(actor.actor_id),
        "role": actor.role.value,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def actor_from_claims(payload: dict) -> Actor:
    """Raises ValueError when the claims do not name a known role and id."""
    return Actor(role=ActorRole(str(payload.get("role", "")).upper()), actor_id=int(payload["sub"]))
