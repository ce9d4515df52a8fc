"""Bearer tokens naming the acting user.

Tokens are issued by whatever fronts the game (or by tests) and carry the
username in ``sub`` and the moderator flag in ``mod``.
"""
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from odyssey.config import get_settings


def create_access_token(claims: dict, expires_minutes: int | None = None) -> str:
    settings = get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.JWT_EXPIRE_MINUTES
    payload = {**claims, "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes)}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_actor_token(username: str, is_moderator: bool = False) -> str:
    return create_access_token({"sub": username, "mod": is_moderator})


def decode_access_token(token: str) -> dict | None:
    """Return the claims, or ``None`` for a bad signature or an expired token."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
