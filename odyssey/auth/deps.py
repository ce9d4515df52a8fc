from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from odyssey.auth.jwt import decode_access_token

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    username: str
    is_moderator: bool = False


def actor_from_payload(payload: dict | None) -> Actor | None:
    if payload is None:
        return None
    username = payload.get("sub")
    if not username:
        return None
    return Actor(username=username, is_moderator=bool(payload.get("mod", False)))


async def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Actor:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    actor = actor_from_payload(decode_access_token(credentials.credentials))
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return actor
