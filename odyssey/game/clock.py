"""Wall-clock helpers shared by the mission services."""
import random
from datetime import datetime, timedelta, timezone

from odyssey.game import constants as C

# Sorts after every real timestamp; used for options nobody has voted for.
FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def after_ms(now: datetime, ms: int) -> datetime:
    return now + timedelta(milliseconds=ms)


def epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def clamp100(n: float) -> int:
    return max(0, min(100, round(n)))


def generate_mission_id(rng: random.Random | None = None) -> str:
    num = (rng or random).randrange(1_000_000)
    return f"{C.MISSION_ID_PREFIX}{num:06d}"
