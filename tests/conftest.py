from datetime import datetime, timedelta, timezone

import pytest

from catalog import EventKind
from models import NormalizedEvent

BASE = datetime(2025, 11, 10, 0, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    return BASE + timedelta(hours=hour, minutes=minute)


def event(kind: EventKind, ts: datetime, token=None, user=None, host="ws01") -> NormalizedEvent:
    return NormalizedEvent(kind=kind, timestamp=ts, host=host, username=user, session_token=token)


@pytest.fixture
def now() -> datetime:
    return at(12)
