import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from catalog import EventKind
from errors import MalformedEvent
from models import NormalizedEvent, RawEvent

logger = logging.getLogger(__name__)

# Поля EventData: сначала основное, затем запасное.
USER_FIELDS = ("TargetUserName", "AccountName")
TOKEN_FIELDS = ("TargetLogonId", "LogonID")

EMPTY_VALUES = ("", "-")

# Формат SystemTime: '2024-03-01T10:00:00.1234567Z'.
system_time_pattern = re.compile(
    r'^(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})'
    r'(?:\.(?P<frac>\d+))?'
    r'(?P<tz>Z|[+-]\d{2}:?\d{2})?$'
)


def parse_event_time(value: Any) -> datetime:
    # Время события в UTC. Наивные значения считаются UTC.
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if not isinstance(value, str):
        raise MalformedEvent(f"некорректное время события: {value!r}")

    m = system_time_pattern.match(value.strip())
    if not m:
        raise MalformedEvent(f"некорректное время события: {value!r}")

    data = m.groupdict()
    try:
        ts = datetime.strptime(data["base"].replace(" ", "T"), "%Y-%m-%dT%H:%M:%S")
    except ValueError as e:
        raise MalformedEvent(f"некорректное время события: {value!r}") from e

    frac = data.get("frac")
    if frac:
        ts = ts.replace(microsecond=int(frac[:6].ljust(6, "0")))

    tz = data.get("tz")
    if tz and tz != "Z":
        sign = 1 if tz[0] == "+" else -1
        digits = tz[1:].replace(":", "")
        offset = sign * (int(digits[:2]) * 60 + int(digits[2:]))
        return ts.replace(tzinfo=timezone.utc) - timedelta(minutes=offset)
    return ts.replace(tzinfo=timezone.utc)


def _first_present(payload: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text not in EMPTY_VALUES:
            return text
    return None


def extract_username(payload: Mapping[str, Any]) -> Optional[str]:
    return _first_present(payload, USER_FIELDS)


def extract_session_token(payload: Mapping[str, Any]) -> Optional[str]:
    return _first_present(payload, TOKEN_FIELDS)


def normalize(raw: RawEvent) -> NormalizedEvent:
    if not isinstance(raw.kind, EventKind):
        raise MalformedEvent(f"неизвестный вид события: {raw.kind!r}", raw)
    if not isinstance(raw.host, str) or not raw.host.strip():
        raise MalformedEvent("не указан компьютер", raw)
    if not isinstance(raw.payload, Mapping):
        raise MalformedEvent("данные события не являются словарём", raw)

    try:
        ts = parse_event_time(raw.timestamp)
    except MalformedEvent as e:
        raise MalformedEvent(e.reason, raw) from e

    return NormalizedEvent(
        kind=raw.kind,
        timestamp=ts,
        host=raw.host.strip(),
        username=extract_username(raw.payload),
        session_token=extract_session_token(raw.payload),
    )


def normalize_events(raw_events: Iterable[RawEvent]) -> Tuple[List[NormalizedEvent], int]:
    # Нормализация пачки событий; битые записи пропускаются.
    normalized: List[NormalizedEvent] = []
    skipped = 0
    for raw in raw_events:
        try:
            normalized.append(normalize(raw))
        except MalformedEvent as e:
            skipped += 1
            logger.warning("Пропущено событие %s: %s", getattr(raw, "host", "?"), e.reason)
    return normalized, skipped
