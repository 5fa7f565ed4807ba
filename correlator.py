from datetime import datetime
from typing import List, Optional, Sequence, Set, Tuple

from catalog import EventKind, Role, role_of
from models import NormalizedEvent, Session


def find_most_recent_start(starts: Sequence[NormalizedEvent]) -> Optional[int]:
    # Индекс старта с наибольшим временем; при равенстве берётся первый по порядку.
    best: Optional[int] = None
    for idx, ev in enumerate(starts):
        if best is None or ev.timestamp > starts[best].timestamp:
            best = idx
    return best


def next_start_time(start: NormalizedEvent, starts: Sequence[NormalizedEvent]) -> Optional[datetime]:
    # Время следующего старта с тем же Logon ID: дальше события принадлежат ему.
    if not start.session_token:
        return None
    following = [
        ev.timestamp for ev in starts
        if ev.session_token == start.session_token and ev.timestamp > start.timestamp
    ]
    return min(following) if following else None


def find_effective_stop(start: NormalizedEvent,
                        stops: Sequence[NormalizedEvent],
                        until: Optional[datetime] = None) -> Optional[NormalizedEvent]:
    # Событие, завершившее сессию start, либо None.
    # until: граница окна (следующий старт с тем же Logon ID), не включается.
    if not start.session_token:
        return None

    earliest: Optional[NormalizedEvent] = None
    locks: List[NormalizedEvent] = []
    for ev in stops:
        if ev.session_token != start.session_token or ev.timestamp <= start.timestamp:
            continue
        if until is not None and ev.timestamp >= until:
            continue
        if ev.kind == EventKind.LOCKED:
            locks.append(ev)
        elif earliest is None or ev.timestamp < earliest.timestamp:
            earliest = ev

    # Последняя блокировка перед завершающим событием важнее самого завершения.
    last_lock: Optional[NormalizedEvent] = None
    for ev in locks:
        if earliest is not None and ev.timestamp >= earliest.timestamp:
            continue
        if last_lock is None or ev.timestamp > last_lock.timestamp:
            last_lock = ev

    return last_lock if last_lock is not None else earliest


def correlate(events: Sequence[NormalizedEvent], now: datetime) -> List[Session]:
    # Восстановление сессий одного компьютера по набору его событий.
    # now не сохраняется в сессиях: открытая сессия остаётся без stop_time.
    starts = [ev for ev in events if role_of(ev.kind) == Role.START]
    stops = [ev for ev in events if role_of(ev.kind) == Role.STOP]

    most_recent = find_most_recent_start(starts)

    sessions: List[Tuple[int, Session]] = []
    seen: Set[Tuple[str, Optional[str], datetime]] = set()
    for idx, start in enumerate(starts):
        key = (start.host, start.session_token, start.timestamp)
        if key in seen:
            continue

        if idx == most_recent:
            stop = None
        else:
            stop = find_effective_stop(start, stops, next_start_time(start, starts))
            if stop is None:
                # Старт без завершения и не последний: сессию не угадываем.
                continue

        seen.add(key)
        sessions.append((idx, Session(
            host=start.host,
            username=start.username or (stop.username if stop else None),
            session_token=start.session_token,
            start_time=start.timestamp,
            start_kind=start.kind,
            stop_time=stop.timestamp if stop else None,
            stop_kind=stop.kind if stop else None,
        )))

    sessions.sort(key=lambda item: (item[1].start_time, item[0]))
    return [s for _, s in sessions]
