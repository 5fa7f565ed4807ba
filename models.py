from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from catalog import EventKind, label_of


@dataclass(frozen=True)
class RawEvent:
    # Событие в том виде, в каком его вернул журнал компьютера.
    kind: EventKind
    timestamp: Any              # datetime или строка SystemTime
    host: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NormalizedEvent:
    # Единообразное событие: пользователь и Logon ID уже извлечены.
    kind: EventKind
    timestamp: datetime
    host: str
    username: Optional[str] = None
    session_token: Optional[str] = None


@dataclass(frozen=True)
class Session:
    # Восстановленная сессия пользователя на компьютере.
    host: str
    username: Optional[str]
    session_token: Optional[str]
    start_time: datetime
    start_kind: EventKind
    stop_time: Optional[datetime] = None
    stop_kind: Optional[EventKind] = None

    @property
    def is_open(self) -> bool:
        return self.stop_time is None

    @property
    def start_label(self) -> str:
        return label_of(self.start_kind)

    @property
    def stop_label(self) -> str:
        return label_of(self.stop_kind) if self.stop_kind is not None else ""

    def end_or(self, now: datetime) -> datetime:
        return self.stop_time if self.stop_time is not None else now

    def active_days(self, now: datetime) -> float:
        return round((self.end_or(now) - self.start_time).total_seconds() / 86400, 2)

    def active_minutes(self, now: datetime) -> float:
        return round((self.end_or(now) - self.start_time).total_seconds() / 60, 2)


@dataclass(frozen=True)
class ReportRow:
    # Строка итогового отчёта (одна на сессию).
    host: str
    username: str
    session_token: str
    start_time: datetime
    start_label: str
    stop_time: Optional[datetime]
    stop_label: str
    active_days: float
    active_minutes: float

    @classmethod
    def from_session(cls, session: Session, now: datetime) -> "ReportRow":
        return cls(
            host=session.host,
            username=session.username or "",
            session_token=session.session_token or "",
            start_time=session.start_time,
            start_label=session.start_label,
            stop_time=session.stop_time,
            stop_label=session.stop_label,
            active_days=session.active_days(now),
            active_minutes=session.active_minutes(now),
        )


@dataclass
class HostResult:
    # Итог обработки одного компьютера: сессии либо причина сбоя.
    host: str
    sessions: List[Session] = field(default_factory=list)
    error: Optional[str] = None
    skipped_events: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None
