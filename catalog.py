from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Role(Enum):
    START = "SessionStart"
    STOP = "SessionStop"


class EventKind(Enum):
    LOGON = "Logon"
    LOGOFF = "Logoff"
    STARTUP = "Startup"
    RDP_RECONNECT = "RdpReconnect"
    RDP_DISCONNECT = "RdpDisconnect"
    LOCKED = "Locked"
    UNLOCKED = "Unlocked"


SECURITY_LOG = "Security"
SYSTEM_LOG = "System"


@dataclass(frozen=True)
class EventSpec:
    # Описание вида события: подпись в отчёте, роль, журнал и код события.
    kind: EventKind
    label: str
    role: Role
    log: str
    source_id: int


# Реестр видов событий. Новый вид = новая строка таблицы.
EVENT_TABLE: Tuple[EventSpec, ...] = (
    EventSpec(EventKind.LOGON, "Logon", Role.START, SECURITY_LOG, 4624),
    EventSpec(EventKind.LOGOFF, "Logoff", Role.STOP, SECURITY_LOG, 4647),
    EventSpec(EventKind.STARTUP, "Startup", Role.STOP, SYSTEM_LOG, 6005),
    EventSpec(EventKind.RDP_RECONNECT, "RdpSessionReconnect", Role.START, SECURITY_LOG, 4778),
    EventSpec(EventKind.RDP_DISCONNECT, "RdpSessionDisconnect", Role.STOP, SECURITY_LOG, 4779),
    EventSpec(EventKind.LOCKED, "Locked", Role.STOP, SECURITY_LOG, 4800),
    EventSpec(EventKind.UNLOCKED, "Unlocked", Role.START, SECURITY_LOG, 4801),
)

_BY_KIND: Dict[EventKind, EventSpec] = {spec.kind: spec for spec in EVENT_TABLE}
_BY_SOURCE: Dict[Tuple[str, int], EventKind] = {
    (spec.log, spec.source_id): spec.kind for spec in EVENT_TABLE
}


def role_of(kind: EventKind) -> Role:
    return _BY_KIND[kind].role


def log_of(kind: EventKind) -> str:
    return _BY_KIND[kind].log


def source_id_of(kind: EventKind) -> int:
    return _BY_KIND[kind].source_id


def label_of(kind: EventKind) -> str:
    return _BY_KIND[kind].label


def kind_from_source_id(log: str, source_id: int) -> Optional[EventKind]:
    # Обратный поиск: (журнал, код события) -> вид события.
    return _BY_SOURCE.get((log, source_id))


def kinds_for_log(log: str) -> List[EventKind]:
    return [spec.kind for spec in EVENT_TABLE if spec.log == log]


def source_logs() -> List[str]:
    # Журналы в порядке первого появления в таблице.
    logs: List[str] = []
    for spec in EVENT_TABLE:
        if spec.log not in logs:
            logs.append(spec.log)
    return logs
