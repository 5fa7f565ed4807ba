from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from catalog import EventKind
from errors import HostUnreachableError
from models import RawEvent

DEMO_HOSTS = ["ws01.corp.example.com", "ws02.corp.example.com", "ws03.corp.example.com"]
DEMO_UNREACHABLE = ("ws03.corp.example.com",)


def _system_time(ts: datetime) -> str:
    # Формат журнала Windows: '2025-11-10T13:55:36.1234567Z'.
    return ts.strftime("%Y-%m-%dT%H:%M:%S.%f") + "0Z"


def _logon(host: str, ts: datetime, user: str, logon_id: str, logon_type: str = "2") -> RawEvent:
    return RawEvent(EventKind.LOGON, _system_time(ts), host, {
        "TargetUserName": user,
        "TargetDomainName": "CORP",
        "TargetLogonId": logon_id,
        "LogonType": logon_type,
    })


def _target(kind: EventKind, host: str, ts: datetime, user: str, logon_id: str) -> RawEvent:
    # Logoff / Locked / Unlocked: поля Target*.
    return RawEvent(kind, _system_time(ts), host, {
        "TargetUserName": user,
        "TargetDomainName": "CORP",
        "TargetLogonId": logon_id,
    })


def _rdp(kind: EventKind, host: str, ts: datetime, user: str, logon_id: str) -> RawEvent:
    # Переподключение / отключение RDP: поля Account* и LogonID.
    return RawEvent(kind, _system_time(ts), host, {
        "AccountName": user,
        "AccountDomain": "CORP",
        "LogonID": logon_id,
        "ClientName": "LAPTOP-" + user.upper(),
        "ClientAddress": "10.0.0.15",
    })


def _workday_scenario(host: str, base: datetime) -> List[RawEvent]:
    # Вход, блокировка, разблокировка, выход; затем RDP-сессия, которая ещё идёт.
    h = timedelta(hours=1)
    return [
        _rdp(EventKind.RDP_RECONNECT, host, base - 1 * h, "bob", "0x2b02"),
        _target(EventKind.LOGOFF, host, base - 6 * h, "alice", "0x1a01"),
        _logon(host, base - 9 * h, "alice", "0x1a01"),
        _target(EventKind.LOCKED, host, base - 8 * h, "alice", "0x1a01"),
        _target(EventKind.UNLOCKED, host, base - 7.5 * h, "alice", "0x1a01"),
        _logon(host, base - 3 * h, "bob", "0x2b02", logon_type="10"),
        _rdp(EventKind.RDP_DISCONNECT, host, base - 2 * h, "bob", "0x2b02"),
    ]


def _restart_scenario(host: str, base: datetime) -> List[RawEvent]:
    # Перезагрузка, короткая сессия, повреждённая запись и текущая сессия.
    h = timedelta(hours=1)
    return [
        RawEvent(EventKind.STARTUP, _system_time(base - 12 * h), host, {}),
        _logon(host, base - 11 * h, "carol", "0x3c03"),
        _target(EventKind.LOGOFF, host, base - 10 * h, "carol", "0x3c03"),
        RawEvent(EventKind.LOGOFF, "not-a-time", host, {"TargetLogonId": "0x3c03"}),
        _logon(host, base - 5 * h, "carol", "0x3c04"),
    ]


SCENARIOS = (_workday_scenario, _restart_scenario)


def generate_demo_events(hosts: Sequence[str], base_time: Optional[datetime] = None) -> Dict[str, List[RawEvent]]:
    # Учебные события для набора компьютеров; сценарии чередуются.
    base = base_time or datetime.now(timezone.utc)
    return {host: SCENARIOS[i % len(SCENARIOS)](host, base) for i, host in enumerate(hosts)}


class DemoEventSource:
    # Источник событий без домена: для обучения и проверки интерфейса.
    def __init__(self,
                 hosts: Sequence[str] = DEMO_HOSTS,
                 base_time: Optional[datetime] = None,
                 unreachable: Sequence[str] = DEMO_UNREACHABLE):
        self.hosts = list(hosts)
        self.unreachable = set(unreachable)
        self.events = generate_demo_events(self.hosts, base_time)

    def resolve(self, policy_name: str) -> List[str]:
        return list(self.hosts)

    def __call__(self, host: str) -> List[RawEvent]:
        if host in self.unreachable:
            raise HostUnreachableError(host, "The RPC server is unavailable.")
        return list(self.events.get(host, []))
