from datetime import datetime, timedelta, timezone

import pytest

from catalog import EventKind
from errors import DirectoryResolutionError, HostQueryError, HostUnreachableError
from models import RawEvent
from orchestrator import audit_policy, build_report, collect_sessions, process_host

NOW = datetime(2025, 11, 10, 12, 0, tzinfo=timezone.utc)


def raw(kind, hours_ago, token, host="ws01", user="alice"):
    ts = NOW - timedelta(hours=hours_ago)
    return RawEvent(kind, ts.strftime("%Y-%m-%dT%H:%M:%S.0000000Z"), host,
                    {"TargetUserName": user, "TargetLogonId": token})


class FakeSource:
    def __init__(self, events, failures=None):
        self.events = events
        self.failures = failures or {}
        self.calls = []

    def __call__(self, host):
        self.calls.append(host)
        if host in self.failures:
            raise self.failures[host]
        return self.events.get(host, [])


def test_process_host_success():
    source = FakeSource({"ws01": [
        raw(EventKind.LOGON, 3, "0x1"),
        raw(EventKind.LOGOFF, 2, "0x1"),
        RawEvent(EventKind.LOGOFF, "broken", "ws01", {}),
        raw(EventKind.LOGON, 1, "0x2"),
    ]})
    result = process_host("ws01", source, NOW)
    assert result.ok
    assert result.skipped_events == 1
    assert len(result.sessions) == 2


def test_process_host_query_failure_is_captured():
    source = FakeSource({}, {"ws02": HostUnreachableError("ws02", "The RPC server is unavailable.")})
    result = process_host("ws02", source, NOW)
    assert not result.ok
    assert result.error == "The RPC server is unavailable."
    assert result.sessions == []


def test_process_host_unexpected_failure_is_captured():
    source = FakeSource({}, {"ws03": RuntimeError("boom")})
    result = process_host("ws03", source, NOW)
    assert not result.ok
    assert result.error == "boom"


def test_empty_host_yields_no_sessions():
    result = process_host("ws04", FakeSource({}), NOW)
    assert result.ok
    assert result.sessions == []


def test_collect_sessions_keeps_host_order_and_isolates_failures():
    source = FakeSource(
        {
            "a": [raw(EventKind.LOGON, 1, "0x1", host="a")],
            "c": [raw(EventKind.LOGON, 2, "0x1", host="c")],
        },
        {"b": HostQueryError("b", "Access is denied.")},
    )
    results = collect_sessions(["a", "b", "c", "a"], source, now=NOW, max_workers=3)
    assert [r.host for r in results] == ["a", "b", "c"]
    assert [r.ok for r in results] == [True, False, True]
    assert sorted(source.calls) == ["a", "b", "c"]


def test_collect_sessions_no_hosts():
    assert collect_sessions([], FakeSource({}), now=NOW) == []


def test_build_report_rows():
    source = FakeSource(
        {"ws01": [
            raw(EventKind.LOGON, 3, "0x1", user="bob"),
            raw(EventKind.LOGOFF, 2.5, "0x1", user="bob"),
            raw(EventKind.LOGON, 2, "0x2"),
        ]},
        {"ws02": HostUnreachableError("ws02", "down")},
    )
    results = collect_sessions(["ws01", "ws02"], source, now=NOW)
    rows = build_report(results, NOW)
    assert len(rows) == 2
    closed, current = rows
    assert closed.username == "bob"
    assert closed.start_label == "Logon"
    assert closed.stop_label == "Logoff"
    assert closed.active_minutes == 30.00
    assert closed.active_days == 0.02
    assert current.stop_time is None
    assert current.stop_label == ""
    assert current.active_minutes == 120.00


def test_audit_policy_resolves_then_collects():
    source = FakeSource({"ws01": [raw(EventKind.LOGON, 1, "0x1")]})
    results = audit_policy("Workstations", lambda name: ["ws01"], source, now=NOW)
    assert [r.host for r in results] == ["ws01"]


def test_audit_policy_directory_failure_aborts():
    def resolver(name):
        raise DirectoryResolutionError("групповая политика не найдена")

    source = FakeSource({})
    with pytest.raises(DirectoryResolutionError):
        audit_policy("Missing", resolver, source, now=NOW)
    assert source.calls == []
