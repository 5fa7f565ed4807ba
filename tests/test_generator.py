from datetime import datetime, timezone

from catalog import EventKind
from generator import DEMO_HOSTS, DemoEventSource, generate_demo_events
from orchestrator import audit_policy, build_report

BASE = datetime(2025, 11, 10, 18, 0, tzinfo=timezone.utc)


def test_scenarios_alternate_between_hosts():
    events = generate_demo_events(["a", "b", "c"], BASE)
    assert set(events) == {"a", "b", "c"}
    assert any(e.kind == EventKind.STARTUP for e in events["b"])
    assert not any(e.kind == EventKind.STARTUP for e in events["a"])
    assert all(e.host == "a" for e in events["a"])


def test_demo_run_end_to_end():
    demo = DemoEventSource(base_time=BASE)
    results = audit_policy("Demo", demo.resolve, demo, now=BASE)
    by_host = {r.host: r for r in results}
    assert [r.host for r in results] == DEMO_HOSTS

    ws01 = by_host["ws01.corp.example.com"]
    assert ws01.ok
    assert [(s.username, s.start_kind, s.stop_kind) for s in ws01.sessions] == [
        ("alice", EventKind.LOGON, EventKind.LOCKED),
        ("alice", EventKind.UNLOCKED, EventKind.LOGOFF),
        ("bob", EventKind.LOGON, EventKind.RDP_DISCONNECT),
        ("bob", EventKind.RDP_RECONNECT, None),
    ]

    ws02 = by_host["ws02.corp.example.com"]
    assert ws02.ok
    assert ws02.skipped_events == 1
    assert [s.session_token for s in ws02.sessions] == ["0x3c03", "0x3c04"]

    ws03 = by_host["ws03.corp.example.com"]
    assert not ws03.ok

    rows = build_report(results, BASE)
    assert len(rows) == 6
    assert sum(1 for r in rows if r.stop_time is None) == 2
