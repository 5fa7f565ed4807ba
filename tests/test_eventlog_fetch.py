import sys
import types

import pytest

from catalog import EventKind
from config_manager import Config
from errors import HostQueryError, HostUnreachableError, MalformedEvent
from eventlog import BATCH_SIZE, EventLogSource, _query_error, fetch_raw_events, parse_event_xml


def security_xml(event_id, user, logon_id, at="2025-11-10T08:00:00Z"):
    return (
        "<Event><System>"
        f"<EventID>{event_id}</EventID>"
        f'<TimeCreated SystemTime="{at}"/>'
        "<Channel>Security</Channel>"
        "</System><EventData>"
        f'<Data Name="TargetUserName">{user}</Data>'
        f'<Data Name="TargetLogonId">{logon_id}</Data>'
        '<Data Name="LogonType">2</Data>'
        "</EventData></Event>"
    )


BROKEN_XML = "<Event><System><EventID>4624</EventID>"

TEXT_EVENT_DATA_XML = """<Event>
  <System>
    <EventID>4647</EventID>
    <TimeCreated SystemTime="2025-11-10T10:00:00Z"/>
    <Channel>Security</Channel>
  </System>
  <EventData>junk</EventData>
</Event>"""


class FakeWinError(Exception):
    # Как pywintypes.error: (winerror, funcname, strerror).
    def __init__(self, winerror, funcname, strerror):
        super().__init__(winerror, funcname, strerror)
        self.winerror = winerror
        self.funcname = funcname
        self.strerror = strerror


class FakeEventLog:
    # Результат запроса отдаётся пачками; handle события = его XML.
    def __init__(self, pages=None, open_error=None, next_error=None):
        self.pages = list(pages or [])
        self.open_error = open_error
        self.next_error = next_error
        self.sessions = []
        self.queries = []
        self.next_calls = []

    def module(self):
        mod = types.ModuleType("win32evtlog")
        mod.EvtRpcLoginAuthDefault = 0
        mod.EvtRpcLogin = 1
        mod.EvtQueryChannelPath = 0x1
        mod.EvtQueryTolerateQueryErrors = 0x1000
        mod.EvtRenderEventXml = 1
        mod.EvtOpenSession = self.open_session
        mod.EvtQuery = self.query
        mod.EvtNext = self.next
        mod.EvtRender = self.render
        return mod

    def open_session(self, login, login_class, timeout, flags):
        if self.open_error:
            raise self.open_error
        self.sessions.append(login[0])
        return "session"

    def query(self, path, flags, query, session):
        self.queries.append((flags, query, session))
        return "result"

    def next(self, result_set, count, timeout, flags):
        self.next_calls.append((count, timeout))
        if self.next_error:
            raise self.next_error
        if not self.pages:
            return ()
        return tuple(self.pages.pop(0))

    def render(self, handle, flags):
        return handle


@pytest.fixture
def install(monkeypatch):
    def _install(fake):
        pywintypes = types.ModuleType("pywintypes")
        pywintypes.error = FakeWinError
        monkeypatch.setitem(sys.modules, "pywintypes", pywintypes)
        monkeypatch.setitem(sys.modules, "win32evtlog", fake.module())
        return fake
    return _install


def test_pages_are_read_until_empty(install):
    fake = install(FakeEventLog(pages=[
        [security_xml(4624, "alice", "0x1a01"), security_xml(4624, "DWM-1", "0x2")],
        [security_xml(4647, "alice", "0x1a01", at="2025-11-10T09:00:00Z")],
    ]))
    events = fetch_raw_events("ws01", Config())

    assert [e.kind for e in events] == [EventKind.LOGON, EventKind.LOGOFF]
    assert all(e.host == "ws01" for e in events)
    assert fake.sessions == ["ws01"]
    assert len(fake.next_calls) == 3
    assert all(count == BATCH_SIZE and timeout > 0 for count, timeout in fake.next_calls)
    flags, query, session = fake.queries[0]
    assert session == "session"
    assert query.startswith("<QueryList>")


def test_broken_record_is_skipped(install):
    install(FakeEventLog(pages=[[
        security_xml(4624, "alice", "0x1a01"),
        BROKEN_XML,
        TEXT_EVENT_DATA_XML,
    ]]))
    events = fetch_raw_events("ws01", Config())

    assert [e.kind for e in events] == [EventKind.LOGON, EventKind.LOGOFF]
    assert events[1].payload == {}


def test_expired_deadline_is_a_timeout(install):
    fake = install(FakeEventLog(pages=[[security_xml(4624, "alice", "0x1a01")]]))
    with pytest.raises(HostQueryError) as info:
        fetch_raw_events("ws01", Config(host_timeout_seconds=0))
    assert not isinstance(info.value, HostUnreachableError)
    assert info.value.host == "ws01"
    assert "время ожидания" in info.value.reason
    assert fake.next_calls == []


@pytest.mark.parametrize("code", [53, 1722, 1727, 1753])
def test_unreachable_codes(install, code):
    err = FakeWinError(code, "EvtOpenSession", "The RPC server is unavailable.")
    install(FakeEventLog(open_error=err))
    with pytest.raises(HostUnreachableError) as info:
        fetch_raw_events("ws02", Config())
    assert info.value.host == "ws02"
    assert info.value.reason == "The RPC server is unavailable."
    assert info.value.__cause__ is err


def test_timeout_code_from_evtnext(install):
    install(FakeEventLog(next_error=FakeWinError(1460, "EvtNext", "This operation returned because the timeout period expired.")))
    with pytest.raises(HostQueryError) as info:
        fetch_raw_events("ws01", Config())
    assert not isinstance(info.value, HostUnreachableError)
    assert info.value.reason == "превышено время ожидания ответа"


def test_other_codes_keep_system_message(install):
    install(FakeEventLog(open_error=FakeWinError(5, "EvtOpenSession", "Access is denied.")))
    with pytest.raises(HostQueryError) as info:
        fetch_raw_events("ws01", Config())
    assert not isinstance(info.value, HostUnreachableError)
    assert info.value.reason == "Access is denied."


def test_query_error_without_strerror():
    err = FakeWinError(1722, "EvtOpenSession", None)
    result = _query_error("ws01", err)
    assert isinstance(result, HostUnreachableError)
    assert result.reason == str(err)


def test_source_uses_its_config(install):
    fake = install(FakeEventLog(pages=[[security_xml(4624, "SYSTEM", "0x3e7")]]))
    source = EventLogSource(Config(max_workers=1))
    assert source("ws03") == []
    assert fake.sessions == ["ws03"]


def test_invalid_xml_is_malformed():
    with pytest.raises(MalformedEvent) as info:
        parse_event_xml(BROKEN_XML, "ws01")
    assert info.value.record == BROKEN_XML
    assert info.value.__cause__ is not None


def test_text_event_data_gives_empty_payload():
    raw = parse_event_xml(TEXT_EVENT_DATA_XML, "ws01")
    assert raw.kind == EventKind.LOGOFF
    assert raw.payload == {}
