import logging
import time
from typing import Any, Dict, Iterable, List, Optional
from xml.parsers.expat import ExpatError
from xml.sax.saxutils import escape

import xmltodict

from catalog import EventKind, kind_from_source_id, log_of, source_id_of, source_logs
from config_manager import Config
from errors import HostQueryError, HostUnreachableError, MalformedEvent
from models import RawEvent
from normalizer import extract_username

logger = logging.getLogger(__name__)

# Интерактивный вход и вход по RDP.
INTERACTIVE_LOGON_TYPES = ("2", "10")

BATCH_SIZE = 100
# Коды Win32, означающие, что до компьютера не достучаться.
UNREACHABLE_ERRORS = {
    53,     # ERROR_BAD_NETPATH
    1722,   # RPC_S_SERVER_UNAVAILABLE
    1727,   # RPC_S_CALL_FAILED_DNE
    1753,   # EPT_S_NOT_REGISTERED
}
ERROR_TIMEOUT = 1460


def _event_id_condition(kind: EventKind) -> str:
    if kind == EventKind.LOGON:
        logon_types = " or ".join(f"Data[@Name='LogonType']='{t}'" for t in INTERACTIVE_LOGON_TYPES)
        return f"(System[EventID={source_id_of(kind)}] and EventData[{logon_types}])"
    return f"System[EventID={source_id_of(kind)}]"


def build_query(kinds: Iterable[EventKind], lookback_days: int = 0) -> str:
    # Структурированный запрос: по одному <Select> на журнал.
    kinds = list(kinds)
    time_filter = ""
    if lookback_days > 0:
        ms = lookback_days * 24 * 3600 * 1000
        time_filter = f" and System[TimeCreated[timediff(@SystemTime) &lt;= {ms}]]"

    selects = []
    for log in source_logs():
        log_kinds = [k for k in kinds if log_of(k) == log]
        if not log_kinds:
            continue
        conditions = " or ".join(_event_id_condition(k) for k in log_kinds)
        xpath = escape(f"*[({conditions})") + time_filter + "]"
        selects.append(f'<Select Path="{log}">{xpath}</Select>')

    return '<QueryList><Query Id="0">' + "".join(selects) + "</Query></QueryList>"


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _text(value: Any) -> Optional[str]:
    # xmltodict: '<X>v</X>' -> 'v', '<X a="1">v</X>' -> {'@a': '1', '#text': 'v'}.
    if isinstance(value, dict):
        return value.get("#text")
    return value


def parse_event_data(event: Dict[str, Any]) -> Dict[str, str]:
    data: Dict[str, str] = {}
    event_data = event.get("EventData")
    if not isinstance(event_data, dict):
        return data
    for item in _as_list(event_data.get("Data")):
        if isinstance(item, dict) and "@Name" in item:
            data[item["@Name"]] = item.get("#text") or ""
    return data


def parse_event_xml(xml_text: str, host: str) -> Optional[RawEvent]:
    # XML одного события -> RawEvent; события вне каталога -> None.
    try:
        doc = xmltodict.parse(xml_text)
    except ExpatError as e:
        raise MalformedEvent(f"некорректный XML события: {e}", xml_text) from e

    event = doc.get("Event")
    if not isinstance(event, dict):
        raise MalformedEvent("нет элемента Event", xml_text)
    system = event.get("System")
    if not isinstance(system, dict):
        raise MalformedEvent("нет элемента System", xml_text)

    try:
        event_id = int(_text(system.get("EventID")))
    except (TypeError, ValueError):
        return None

    kind = kind_from_source_id(system.get("Channel") or "", event_id)
    if kind is None:
        return None

    time_created = system.get("TimeCreated")
    return RawEvent(
        kind=kind,
        timestamp=time_created.get("@SystemTime") if isinstance(time_created, dict) else None,
        host=host,
        payload=parse_event_data(event),
    )


def is_relevant(raw: RawEvent, config: Config) -> bool:
    # Системные псевдоучётки (DWM-1, UMFD-0, SYSTEM, учётки компьютеров) не интересны.
    username = extract_username(raw.payload)
    if username is None:
        return True
    upper = username.upper()
    if any(upper.startswith(p.upper()) for p in config.excluded_account_prefixes):
        return False
    if upper in (a.upper() for a in config.excluded_accounts):
        return False
    return not username.endswith("$")


def _query_error(host: str, error: Any) -> HostQueryError:
    code = getattr(error, "winerror", None)
    message = getattr(error, "strerror", None) or str(error)
    if code in UNREACHABLE_ERRORS:
        return HostUnreachableError(host, message)
    if code == ERROR_TIMEOUT:
        return HostQueryError(host, "превышено время ожидания ответа")
    return HostQueryError(host, message)


def fetch_raw_events(host: str, config: Config) -> List[RawEvent]:
    # Чтение журналов удалённого компьютера через Windows Event Log API.
    import pywintypes
    import win32evtlog

    query = build_query(list(EventKind), config.lookback_days)
    deadline = time.monotonic() + config.host_timeout_seconds
    events: List[RawEvent] = []

    try:
        session = win32evtlog.EvtOpenSession(
            (host, None, None, None, win32evtlog.EvtRpcLoginAuthDefault),
            win32evtlog.EvtRpcLogin, 0, 0,
        )
        result_set = win32evtlog.EvtQuery(
            None,
            win32evtlog.EvtQueryChannelPath | win32evtlog.EvtQueryTolerateQueryErrors,
            query,
            session,
        )
        while True:
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                raise HostQueryError(host, "превышено время ожидания ответа")
            handles = win32evtlog.EvtNext(result_set, BATCH_SIZE, remaining_ms, 0)
            if not handles:
                break
            for handle in handles:
                xml_text = win32evtlog.EvtRender(handle, win32evtlog.EvtRenderEventXml)
                try:
                    raw = parse_event_xml(xml_text, host)
                except MalformedEvent as e:
                    logger.warning("%s: пропущено событие: %s", host, e.reason)
                    continue
                if raw is not None and is_relevant(raw, config):
                    events.append(raw)
            logger.debug("%s: прочитано событий %d", host, len(events))
    except pywintypes.error as e:
        raise _query_error(host, e) from e

    return events


class EventLogSource:
    # Адаптер для orchestrator: source(host) -> список RawEvent.
    def __init__(self, config: Config):
        self.config = config

    def __call__(self, host: str) -> List[RawEvent]:
        return fetch_raw_events(host, self.config)
