import logging
from typing import Any, Dict, List, Optional

from ldap3 import Connection, NTLM, SIMPLE, SUBTREE, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from config_manager import Config
from errors import DirectoryResolutionError

logger = logging.getLogger(__name__)

PAGE_SIZE = 500
PAGED_RESULTS_OID = "1.2.840.113556.1.4.319"
ACCOUNTDISABLE = 0x2

COMPUTER_FILTER = "(objectCategory=computer)"


def connect(config: Config, password: Optional[str] = None) -> Connection:
    # Подключение к контроллеру домена. 'DOMAIN\\user' -> NTLM, иначе simple bind.
    if not config.domain_controller:
        raise DirectoryResolutionError("не указан контроллер домена")
    authentication = NTLM if "\\" in config.bind_user else SIMPLE
    try:
        server = Server(config.domain_controller, use_ssl=config.use_ssl)
        return Connection(
            server,
            user=config.bind_user or None,
            password=password,
            authentication=authentication,
            auto_bind=True,
        )
    except LDAPException as e:
        raise DirectoryResolutionError(f"не удалось подключиться к {config.domain_controller}: {e}") from e


def _first(value: Any) -> Any:
    # ldap3 без схемы отдаёт списки даже для однозначных атрибутов.
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _search_all(conn: Connection, base: str, search_filter: str, attributes: List[str]) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    cookie = None
    while True:
        conn.search(
            search_base=base,
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=attributes,
            paged_size=PAGE_SIZE,
            paged_cookie=cookie,
        )
        entries.extend(e for e in (conn.response or []) if e.get("type") == "searchResEntry")
        controls = (conn.result or {}).get("controls") or {}
        cookie = controls.get(PAGED_RESULTS_OID, {}).get("value", {}).get("cookie")
        if not cookie:
            break
    return entries


def find_policy_guid(conn: Connection, base_dn: str, policy_name: str) -> str:
    # GUID объекта групповой политики по отображаемому имени: '{31B2F340-...}'.
    policies_dn = f"CN=Policies,CN=System,{base_dn}"
    search_filter = f"(&(objectClass=groupPolicyContainer)(displayName={escape_filter_chars(policy_name)}))"
    entries = _search_all(conn, policies_dn, search_filter, ["cn", "displayName"])
    if not entries:
        raise DirectoryResolutionError(f"групповая политика не найдена: {policy_name}")
    if len(entries) > 1:
        logger.warning("Найдено несколько политик с именем %s, используется первая", policy_name)
    guid = _first(entries[0]["attributes"].get("cn"))
    if not guid:
        raise DirectoryResolutionError(f"у политики {policy_name} нет атрибута cn")
    return str(guid)


def find_linked_scopes(conn: Connection, base_dn: str, guid: str) -> List[str]:
    # Подразделения (и корень домена), к которым привязана политика.
    search_filter = f"(gPLink=*{escape_filter_chars(guid)}*)"
    entries = _search_all(conn, base_dn, search_filter, ["distinguishedName"])
    return [e["dn"] for e in entries]


def find_enabled_computers(conn: Connection, scope_dn: str) -> List[str]:
    hosts: List[str] = []
    entries = _search_all(conn, scope_dn, COMPUTER_FILTER, ["dNSHostName", "name", "userAccountControl"])
    for entry in entries:
        attrs = entry.get("attributes", {})
        uac = _first(attrs.get("userAccountControl")) or 0
        if int(uac) & ACCOUNTDISABLE:
            continue
        host = _first(attrs.get("dNSHostName")) or _first(attrs.get("name"))
        if host:
            hosts.append(str(host))
    return hosts


def resolve_policy_hosts(conn: Connection, base_dn: str, policy_name: str) -> List[str]:
    # Имя политики -> отсортированный список включённых компьютеров.
    try:
        guid = find_policy_guid(conn, base_dn, policy_name)
        scopes = find_linked_scopes(conn, base_dn, guid)
        if not scopes:
            raise DirectoryResolutionError(f"политика {policy_name} ни к чему не привязана")
        hosts = set()
        for scope in scopes:
            found = find_enabled_computers(conn, scope)
            logger.debug("%s: компьютеров %d", scope, len(found))
            hosts.update(found)
    except LDAPException as e:
        raise DirectoryResolutionError(f"ошибка LDAP при разборе политики {policy_name}: {e}") from e
    return sorted(hosts, key=str.lower)


class DirectoryResolver:
    # Адаптер для orchestrator.audit_policy: resolver(policy_name) -> hosts.
    def __init__(self, config: Config, password: Optional[str] = None):
        self.config = config
        self.password = password

    def __call__(self, policy_name: str) -> List[str]:
        conn = connect(self.config, self.password)
        try:
            return resolve_policy_hosts(conn, self.config.base_dn, policy_name)
        finally:
            conn.unbind()
