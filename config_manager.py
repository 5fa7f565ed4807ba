import json
import logging
import os
from dataclasses import dataclass, field, asdict
from typing import List

CONFIG_FILE = "session_audit.json"

logger = logging.getLogger(__name__)


@dataclass
class Config:
    # Параметры подключения к каталогу, запроса журналов и отчётов.
    domain_controller: str = ""
    base_dn: str = ""                  # 'DC=corp,DC=example,DC=com'
    bind_user: str = ""                # 'CORP\\auditor' или DN
    use_ssl: bool = False
    policy_name: str = ""
    lookback_days: int = 0             # 0 = весь журнал
    host_timeout_seconds: int = 60
    max_workers: int = 8
    # системные псевдоучётки, которые не являются пользователями
    excluded_account_prefixes: List[str] = field(default_factory=lambda: [
        "DWM-", "UMFD-",
    ])
    excluded_accounts: List[str] = field(default_factory=lambda: [
        "SYSTEM", "LOCAL SERVICE", "NETWORK SERVICE", "ANONYMOUS LOGON",
    ])
    csv_delimiter: str = ";"
    log_file: str = "session_audit.log"
    log_level: str = "INFO"


def load_config(path: str = CONFIG_FILE) -> Config:
    # Загрузить конфиг из JSON, либо вернуть конфиг по умолчанию.
    if not os.path.exists(path):
        return Config()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Не удалось прочитать %s, используются настройки по умолчанию: %s", path, e)
        return Config()

    if not isinstance(data, dict):
        logger.warning("Файл %s не содержит объект JSON, используются настройки по умолчанию", path)
        return Config()

    def get(key, default):
        return data.get(key, default)

    cfg = Config()
    cfg.domain_controller = get("domain_controller", cfg.domain_controller)
    cfg.base_dn = get("base_dn", cfg.base_dn)
    cfg.bind_user = get("bind_user", cfg.bind_user)
    cfg.use_ssl = bool(get("use_ssl", cfg.use_ssl))
    cfg.policy_name = get("policy_name", cfg.policy_name)
    try:
        cfg.lookback_days = int(get("lookback_days", cfg.lookback_days))
        cfg.host_timeout_seconds = int(get("host_timeout_seconds", cfg.host_timeout_seconds))
        cfg.max_workers = int(get("max_workers", cfg.max_workers))
    except (TypeError, ValueError) as e:
        logger.warning("Некорректное число в %s, используются настройки по умолчанию: %s", path, e)
        return Config()
    cfg.excluded_account_prefixes = get("excluded_account_prefixes", cfg.excluded_account_prefixes)
    cfg.excluded_accounts = get("excluded_accounts", cfg.excluded_accounts)
    cfg.csv_delimiter = get("csv_delimiter", cfg.csv_delimiter)
    cfg.log_file = get("log_file", cfg.log_file)
    cfg.log_level = get("log_level", cfg.log_level)
    return cfg


def save_config(config: Config, path: str = CONFIG_FILE) -> None:
    # Сохранить конфиг в JSON. Пароль в конфиг не попадает никогда.
    data = asdict(config)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
