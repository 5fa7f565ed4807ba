from typing import Optional


class SessionAuditError(Exception):
    # Базовое исключение приложения.
    pass


class DirectoryResolutionError(SessionAuditError):
    # Не удалось получить список компьютеров для политики. Прерывает запуск.
    pass


class HostQueryError(SessionAuditError):
    # Ошибка запроса журнала на конкретном компьютере. Компьютер пропускается.
    def __init__(self, host: str, message: str):
        super().__init__(f"{host}: {message}")
        self.host = host
        self.reason = message


class HostUnreachableError(HostQueryError):
    # Компьютер недоступен по сети.
    pass


class MalformedEvent(SessionAuditError):
    # Запись журнала без обязательных полей. Пропускается только эта запись.
    def __init__(self, reason: str, record: Optional[object] = None):
        super().__init__(reason)
        self.reason = reason
        self.record = record
