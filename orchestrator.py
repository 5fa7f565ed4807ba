import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from correlator import correlate
from errors import HostQueryError
from models import HostResult, RawEvent, ReportRow
from normalizer import normalize_events

logger = logging.getLogger(__name__)

EventFetcher = Callable[[str], Iterable[RawEvent]]
HostResolver = Callable[[str], Iterable[str]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def process_host(host: str, fetch: EventFetcher, now: datetime) -> HostResult:
    # Получение, нормализация и корреляция событий одного компьютера.
    # Ошибки компьютера не выходят наружу, а попадают в HostResult.error.
    try:
        raw_events = list(fetch(host))
        events, skipped = normalize_events(raw_events)
        sessions = correlate(events, now)
    except HostQueryError as e:
        logger.warning("Компьютер %s пропущен: %s", host, e.reason)
        return HostResult(host=host, error=e.reason)
    except Exception as e:
        logger.exception("Компьютер %s пропущен из-за непредвиденной ошибки", host)
        return HostResult(host=host, error=str(e) or type(e).__name__)

    logger.info("%s: событий %d, пропущено %d, сессий %d",
                host, len(raw_events), skipped, len(sessions))
    return HostResult(host=host, sessions=sessions, skipped_events=skipped)


def collect_sessions(hosts: Iterable[str],
                     fetch: EventFetcher,
                     now: Optional[datetime] = None,
                     max_workers: int = 8) -> List[HostResult]:
    # Компьютеры независимы: по одному заданию на компьютер, без общего состояния.
    now = now or utc_now()

    unique_hosts: List[str] = []
    for host in hosts:
        if host not in unique_hosts:
            unique_hosts.append(host)
    if not unique_hosts:
        return []

    workers = max(1, min(max_workers, len(unique_hosts)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(process_host, host, fetch, now) for host in unique_hosts]
        results = [f.result() for f in futures]

    failed = sum(1 for r in results if not r.ok)
    logger.info("Обработано компьютеров: %d, с ошибками: %d", len(results), failed)
    return results


def build_report(results: Iterable[HostResult], now: datetime) -> List[ReportRow]:
    rows: List[ReportRow] = []
    for result in results:
        if not result.ok:
            continue
        for session in result.sessions:
            rows.append(ReportRow.from_session(session, now))
    return rows


def audit_policy(policy_name: str,
                 resolve_hosts: HostResolver,
                 fetch: EventFetcher,
                 now: Optional[datetime] = None,
                 max_workers: int = 8) -> List[HostResult]:
    # DirectoryResolutionError из resolve_hosts прерывает весь запуск.
    now = now or utc_now()
    hosts = list(resolve_hosts(policy_name))
    logger.info("Политика %s: компьютеров %d", policy_name, len(hosts))
    return collect_sessions(hosts, fetch, now=now, max_workers=max_workers)
