from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional
import csv
import matplotlib.pyplot as plt
from models import HostResult, ReportRow

CSV_FIELDS = [
    "host", "username", "session_token",
    "start_time", "start_label", "stop_time", "stop_label",
    "active_days", "active_minutes",
]


def format_time(ts: Optional[datetime]) -> str:
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else ""


def report_rows_to_dicts(rows: List[ReportRow]) -> List[Dict[str, str]]:
    # Открытая сессия: колонки окончания пустые.
    return [
        {
            "host": r.host,
            "username": r.username,
            "session_token": r.session_token,
            "start_time": format_time(r.start_time),
            "start_label": r.start_label,
            "stop_time": format_time(r.stop_time),
            "stop_label": r.stop_label,
            "active_days": f"{r.active_days:.2f}",
            "active_minutes": f"{r.active_minutes:.2f}",
        }
        for r in rows
    ]


def export_sessions_csv(rows: List[ReportRow], path: str, delimiter: str = ";") -> None:
    # Экспорт сессий в CSV.
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS, delimiter=delimiter)
        writer.writeheader()
        for row in report_rows_to_dicts(rows):
            writer.writerow(row)


def export_summary_markdown(results: List[HostResult], rows: List[ReportRow], path: str) -> None:
    # Экспорт сводного отчёта в Markdown
    with open(path, "w", encoding="utf-8") as f:
        f.write("# Сводный отчёт по сессиям пользователей\n\n")
        f.write("## Компьютеры\n\n")
        f.write("| Компьютер | Сессий | Пропущено событий | Ошибка |\n")
        f.write("|-----------|--------|-------------------|--------|\n")
        for res in results:
            f.write(f"| {res.host} | {len(res.sessions)} | {res.skipped_events} | {res.error or ''} |\n")
        f.write("\n")

        f.write("## Активные сессии\n\n")
        open_rows = [r for r in rows if r.stop_time is None]
        for r in open_rows:
            f.write(
                f"- {r.host}: {r.username or '—'} с {format_time(r.start_time)} "
                f"({r.start_label}, {r.active_minutes:.2f} мин.)\n"
            )
        if not open_rows:
            f.write("_Активных сессий нет._\n")
        f.write("\n")

        f.write("## Сессии\n\n")
        f.write("| Компьютер | Пользователь | Logon ID | Начало | Событие начала | Окончание | Событие окончания | Дней | Минут |\n")
        f.write("|-----------|--------------|----------|--------|----------------|-----------|-------------------|------|-------|\n")
        for d in report_rows_to_dicts(rows):
            f.write(
                f"| {d['host']} | {d['username']} | {d['session_token']} | {d['start_time']} | "
                f"{d['start_label']} | {d['stop_time']} | {d['stop_label']} | "
                f"{d['active_days']} | {d['active_minutes']} |\n"
            )


def active_minutes_by_user(rows: List[ReportRow]) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for r in rows:
        key = r.username or "—"
        totals[key] = round(totals.get(key, 0.0) + r.active_minutes, 2)
    return totals


def sessions_by_host(rows: List[ReportRow]) -> Dict[str, int]:
    return dict(Counter(r.host for r in rows))


def plot_active_minutes_by_user(rows: List[ReportRow]) -> None:
    # График суммарного времени активности пользователей
    stats = active_minutes_by_user(rows)
    if not stats:
        return
    users = sorted(stats.keys())
    values = [stats[u] for u in users]
    plt.figure()
    plt.bar(users, values)
    plt.xlabel("Пользователь")
    plt.ylabel("Минут активности")
    plt.title("Время активности по пользователям")
    plt.xticks(rotation=45, ha="right")
    plt.tight_layout()
    plt.show()


def plot_sessions_by_host(rows: List[ReportRow]) -> None:
    # График количества сессий по компьютерам
    stats = sessions_by_host(rows)
    if not stats:
        return
    hosts = sorted(stats.keys())
    values = [stats[h] for h in hosts]
    plt.figure()
    plt.bar(hosts, values)
    plt.xlabel("Компьютер")
    plt.ylabel("Количество сессий")
    plt.title("Сессии по компьютерам")
    plt.xticks(rotation=45, ha="right")
    plt.tight_layout()
    plt.show()
