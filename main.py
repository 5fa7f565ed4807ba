from datetime import datetime
from typing import List, Optional
import tkinter as tk
from tkinter import ttk, filedialog, messagebox
from models import HostResult, ReportRow
from config_manager import load_config, save_config, Config, CONFIG_FILE
from errors import DirectoryResolutionError
from orchestrator import audit_policy, build_report, utc_now
from directory import DirectoryResolver
from eventlog import EventLogSource
from generator import DemoEventSource
from logger_config import setup_logger
from reports import (
    export_sessions_csv,
    export_summary_markdown,
    format_time,
    plot_active_minutes_by_user,
    plot_sessions_by_host,
)


class SettingsWindow(tk.Toplevel):
    # Окно настроек подключения и параметров запроса журналов.
    def __init__(self, master: tk.Tk, app: "SessionAuditGUI"):
        super().__init__(master)
        self.app = app
        self.config: Config = app.config

        self.title("Настройки")
        self.resizable(False, False)
        self.grab_set()
        self._build_ui()

    def _build_ui(self):
        cfg = self.config
        main_frame = ttk.Frame(self)
        main_frame.pack(fill=tk.BOTH, expand=True, padx=10, pady=10)

        def make_row(parent, label_text, value, width=40):
            row = ttk.Frame(parent)
            row.pack(fill=tk.X, pady=1)
            ttk.Label(row, text=label_text, width=40).pack(side=tk.LEFT, anchor=tk.W)
            entry = tk.Entry(row, width=width)
            entry.pack(side=tk.LEFT, fill=tk.X, expand=True)
            entry.insert(0, str(value))
            return entry

        # Каталог
        dir_frame = ttk.LabelFrame(main_frame, text="Active Directory")
        dir_frame.pack(fill=tk.X, expand=False, pady=5)
        self.entry_dc = make_row(dir_frame, "Контроллер домена:", cfg.domain_controller)
        self.entry_base_dn = make_row(dir_frame, "Базовый DN:", cfg.base_dn)
        self.entry_bind_user = make_row(dir_frame, "Учётная запись (DOMAIN\\user):", cfg.bind_user)
        self.use_ssl_var = tk.BooleanVar(value=cfg.use_ssl)
        ttk.Checkbutton(dir_frame, text="LDAPS", variable=self.use_ssl_var).pack(anchor=tk.W)

        # Журналы
        log_frame = ttk.LabelFrame(main_frame, text="Запрос журналов")
        log_frame.pack(fill=tk.X, expand=False, pady=5)
        self.entry_lookback = make_row(log_frame, "Глубина (дней, 0 = весь журнал):", cfg.lookback_days, 10)
        self.entry_timeout = make_row(log_frame, "Таймаут на компьютер (сек):", cfg.host_timeout_seconds, 10)
        self.entry_workers = make_row(log_frame, "Параллельных запросов:", cfg.max_workers, 10)
        self.entry_prefixes = make_row(
            log_frame, "Префиксы системных учёток (через запятую):", ", ".join(cfg.excluded_account_prefixes)
        )
        self.entry_accounts = make_row(
            log_frame, "Системные учётки (через запятую):", ", ".join(cfg.excluded_accounts)
        )

        # Отчёты
        rep_frame = ttk.LabelFrame(main_frame, text="Отчёты и журнал программы")
        rep_frame.pack(fill=tk.X, expand=False, pady=5)
        self.entry_delimiter = make_row(rep_frame, "Разделитель CSV:", cfg.csv_delimiter, 5)
        self.entry_log_file = make_row(rep_frame, "Файл журнала программы:", cfg.log_file)

        # Кнопки
        btn_frame = ttk.Frame(main_frame)
        btn_frame.pack(fill=tk.X, pady=5)
        ttk.Button(btn_frame, text="Сохранить", command=self.on_save).pack(side=tk.RIGHT, padx=5)
        ttk.Button(btn_frame, text="Отмена", command=self.destroy).pack(side=tk.RIGHT)

    def on_save(self):
        try:
            lookback = int(self.entry_lookback.get())
            timeout = int(self.entry_timeout.get())
            workers = int(self.entry_workers.get())
        except ValueError:
            messagebox.showerror("Ошибка", "Некорректные числовые значения в настройках.")
            return
        if lookback < 0 or timeout <= 0 or workers <= 0:
            messagebox.showerror("Ошибка", "Таймаут и число запросов должны быть больше нуля.")
            return

        delimiter = self.entry_delimiter.get()
        if len(delimiter) != 1:
            messagebox.showerror("Ошибка", "Разделитель CSV должен быть одним символом.")
            return

        cfg = self.app.config
        cfg.domain_controller = self.entry_dc.get().strip()
        cfg.base_dn = self.entry_base_dn.get().strip()
        cfg.bind_user = self.entry_bind_user.get().strip()
        cfg.use_ssl = self.use_ssl_var.get()
        cfg.lookback_days = lookback
        cfg.host_timeout_seconds = timeout
        cfg.max_workers = workers
        cfg.excluded_account_prefixes = [s.strip() for s in self.entry_prefixes.get().split(",") if s.strip()]
        cfg.excluded_accounts = [s.strip() for s in self.entry_accounts.get().split(",") if s.strip()]
        cfg.csv_delimiter = delimiter
        cfg.log_file = self.entry_log_file.get().strip() or cfg.log_file

        try:
            save_config(cfg)
        except OSError as e:
            messagebox.showerror("Ошибка", f"Не удалось сохранить конфигурацию:\n{e}")
            return

        messagebox.showinfo("Настройки", "Настройки сохранены.")
        self.destroy()


class SessionAuditGUI:
    def __init__(self, master: tk.Tk):
        self.master = master
        master.title("Аудит сессий пользователей")

        self.config: Config = load_config()
        setup_logger(log_file=self.config.log_file, level=self.config.log_level)

        self.results: List[HostResult] = []
        self.rows: List[ReportRow] = []
        self.run_time: Optional[datetime] = None

        self.policy_var = tk.StringVar(value=self.config.policy_name)
        self.password_var = tk.StringVar()

        self._build_ui()

    def _build_ui(self):
        # Верхняя панель
        top = ttk.Frame(self.master)
        top.pack(side=tk.TOP, fill=tk.X, padx=5, pady=5)

        ttk.Label(top, text="Групповая политика:").pack(side=tk.LEFT)
        ttk.Entry(top, textvariable=self.policy_var, width=30).pack(side=tk.LEFT, padx=2)
        ttk.Label(top, text="Пароль:").pack(side=tk.LEFT, padx=(10, 0))
        ttk.Entry(top, textvariable=self.password_var, width=16, show="*").pack(side=tk.LEFT, padx=2)
        ttk.Button(top, text="Запустить аудит", command=self.run_audit).pack(side=tk.LEFT, padx=5)
        ttk.Button(top, text="Демо-режим", command=self.run_demo).pack(side=tk.LEFT, padx=5)

        ttk.Button(top, text="Перезагрузить конфиг", command=self.reload_config).pack(side=tk.RIGHT)
        ttk.Button(top, text="Настройки", command=self.open_settings).pack(side=tk.RIGHT, padx=5)

        # Notebook с вкладками
        notebook = ttk.Notebook(self.master)
        notebook.pack(side=tk.TOP, fill=tk.BOTH, expand=True, padx=5, pady=5)

        self.sessions_frame = ttk.Frame(notebook)
        notebook.add(self.sessions_frame, text="Сессии")
        self._build_sessions_tab()

        self.hosts_frame = ttk.Frame(notebook)
        notebook.add(self.hosts_frame, text="Компьютеры")
        self._build_hosts_tab()

        # Нижняя панель
        bottom = ttk.Frame(self.master)
        bottom.pack(side=tk.BOTTOM, fill=tk.X, padx=5, pady=5)
        self.stats_label = ttk.Label(bottom, text="Сессий: 0")
        self.stats_label.pack(side=tk.LEFT)
        ttk.Button(bottom, text="Экспорт CSV", command=self.export_csv).pack(side=tk.LEFT, padx=5)
        ttk.Button(bottom, text="Экспорт отчёта (MD)", command=self.export_md).pack(side=tk.LEFT, padx=5)
        ttk.Button(bottom, text="График по пользователям",
                   command=lambda: plot_active_minutes_by_user(self.rows)).pack(side=tk.RIGHT, padx=5)
        ttk.Button(bottom, text="График по компьютерам",
                   command=lambda: plot_sessions_by_host(self.rows)).pack(side=tk.RIGHT, padx=5)

    # Вкладка сессий
    def _build_sessions_tab(self):
        frame = self.sessions_frame
        table_frame = ttk.Frame(frame)
        table_frame.pack(side=tk.TOP, fill=tk.BOTH, expand=True)

        columns = ("host", "user", "start", "start_label", "stop", "stop_label", "minutes")
        self.tree_sessions = ttk.Treeview(
            table_frame,
            columns=columns,
            show="headings",
            selectmode="browse",
        )
        for col, text, width, anchor in [
            ("host", "Компьютер", 180, tk.W),
            ("user", "Пользователь", 120, tk.W),
            ("start", "Начало", 140, tk.W),
            ("start_label", "Событие начала", 150, tk.W),
            ("stop", "Окончание", 140, tk.W),
            ("stop_label", "Событие окончания", 150, tk.W),
            ("minutes", "Минут", 80, tk.E),
        ]:
            self.tree_sessions.heading(col, text=text)
            self.tree_sessions.column(col, width=width, anchor=anchor)

        vsb = ttk.Scrollbar(table_frame, orient="vertical", command=self.tree_sessions.yview)
        self.tree_sessions.configure(yscrollcommand=vsb.set)
        self.tree_sessions.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)
        vsb.pack(side=tk.RIGHT, fill=tk.Y)
        self.tree_sessions.bind("<<TreeviewSelect>>", self.on_session_select)

        # Детали сессии
        details_label = ttk.Label(frame, text="Подробности сессии:")
        details_label.pack(side=tk.TOP, anchor=tk.W)
        self.text_session_details = tk.Text(frame, height=8, wrap="word")
        self.text_session_details.pack(side=tk.TOP, fill=tk.BOTH, expand=False)
        self.text_session_details.configure(font=("Courier New", 9))

    # Вкладка компьютеров
    def _build_hosts_tab(self):
        frame = self.hosts_frame
        columns = ("host", "sessions", "skipped", "error")
        self.tree_hosts = ttk.Treeview(frame, columns=columns, show="headings", selectmode="browse")
        for col, text, width, anchor in [
            ("host", "Компьютер", 200, tk.W),
            ("sessions", "Сессий", 80, tk.CENTER),
            ("skipped", "Пропущено событий", 130, tk.CENTER),
            ("error", "Ошибка", 400, tk.W),
        ]:
            self.tree_hosts.heading(col, text=text)
            self.tree_hosts.column(col, width=width, anchor=anchor)
        vsb = ttk.Scrollbar(frame, orient="vertical", command=self.tree_hosts.yview)
        self.tree_hosts.configure(yscrollcommand=vsb.set)
        self.tree_hosts.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)
        vsb.pack(side=tk.RIGHT, fill=tk.Y)

    # Запуск аудита

    def _run(self, policy_name: str, resolver, source):
        now = utc_now()
        self.master.config(cursor="watch")
        self.master.update_idletasks()
        try:
            self.results = audit_policy(policy_name, resolver, source, now=now,
                                        max_workers=self.config.max_workers)
        except DirectoryResolutionError as e:
            messagebox.showerror("Ошибка каталога", f"Не удалось получить список компьютеров:\n{e}")
            return
        finally:
            self.master.config(cursor="")

        self.run_time = now
        self.rows = build_report(self.results, now)
        self.refresh_sessions_view()
        self.refresh_hosts_view()

    def run_audit(self):
        policy_name = self.policy_var.get().strip()
        if not policy_name:
            messagebox.showwarning("Аудит", "Укажите имя групповой политики.")
            return
        self.config.policy_name = policy_name
        resolver = DirectoryResolver(self.config, self.password_var.get() or None)
        self._run(policy_name, resolver, EventLogSource(self.config))

    def run_demo(self):
        demo = DemoEventSource()
        self._run("Демо", demo.resolve, demo)
        messagebox.showinfo("Готово", "Учебные события сгенерированы и обработаны.")

    # Таблицы

    def refresh_sessions_view(self):
        for item in self.tree_sessions.get_children():
            self.tree_sessions.delete(item)

        for idx, r in enumerate(self.rows):
            self.tree_sessions.insert(
                "",
                "end",
                iid=str(idx),
                values=(
                    r.host,
                    r.username or "—",
                    format_time(r.start_time),
                    r.start_label,
                    format_time(r.stop_time) or "активна",
                    r.stop_label or "—",
                    f"{r.active_minutes:.2f}",
                ),
            )

        open_count = sum(1 for r in self.rows if r.stop_time is None)
        failed = sum(1 for res in self.results if not res.ok)
        self.stats_label.config(
            text=(
                f"Сессий: {len(self.rows)}  |  активных: {open_count}  |  "
                f"компьютеров: {len(self.results)}, с ошибками: {failed}"
            )
        )
        self.text_session_details.delete("1.0", tk.END)

    def refresh_hosts_view(self):
        for item in self.tree_hosts.get_children():
            self.tree_hosts.delete(item)
        for res in self.results:
            self.tree_hosts.insert(
                "",
                "end",
                values=(res.host, len(res.sessions), res.skipped_events, res.error or ""),
            )

    def on_session_select(self, event):
        selection = self.tree_sessions.selection()
        if not selection:
            return
        idx = int(selection[0])
        if idx < 0 or idx >= len(self.rows):
            return
        r = self.rows[idx]

        lines = []
        lines.append(f"Компьютер: {r.host}")
        lines.append(f"Пользователь: {r.username or '—'}")
        lines.append(f"Logon ID: {r.session_token or '—'}")
        lines.append(f"Начало: {format_time(r.start_time)} ({r.start_label})")
        if r.stop_time:
            lines.append(f"Окончание: {format_time(r.stop_time)} ({r.stop_label})")
        else:
            lines.append(f"Окончание: сессия активна на {format_time(self.run_time)}")
        lines.append(f"Длительность: {r.active_days:.2f} дн. / {r.active_minutes:.2f} мин.")

        self.text_session_details.delete("1.0", tk.END)
        self.text_session_details.insert(tk.END, "\n".join(lines))

    # Действия
    def open_settings(self):
        SettingsWindow(self.master, self)

    def reload_config(self):
        self.config = load_config()
        self.policy_var.set(self.config.policy_name)
        messagebox.showinfo("Конфигурация", f"Конфигурация перезагружена из {CONFIG_FILE}.")

    def export_csv(self):
        if not self.rows:
            messagebox.showwarning("Экспорт", "Нет сессий для экспорта.")
            return
        path = filedialog.asksaveasfilename(
            title="Сохранить CSV",
            defaultextension=".csv",
            filetypes=[("CSV files", "*.csv"), ("All files", "*.*")],
        )
        if not path:
            return
        try:
            export_sessions_csv(self.rows, path, delimiter=self.config.csv_delimiter)
        except OSError as e:
            messagebox.showerror("Ошибка", f"Не удалось сохранить CSV:\n{e}")
            return
        messagebox.showinfo("Экспорт", f"CSV-файл сохранён: {path}")

    def export_md(self):
        if not self.results:
            messagebox.showwarning("Экспорт", "Нет данных для отчёта.")
            return
        path = filedialog.asksaveasfilename(
            title="Сохранить отчёт (Markdown)",
            defaultextension=".md",
            filetypes=[("Markdown files", "*.md"), ("All files", "*.*")],
        )
        if not path:
            return
        try:
            export_summary_markdown(self.results, self.rows, path)
        except OSError as e:
            messagebox.showerror("Ошибка", f"Не удалось сохранить отчёт:\n{e}")
            return
        messagebox.showinfo("Экспорт", f"Отчёт сохранён: {path}")


def main():
    root = tk.Tk()
    app = SessionAuditGUI(root)
    root.geometry("1100x700")
    root.mainloop()


if __name__ == "__main__":
    main()
