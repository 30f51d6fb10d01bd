import os
import json
import logging
import threading
from typing import Any, List, Optional

from objects.log_entry import LogEntry
from utils.exporter import export_json
from utils.states import LogLevel

MAX_LOGS = 1000
PERSISTED_LOGS = 100
PERSIST_DELAY = 1.0

_STDLIB_LEVELS = {
    LogLevel.INFO.value: logging.INFO,
    LogLevel.WARNING.value: logging.WARNING,
    LogLevel.ERROR.value: logging.ERROR,
}

log = logging.getLogger(__name__)


class LogBuffer:
    """
    Bounded in-memory diagnostics log with the most recent entries persisted to disk.

    Safe to write from the request threadpool and the event loop. Appends only
    touch memory; the persisted copy is rewritten by a timer thread at most once
    per persist_delay, or immediately by flush().
    """
    def __init__(self,
                 persist_path: Optional[str] = None,
                 max_entries: int = MAX_LOGS,
                 persist_entries: int = PERSISTED_LOGS,
                 log_to_console: bool = True,
                 persist_delay: float = PERSIST_DELAY):
        """
        Initializes a LogBuffer object.

        Args:
            persist_path (str, optional): JSON file holding the most recent entries. None disables persistence.
            max_entries (int): In-memory capacity. Oldest entries are dropped first.
            persist_entries (int): How many of the newest entries are persisted.
            log_to_console (bool): Echo every entry to the standard logging module.
            persist_delay (float): Seconds an append waits before the persisted copy is rewritten.
        """
        self.persist_path: Optional[str] = persist_path
        self.max_entries: int = max_entries
        self.persist_entries: int = persist_entries
        self.log_to_console: bool = log_to_console
        self.persist_delay: float = persist_delay
        self._logs: List[LogEntry] = []
        self._lock = threading.Lock()
        # Serializes file writes. Always taken before _lock.
        self._write_lock = threading.Lock()
        self._persist_timer: Optional[threading.Timer] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._logs)

    def add(self, entry: LogEntry) -> None:
        with self._lock:
            self._logs.append(entry)
            if len(self._logs) > self.max_entries:
                self._logs = self._logs[-self.max_entries:]
            self._schedule_persist()

        if self.log_to_console:
            level = _STDLIB_LEVELS.get(entry.level, logging.INFO)
            if entry.details is not None:
                log.log(level, f'{entry.category}: {entry.message} {entry.details}')
            else:
                log.log(level, f'{entry.category}: {entry.message}')

    def log_info(self, category: str, message: str, details: Any = None) -> None:
        self.add(LogEntry(LogLevel.INFO.value, category, message, details))

    def log_warning(self, category: str, message: str, details: Any = None) -> None:
        self.add(LogEntry(LogLevel.WARNING.value, category, message, details))

    def log_error(self, category: str, message: str, details: Any = None) -> None:
        self.add(LogEntry(LogLevel.ERROR.value, category, message, details))

    def get_logs(self, level: Optional[str] = None) -> List[LogEntry]:
        """
        Returns a copy of the buffered entries, oldest first.

        Args:
            level (str, optional): Only return entries with this level.
        """
        with self._lock:
            if level:
                return [entry for entry in self._logs if entry.level == level.upper()]
            return list(self._logs)

    def to_list(self, level: Optional[str] = None) -> List[dict]:
        return [entry.to_dict(json_friendly=True) for entry in self.get_logs(level)]

    def export(self, directory: str) -> str:
        """Writes the full buffer to 'error-logs-YYYY-MM-DD.json' and returns its path."""
        return export_json(self.to_list(), directory, 'error-logs')

    def clear(self) -> None:
        with self._write_lock:
            with self._lock:
                self._logs = []
            if self.persist_path and os.path.exists(self.persist_path):
                try:
                    os.remove(self.persist_path)
                except OSError as e:
                    log.warning(f'Could not remove persisted logs: {e}')
        self.log_info('Error Logger', 'Logs cleared')

    def load_previous(self) -> int:
        """
        Prepends entries persisted by an earlier session.

        Returns:
            int: Number of entries loaded.
        """
        if not self.persist_path or not os.path.exists(self.persist_path):
            return 0

        try:
            with open(self.persist_path, 'r', encoding='utf-8') as f:
                saved = [LogEntry.from_dict(item) for item in json.load(f)]
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.log_warning('Error Logger', f'Could not load previous logs: {e}')
            return 0

        with self._lock:
            self._logs = (saved + self._logs)[-self.max_entries:]
        self.log_info('Error Logger', f'Loaded {len(saved)} previous log entries')
        return len(saved)

    def flush(self) -> None:
        """Writes the most recent entries to persist_path now, cancelling any pending write."""
        with self._write_lock:
            with self._lock:
                if self._persist_timer is not None:
                    self._persist_timer.cancel()
                    self._persist_timer = None
                if not self.persist_path:
                    return
                snapshot = [entry.to_dict(json_friendly=True) for entry in self._logs[-self.persist_entries:]]

            try:
                with open(self.persist_path, 'w', encoding='utf-8') as f:
                    json.dump(snapshot, f, ensure_ascii=False)
            except (OSError, TypeError, ValueError) as e:
                log.warning(f'Could not save logs to \'{self.persist_path}\': {e}')

    def _schedule_persist(self) -> None:
        # Caller holds _lock.
        if not self.persist_path or self._persist_timer is not None:
            return
        self._persist_timer = threading.Timer(self.persist_delay, self.flush)
        self._persist_timer.daemon = True
        self._persist_timer.start()
