"""
Logging setup and per-command timing for the host manager.

Console output is plain text on stderr. The log file and the error log get
one JSON object per record.
"""
import json
import logging
import logging.handlers
import sys
import threading
import time
import traceback
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
ERROR_LOG_MAX_BYTES = 1024 * 1024


@dataclass
class CommandTiming:
    """Duration and outcome of one command."""
    command: str
    duration_ms: float
    finished_at: str
    success: bool
    error: Optional[str] = None


class JSONFormatter(logging.Formatter):
    """Formats each record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}.{record.funcName}:{record.lineno}",
            'pid': record.process,
        }

        timing = getattr(record, 'command_timing', None)
        if timing is not None:
            entry['command_timing'] = timing

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            entry['exception'] = {
                'type': exc_type.__name__,
                'message': str(exc),
                'traceback': traceback.format_exception(exc_type, exc, tb)
            }

        return json.dumps(entry, default=str)


class CommandTimer:
    """Keeps the most recent command timings and summarizes them per command."""

    def __init__(self, capacity: int = 1000):
        self._timings: Deque[CommandTiming] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def measure(self, command: str):
        """Time the enclosed block; an exception is recorded as a failure and re-raised."""
        started = time.monotonic()
        error = None
        try:
            yield
        except Exception as e:
            error = str(e) or type(e).__name__
            raise
        finally:
            timing = CommandTiming(
                command=command,
                duration_ms=round((time.monotonic() - started) * 1000, 3),
                finished_at=datetime.now().isoformat(),
                success=error is None,
                error=error
            )
            with self._lock:
                self._timings.append(timing)
            self.logger.debug(f"{command} took {timing.duration_ms:.1f} ms",
                              extra={'command_timing': asdict(timing)})

    @property
    def timings(self) -> List[CommandTiming]:
        with self._lock:
            return list(self._timings)

    def summary(self) -> Dict[str, Dict[str, Any]]:
        """
        Per-command statistics over the retained timings.

        Each command maps to its call and failure counts, mean and worst
        duration in milliseconds, and the message of its latest failure.
        """
        summary: Dict[str, Dict[str, Any]] = {}
        for timing in self.timings:
            stats = summary.setdefault(timing.command, {
                'calls': 0, 'failures': 0, 'total_ms': 0.0, 'max_ms': 0.0, 'last_error': None
            })
            stats['calls'] += 1
            stats['total_ms'] += timing.duration_ms
            stats['max_ms'] = max(stats['max_ms'], timing.duration_ms)
            if not timing.success:
                stats['failures'] += 1
                stats['last_error'] = timing.error

        for stats in summary.values():
            stats['avg_ms'] = round(stats.pop('total_ms') / stats['calls'], 3)
        return summary


class LoggingService:
    """Installs the manager's handlers on the root logger and times commands."""

    def __init__(self, settings, console: bool = True):
        self.settings = settings
        self.console = console
        self.command_timer = CommandTimer()
        self._configure_root_logger()
        self.logger = logging.getLogger(__name__)
        self.logger.info("Logging service initialized")

    def _configure_root_logger(self):
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

        level = getattr(logging, self.settings.log_level.upper(), logging.INFO)
        root_logger.setLevel(level)

        if self.console:
            # stderr keeps stdout free for command output
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
            console_handler.setLevel(level)
            root_logger.addHandler(console_handler)

        log_path = Path(self.settings.log_file_path)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            root_logger.warning(f"Log directory unavailable, logging to console only: {e}")
            return

        root_logger.addHandler(self._json_file_handler(log_path, LOG_FILE_MAX_BYTES, 3, level))
        root_logger.addHandler(
            self._json_file_handler(log_path.with_suffix('.errors.log'), ERROR_LOG_MAX_BYTES, 2, logging.ERROR)
        )

    @staticmethod
    def _json_file_handler(path: Path, max_bytes: int, backups: int, level: int) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            filename=str(path),
            maxBytes=max_bytes,
            backupCount=backups,
            encoding='utf-8'
        )
        handler.setFormatter(JSONFormatter())
        handler.setLevel(level)
        return handler

    def measure_command(self, command: str):
        """Context manager timing one command."""
        return self.command_timer.measure(command)

    def command_stats(self) -> Dict[str, Dict[str, Any]]:
        return self.command_timer.summary()
