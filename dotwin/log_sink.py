from __future__ import annotations

import enum
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from rich.console import Console

if TYPE_CHECKING:  # pragma: no cover
    from dotwin.progress.stack import ProgressStack


VERBOSE = 15
SUCCESS = 25
logging.addLevelName(VERBOSE, "VERBOSE")
logging.addLevelName(SUCCESS, "SUCCESS")


class LogLevel(enum.Enum):
    DEBUG = "Debug"
    VERBOSE = "Verbose"
    INFORMATION = "Information"
    SUCCESS = "Success"
    WARNING = "Warning"
    ERROR = "Error"

    @property
    def stdlib_level(self) -> int:
        return _STDLIB_LEVELS[self]

    @classmethod
    def parse(cls, value: Union[str, "LogLevel"]) -> "LogLevel":
        if isinstance(value, LogLevel):
            return value
        text = str(value).strip().lower()
        for level in cls:
            if text in (level.value.lower(), level.name.lower()):
                return level
        if text in ("info",):
            return cls.INFORMATION
        if text in ("warn",):
            return cls.WARNING
        raise ValueError(f"Unknown log level: {value}")


_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.VERBOSE: VERBOSE,
    LogLevel.INFORMATION: logging.INFO,
    LogLevel.SUCCESS: SUCCESS,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

_CONSOLE_STYLES = {
    logging.DEBUG: "dim",
    VERBOSE: "dim cyan",
    logging.INFO: "",
    SUCCESS: "green",
    logging.WARNING: "yellow",
    logging.ERROR: "bold red",
}

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ConsoleLogHandler(logging.Handler):
    """Writes formatted records through a rich Console so they cooperate with live progress."""

    def __init__(self, console: Console):
        super().__init__()
        self.console = console

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            style = _CONSOLE_STYLES.get(record.levelno, "")
            self.console.print(line, style=style or None, markup=False, highlight=False, soft_wrap=True)
        except Exception:  # noqa: BLE001
            self.handleError(record)


class LogSink:
    """
    Leveled, timestamped log output that does not corrupt the progress display.

    - whitespace-only messages are dropped without any side effect.
    - Verbose/Debug messages are filtered before the progress display is touched.
    - while progress nodes are live the display is cleared, the line is
      emitted, and the display is redrawn.
    """

    def __init__(
        self,
        *,
        console: Optional[Console] = None,
        log_path: Optional[Path] = None,
        verbose: bool = False,
        debug: bool = False,
        progress: Optional["ProgressStack"] = None,
        name: str = "dotwin",
    ):
        self.console = console if console is not None else Console(file=sys.stderr)
        self.log_path = Path(log_path) if log_path else None
        self.verbose_enabled = bool(verbose or debug)
        self.debug_enabled = bool(debug)
        self.progress = progress

        # A private logger instance: sinks never share handlers through the global registry.
        self._logger = logging.Logger(name, level=logging.DEBUG)
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        console_handler = ConsoleLogHandler(self.console)
        console_handler.setFormatter(formatter)
        self._logger.addHandler(console_handler)
        if self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_path, encoding="utf-8")
            file_handler.setFormatter(formatter)
            self._logger.addHandler(file_handler)

    def attach(self, progress: "ProgressStack") -> None:
        self.progress = progress
        progress.sink = self

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)

    def enabled_for(self, level: LogLevel) -> bool:
        if level is LogLevel.DEBUG:
            return self.debug_enabled
        if level is LogLevel.VERBOSE:
            return self.verbose_enabled
        return True

    def log(
        self,
        message: Optional[str],
        level: Union[str, LogLevel] = LogLevel.INFORMATION,
        progress_id: Optional[str] = None,
    ) -> None:
        if message is None or not str(message).strip():
            return
        try:
            lvl = LogLevel.parse(level)
        except ValueError:
            self.warning(f"Unknown log level '{level}'; logging as Information")
            lvl = LogLevel.INFORMATION
        if not self.enabled_for(lvl):
            return

        text = str(message).rstrip()
        if progress_id and self.progress is not None:
            node = self.progress.get(progress_id)
            if node is not None:
                text = f"[{node.activity}] {text}"

        if self.progress is not None and self.progress.has_live_nodes():
            with self.progress.suspended():
                self._logger.log(lvl.stdlib_level, text)
        else:
            self._logger.log(lvl.stdlib_level, text)

    def debug(self, message: Optional[str], progress_id: Optional[str] = None) -> None:
        self.log(message, LogLevel.DEBUG, progress_id)

    def verbose(self, message: Optional[str], progress_id: Optional[str] = None) -> None:
        self.log(message, LogLevel.VERBOSE, progress_id)

    def info(self, message: Optional[str], progress_id: Optional[str] = None) -> None:
        self.log(message, LogLevel.INFORMATION, progress_id)

    def success(self, message: Optional[str], progress_id: Optional[str] = None) -> None:
        self.log(message, LogLevel.SUCCESS, progress_id)

    def warning(self, message: Optional[str], progress_id: Optional[str] = None) -> None:
        self.log(message, LogLevel.WARNING, progress_id)

    def error(self, message: Optional[str], progress_id: Optional[str] = None) -> None:
        self.log(message, LogLevel.ERROR, progress_id)
