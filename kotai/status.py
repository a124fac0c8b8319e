"""Health check of the installation and a printable summary of it."""

import platform
import sys
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from kotai.config import CONFIG_DIR_NAME, CONFIG_FILE_NAME, HISTORY_FILE_NAME

_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class StatusLevel(str, Enum):
    """Severity of a status message."""

    OK = "OK"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class StatusMessage:
    """One line of the status report."""

    level: StatusLevel
    message: str


def _rfc1123(moment: datetime) -> str:
    zone = moment.tzname() or ""
    text = (
        f"{_WEEKDAYS[moment.weekday()]}, {moment.day:02d} {_MONTHS[moment.month - 1]} "
        f"{moment.year:04d} {moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    return f"{text} {zone}" if zone else text


@dataclass
class StatusInfo:
    """Result of a status check."""

    executable_exists: bool = False
    config_dir_exists: bool = False
    config_file_exists: bool = False
    history_db_exists: bool = False
    is_running: bool = False
    runtime_installed: bool = False
    runtime_version: str = ""
    last_checked: datetime = field(default_factory=lambda: datetime.now().astimezone())
    messages: List[StatusMessage] = field(default_factory=list)

    def add(self, level: StatusLevel, message: str) -> None:
        self.messages.append(StatusMessage(level, message))

    def summary(self) -> str:
        """Render the report with per-level counts and an overall verdict."""
        lines = [
            "KOT.AI Status Summary:",
            f"Last checked: {_rfc1123(self.last_checked)}",
            "",
        ]
        lines.extend(f"[{msg.level.value}] {msg.message}" for msg in self.messages)
        counts = Counter(msg.level for msg in self.messages)
        errors = counts[StatusLevel.ERROR]
        warnings = counts[StatusLevel.WARNING]
        lines += [
            "",
            "Summary:",
            f"- {counts[StatusLevel.OK]} OK",
            f"- {warnings} Warnings",
            f"- {errors} Errors",
            "",
        ]
        if errors:
            lines.append("Status: CRITICAL - Application may not function correctly")
        elif warnings:
            lines.append("Status: WARNING - Application may have limited functionality")
        else:
            lines.append("Status: HEALTHY - All systems operational")
        return "\n".join(lines) + "\n"


def _executable_path() -> str:
    if sys.argv and sys.argv[0]:
        return sys.argv[0]
    return sys.executable or ""


def check_status(home: Optional[Union[str, Path]] = None) -> StatusInfo:
    """Inspect the executable, configuration directory and runtime.

    ``home`` overrides the user's home directory.
    """
    info = StatusInfo()

    exe_path = _executable_path()
    if exe_path:
        info.executable_exists = True
        info.add(StatusLevel.OK, f"Executable found: {Path(exe_path).name}")
    else:
        info.add(StatusLevel.ERROR, "Could not determine executable path")

    info.is_running = True
    info.add(StatusLevel.OK, "Application is running")

    try:
        home_dir = Path(home) if home is not None else Path.home()
    except (RuntimeError, KeyError):
        home_dir = None

    if home_dir is None:
        info.add(StatusLevel.ERROR, "Could not determine user home directory")
    else:
        config_dir = home_dir / CONFIG_DIR_NAME
        if config_dir.exists():
            info.config_dir_exists = True
            info.add(StatusLevel.OK, "Configuration directory exists")

            if (config_dir / CONFIG_FILE_NAME).exists():
                info.config_file_exists = True
                info.add(StatusLevel.OK, "Configuration file exists")
            else:
                info.add(StatusLevel.WARNING, "Configuration file not found")

            if (config_dir / HISTORY_FILE_NAME).exists():
                info.history_db_exists = True
                info.add(StatusLevel.OK, "History database exists")
            else:
                info.add(StatusLevel.INFO, "History database not found")
        else:
            info.add(StatusLevel.WARNING, "Configuration directory not found")

    info.runtime_version = platform.python_version()
    if info.runtime_version:
        info.runtime_installed = True
        info.add(StatusLevel.OK, f"Python is installed (Version: {info.runtime_version})")

    return info