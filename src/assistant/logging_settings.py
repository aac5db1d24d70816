"""Read ``logging_settings.conf``: handler levels plus a log retention window."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Iterator

RETENTION_HOURS = 48

LEVELS: dict[str, int | None] = {
    "off": None,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None = logging.INFO
    file_level: int | None = logging.INFO
    retention_hours: int = RETENTION_HOURS

    def apply(self, key: str, value: str) -> LoggingSettings:
        """Return a copy with one ``key = value`` entry applied."""

        if key in ("terminal", "file"):
            level = LEVELS.get(value.lower(), logging.INFO)
            return replace(self, **{f"{key}_level": level})
        if key == "retention_hours":
            try:
                hours = int(value)
            except ValueError:
                hours = RETENTION_HOURS
            return replace(self, retention_hours=max(hours, 0))
        return self


def _entries(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    for line in lines:
        key, sep, value = line.split("#", 1)[0].partition("=")
        if sep:
            yield key.strip().lower(), value.strip()


def parse_logging_settings(path: Path) -> LoggingSettings:
    """Fold ``key = value`` lines over the defaults; a missing file keeps them."""

    settings = LoggingSettings()
    if not path.exists():
        return settings
    for key, value in _entries(path.read_text(encoding="utf-8").splitlines()):
        settings = settings.apply(key, value)
    return settings


__all__ = ["LoggingSettings", "parse_logging_settings"]
