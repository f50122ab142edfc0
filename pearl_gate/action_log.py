"""Console and append-only file logging for bot actions."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"


class _UTCISOFormatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def configure_logging(log_file: Optional[Path], level: int = logging.INFO) -> logging.Logger:
    """Route log records to the console and to ``log_file``.

    The file is opened in append mode and is never read back by the bot.
    """

    logging.addLevelName(logging.WARNING, "WARN")
    formatter = _UTCISOFormatter(LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_pearl_gate", False):
            root.removeHandler(handler)
            handler.close()

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._pearl_gate = True  # type: ignore[attr-defined]
    root.addHandler(console)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError:
            root.exception("Could not open action log %s", log_file)
        else:
            file_handler.setFormatter(formatter)
            file_handler._pearl_gate = True  # type: ignore[attr-defined]
            root.addHandler(file_handler)
    return root


__all__ = ["LOG_FORMAT", "configure_logging"]
