"""
Logging setup for the ``stakeflow`` logger hierarchy.

Every component logs through ``logging.getLogger("stakeflow.<component>")``
and passes the account, round index and amount it is acting on as record
extras. Two renderings are available:

  - **human** – one coloured line per record, extras folded into a suffix
  - **json**  – one JSON object per line, extras as top-level keys

Files always receive JSON so they can be replayed into an aggregator.

Usage:
    from stakeflow_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="logs/stakeflow.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER_NAME = "stakeflow"
EXTRA_FIELDS = ("account", "round", "amount")


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    found = {}
    for name in EXTRA_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            found[name] = value
    return found


class _JSONFormatter(logging.Formatter):
    """One JSON object per record; integer amounts are kept exact."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "ts": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(_extras(record))
        if record.exc_info and record.exc_info[1]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _HumanFormatter(logging.Formatter):
    """Single coloured line, with the round index appended when known."""

    LEVEL_COLOURS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [
            f"{colour}{stamp} {record.levelname[0]}{self.RESET}",
            f"{record.name}: {record.getMessage()}",
        ]
        round_index = getattr(record, "round", None)
        if round_index is not None:
            parts.append(f"(round {round_index})")
        if record.exc_info and record.exc_info[1]:
            parts.append("\n" + self.formatException(record.exc_info))
        return " ".join(parts)


def _stream_handler(fmt: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JSONFormatter() if fmt == "json" else _HumanFormatter())
    return handler


def _file_handler(log_file: str) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(path), encoding="utf-8")
    handler.setFormatter(_JSONFormatter())
    return handler


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Install handlers on the ``stakeflow`` logger and return it.

    Parameters
    ----------
    level : str
        Threshold name; unknown names fall back to INFO.
    fmt : str
        ``"human"`` or ``"json"`` for the stderr handler.
    log_file : str, optional
        Extra JSON handler writing to this path (parent dirs are created).

    Calling again replaces the previous handlers instead of stacking them.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    logger.addHandler(_stream_handler(fmt))
    if log_file:
        logger.addHandler(_file_handler(log_file))
    return logger


def setup_logging_from_config(cfg) -> logging.Logger:
    """Apply the ``[logging]`` section of a :class:`StakeflowConfig`."""
    section = cfg.logging
    return setup_logging(level=section.level, fmt=section.format, log_file=section.file)
