"""Root logger setup for gatewayapi-dns.

Brief:
  - Log lines carry a bracketed lowercase level tag ("[info]", "[trace]") and,
    outside syslog, a UTC timestamp.
  - TRACE sits below DEBUG and carries per-event and per-record chatter such
    as watch event bodies and individual record removals.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TAGS = {
    TRACE: "[trace]",
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}

LINE_FORMAT = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
DEFAULT_SYSLOG_ADDRESS = "/dev/log"


def parse_level(value: Any, default: int = logging.INFO) -> int:
    """Brief: Map a level name such as "warn" or "trace" to a logging constant.

    Inputs:
      - value: Level name (case-insensitive) or None.
      - default: Level returned for unknown names.

    Outputs:
      - int logging level.
    """

    return _LEVELS.get(str(value or "").strip().lower(), default)


def _level_tag(levelno: int) -> str:
    return _TAGS.get(levelno, f"[lvl{levelno}]")


class SyslogFormatter(logging.Formatter):
    """Tag and logger name only; syslog stamps the time itself."""

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return f"{record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """LINE_FORMAT with a second-resolution UTC timestamp ending in "Z"."""

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def _file_handler(file_path: str, formatter: logging.Formatter) -> logging.Handler:
    path = os.path.abspath(os.path.expanduser(file_path))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    syslog_cls = logging.handlers.SysLogHandler
    options = syslog_cfg if isinstance(syslog_cfg, Mapping) else {}
    address = options.get("address", DEFAULT_SYSLOG_ADDRESS)
    facility_name = str(options.get("facility", "user")).upper()
    facility = getattr(syslog_cls, f"LOG_{facility_name}", syslog_cls.LOG_USER)
    handler = syslog_cls(address=address, facility=facility)
    handler.setFormatter(SyslogFormatter())
    return handler


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """Brief: Replace the root logger's handlers according to the logging config.

    Inputs:
      - cfg: The `logging` mapping of AppConfig (None means defaults):
          - level: trace, debug, info, warn, error or crit (default info).
          - stderr: log to stderr (default true).
          - file: path of a log file to append to.
          - syslog: true, or a mapping with `address` (socket path or
            [host, port]) and `facility` (e.g. "local0").

    Outputs:
      - None. A syslog endpoint that cannot be opened is reported as a
        warning and skipped; the other handlers stay in place.
    """

    cfg = cfg or {}
    formatter = BracketLevelFormatter(fmt=LINE_FORMAT)

    root = logging.getLogger()
    root.setLevel(parse_level(cfg.get("level", "info")))
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        root.addHandler(_file_handler(file_path.strip(), formatter))

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            root.addHandler(_syslog_handler(syslog_cfg))
        except (OSError, ValueError) as e:  # pragma: no cover - environment-specific
            root.warning("Failed to configure syslog: %s", e)

    logging.captureWarnings(True)
