"""
Brief: Tests for gatewayapi_dns.config.logging_config.init_logging and formatters.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import logging.handlers
from pathlib import Path

from gatewayapi_dns.config.logging_config import (
    TRACE,
    BracketLevelFormatter,
    SyslogFormatter,
    init_logging,
    parse_level,
)


def test_init_logging_adds_stderr_handler():
    """
    Brief: init_logging configures root logger with stderr handler by default.

    Inputs:
      - cfg: minimal dict with level

    Outputs:
      - None: Asserts StreamHandler present and level applied
    """
    init_logging({"level": "debug"})
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h, logging.StreamHandler) for h in root.handlers)


def test_init_logging_without_stderr_has_no_handlers():
    init_logging({"level": "info", "stderr": False})
    assert logging.getLogger().handlers == []


def test_init_logging_trace_level_writes_trace_entries(tmp_path):
    """
    Brief: The custom trace level is accepted and rendered with a [trace] tag.

    Inputs:
      - cfg: file path and level trace

    Outputs:
      - None: Asserts trace message and tag are written
    """
    log_path = tmp_path / "logs" / "dns.log"
    init_logging({"level": "trace", "stderr": False, "file": str(log_path)})
    logging.getLogger("gatewayapi_dns.test").log(TRACE, "watchedEvent %s", "ADDED")
    content = Path(log_path).read_text()
    assert "[trace]" in content
    assert "watchedEvent ADDED" in content


def test_init_logging_file_handler_writes(tmp_path):
    """
    Brief: init_logging creates file handler and writes formatted entries.

    Inputs:
      - cfg: file path and level

    Outputs:
      - None: Asserts file created and contains message
    """
    log_path = tmp_path / "gatewayapi-dns.log"
    init_logging({"level": "info", "file": str(log_path)})
    logging.getLogger("test").info("file message")
    logging.getLogger("test").debug("hidden message")
    content = Path(log_path).read_text()
    assert "file message" in content
    assert "hidden message" not in content
    assert "[info]" in content


def test_init_logging_syslog_success(monkeypatch):
    """
    Brief: init_logging attaches a syslog handler when configured.

    Inputs:
      - syslog: True or dict

    Outputs:
      - None: Asserts dummy handler created with expected address
    """
    created = {}

    class DummySysLogHandler(logging.Handler):
        LOG_USER = 8
        LOG_LOCAL0 = 128

        def __init__(self, address=None, facility=None):
            super().__init__()
            created["address"] = address
            created["facility"] = facility

        def setFormatter(self, fmt):
            created["formatter"] = fmt

        def emit(self, record):
            pass

    monkeypatch.setattr(logging.handlers, "SysLogHandler", DummySysLogHandler)
    init_logging({"syslog": True})
    assert created["address"] == "/dev/log"
    assert isinstance(created["formatter"], SyslogFormatter)

    created.clear()
    init_logging({"syslog": {"address": ("localhost", 514), "facility": "local0"}})
    assert created["address"] == ("localhost", 514)
    assert created["facility"] == 128

    init_logging({"stderr": False})


def test_parse_level_defaults_to_info_for_unknown_names():
    assert parse_level("warn") == logging.WARNING
    assert parse_level("TRACE") == TRACE
    assert parse_level("loud") == logging.INFO
    assert parse_level(None) == logging.INFO


def test_formatters_produce_expected_tags():
    """
    Brief: BracketLevelFormatter and SyslogFormatter include bracketed tags.

    Inputs:
      - LogRecord instances at different levels

    Outputs:
      - None: Asserts formatted strings contain expected tags
    """
    fmt = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")
    rec = logging.LogRecord("n", logging.ERROR, __file__, 1, "m", (), None)
    out = fmt.format(rec)
    assert "[error]" in out and "n:" in out
    assert out.split(" ", 1)[0].endswith("Z")

    s = SyslogFormatter()
    rec2 = logging.LogRecord("n2", logging.WARNING, __file__, 2, "m2", (), None)
    assert s.format(rec2) == "[warn] n2: m2"

    rec3 = logging.LogRecord("n3", TRACE, __file__, 3, "m3", (), None)
    assert s.format(rec3) == "[trace] n3: m3"
