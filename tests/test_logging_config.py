"""
Brief: Tests for zonekeeper.config.logging_config.init_logging and formatters.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import logging.handlers
from pathlib import Path

from zonekeeper.config.logging_config import (
    BracketLevelFormatter,
    SyslogFormatter,
    init_logging,
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
    assert any(isinstance(h, logging.StreamHandler) for h in root.handlers)
    assert root.level == logging.DEBUG


def test_init_logging_none_uses_info():
    """
    Brief: A missing logging section means info level on stderr.

    Inputs:
      - cfg: None

    Outputs:
      - None: Asserts INFO level and a single handler
    """
    init_logging(None)
    root = logging.getLogger()
    assert root.level == logging.INFO
    assert len(root.handlers) == 1


def test_init_logging_file_handler_writes(tmp_path):
    """
    Brief: init_logging creates file handler and writes formatted entries.

    Inputs:
      - cfg: file path and level

    Outputs:
      - None: Asserts file created and contains message
    """
    log_path = tmp_path / "logs" / "zonekeeper.log"
    init_logging({"level": "info", "file": str(log_path), "stderr": False})
    logging.getLogger("zonekeeper.test").info("file message")
    logging.getLogger("zonekeeper.test").debug("hidden message")
    for h in logging.getLogger().handlers:
        h.flush()
    content = Path(log_path).read_text()
    assert "file message" in content
    assert "hidden message" not in content
    assert "[info] zonekeeper.test:" in content


def test_init_logging_syslog(monkeypatch):
    """
    Brief: init_logging attaches a syslog handler with the configured facility.

    Inputs:
      - syslog: dict with facility and tag

    Outputs:
      - None: Asserts dummy handler arguments and formatter tag
    """
    created = {}

    class DummySysLogHandler(logging.Handler):
        LOG_DAEMON = 3
        LOG_LOCAL0 = 16

        def __init__(self, address=None, facility=None):
            super().__init__()
            created["address"] = address
            created["facility"] = facility

        def setFormatter(self, fmt):
            created["formatter"] = fmt

        def emit(self, record):
            pass

    monkeypatch.setattr(logging.handlers, "SysLogHandler", DummySysLogHandler)
    init_logging({"stderr": False, "syslog": {"facility": "local0", "tag": "zk"}})
    assert created["address"] == "/dev/log"
    assert created["facility"] == 16
    assert created["formatter"].tag == "zk"

    init_logging({"stderr": False, "syslog": True})
    assert created["facility"] == 3


def test_formatters_render_level_tags():
    """
    Brief: Formatters render bracketed lowercase level tags and UTC times.

    Inputs:
      - synthetic warning record

    Outputs:
      - None: Asserts formatted strings
    """
    record = logging.LogRecord("zonekeeper.x", logging.WARNING, __file__, 1, "careful", None, None)
    record.created = 0
    text = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(message)s").format(record)
    assert text == "1970-01-01T00:00:00Z [warn] careful"
    assert SyslogFormatter().format(record) == "zonekeeper: [warn] zonekeeper.x: careful"
