import logging

import pytest

from shared import log


@pytest.fixture
def restore_levels(monkeypatch):
    monkeypatch.setattr(log, "_level_override", None)
    saved = {name: logging.getLogger(name).level for name in log._loggers_configured}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


def test_set_log_level_applies_to_existing_module_loggers(restore_levels):
    import client.ws_client  # noqa: F401
    ws_logger = logging.getLogger("client.ws_client")
    assert ws_logger.isEnabledFor(logging.INFO)

    log.set_log_level("ERROR")

    assert not ws_logger.isEnabledFor(logging.INFO)
    assert not logging.getLogger("client.config").isEnabledFor(logging.WARNING)
    assert ws_logger.isEnabledFor(logging.ERROR)


def test_set_log_level_applies_to_loggers_created_later(restore_levels):
    log.set_log_level("WARNING")

    late = log.get_logger("tests.late_logger")

    assert late.level == logging.WARNING


def test_context_formatter_prefixes_chat_fields():
    formatter = log.GenericFormatter(fmt="%(message)s")
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "Connecting", None, None)
    record.conn = "ws://localhost:3000"
    record.state = "connecting"

    assert formatter.format(record) == "[conn=ws://localhost:3000 state=connecting] Connecting"
    assert record.msg == "Connecting"
