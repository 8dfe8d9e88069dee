"""日志配置测试"""

import json
import logging

import pytest
import structlog
from inkwell.core.logging_config import (
    bind_document_context,
    clear_document_context,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestSetupLogging:
    def test_json_file_output_carries_document_context(self, tmp_path):
        log_file = tmp_path / "logs" / "history.jsonl"
        setup_logging(log_format="json", log_level="DEBUG", log_file=str(log_file))

        bind_document_context("doc1")
        structlog.get_logger("inkwell.test").info("save_completed", sequence=7)
        clear_document_context()
        structlog.get_logger("inkwell.test").info("document_session_closed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        first, second = (json.loads(line) for line in log_file.read_text().splitlines())
        assert first["event"] == "save_completed"
        assert first["document_id"] == "doc1"
        assert first["sequence"] == 7
        assert first["level"] == "info"
        assert "document_id" not in second

    def test_level_from_env(self, monkeypatch):
        monkeypatch.setenv("INKWELL_LOG_LEVEL", "warning")
        setup_logging()
        assert logging.getLogger().level == logging.WARNING
        (handler,) = logging.getLogger().handlers
        assert isinstance(handler, logging.StreamHandler)
