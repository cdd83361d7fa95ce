import io
import json
import logging
from types import SimpleNamespace
from uuid import uuid4

import pytest

from supportdesk.logging_config import JSONFormatter, LoggerAdapter, conversation_logger, get_logger, setup_logging


def _record(message: str, context=None) -> logging.LogRecord:
    record = logging.LogRecord("supportdesk.test", logging.INFO, __file__, 1, message, None, None)
    if context is not None:
        record.context = context
    return record


class TestJSONFormatter:
    def test_lifts_correlation_ids(self):
        line = JSONFormatter().format(
            _record("AI run finished", {"conversation_id": "c-1", "attempt_id": "a-1", "tokens": 42})
        )

        entry = json.loads(line)
        assert entry["message"] == "AI run finished"
        assert entry["conversation_id"] == "c-1"
        assert entry["attempt_id"] == "a-1"
        assert entry["context"] == {"tokens": 42}

    def test_plain_record_has_no_context(self):
        entry = json.loads(JSONFormatter().format(_record("Support runtime started")))

        assert entry["level"] == "INFO"
        assert "context" not in entry


class TestLoggerAdapter:
    def test_call_context_merges_with_bound_context(self):
        adapter = LoggerAdapter(get_logger("test"), {"conversation_id": "c-1"})

        _, kwargs = adapter.bind(attempt=2).process("Retrying", {"context": {"delay": 1.0}})

        assert kwargs["extra"]["context"] == {"conversation_id": "c-1", "attempt": 2, "delay": 1.0}

    def test_conversation_logger_binds_ids(self):
        conversation = SimpleNamespace(id=uuid4(), tenant_id=uuid4())

        log = conversation_logger("retry_service", conversation, attempt_id="a-1")

        assert log.logger.name == "supportdesk.retry_service"
        assert log.extra == {"conversation_id": conversation.id, "tenant_id": conversation.tenant_id, "attempt_id": "a-1"}


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def restore_stdout_handler(self):
        yield
        setup_logging()

    def test_repeated_setup_keeps_one_handler(self):
        stream = io.StringIO()
        setup_logging("DEBUG", stream=stream)
        handler = setup_logging("DEBUG", stream=stream)

        get_logger("test").debug("hello", extra={"context": {"job_id": "j-1"}})

        root_handlers = [h for h in logging.getLogger().handlers if isinstance(h.formatter, JSONFormatter)]
        assert root_handlers == [handler]
        lines = stream.getvalue().strip().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["job_id"] == "j-1"

    def test_quiets_http_client_loggers(self):
        setup_logging("DEBUG", stream=io.StringIO())

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("redis").level == logging.WARNING
