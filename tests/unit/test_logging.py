"""
Unit tests for the context log formatter
"""

import logging

from core.logging import ContextFormatter, request_id_var


def make_record(context=None) -> logging.LogRecord:
    record = logging.LogRecord("ingestion.runner", logging.INFO, __file__, 1, "Batch done", None, None)
    if context is not None:
        record.context = context
    return record


class TestContextFormatter:
    """Test structured context rendering"""

    def test_plain_message_without_context(self):
        assert ContextFormatter("%(message)s").format(make_record()) == "Batch done"

    def test_context_pairs_are_appended(self):
        message = ContextFormatter("%(message)s").format(make_record({"processed": 50, "errors": 0}))
        assert message == "Batch done | processed=50, errors=0"

    def test_bound_request_id_is_appended(self):
        token = request_id_var.set("req_abc123")
        try:
            message = ContextFormatter("%(message)s").format(make_record({"processed": 50}))
        finally:
            request_id_var.reset(token)

        assert message == "Batch done | processed=50, request_id=req_abc123"
        assert request_id_var.get() is None

    def test_explicit_request_id_wins(self):
        token = request_id_var.set("req_outer")
        try:
            message = ContextFormatter("%(message)s").format(make_record({"request_id": "req_inner"}))
        finally:
            request_id_var.reset(token)

        assert message == "Batch done | request_id=req_inner"
