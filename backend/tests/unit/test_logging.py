"""
Unit tests for structured logging and settings parsing
"""
import json
import pytest

from core.config import parse_bool
from core.logging import StructuredLogger, LogFormat, LogLevel


@pytest.mark.unit
class TestStructuredLogger:

    def test_business_event_is_one_json_document(self, capsys):
        logger = StructuredLogger(name="test.orders")

        logger.log_business_event("order_created", {"order_number": "ORD-2025-000001"}, user_id="user-1")

        entry = json.loads(capsys.readouterr().out.strip())
        assert entry["level"] == "INFO"
        assert entry["message"] == "Business Event: order_created"
        assert entry["service"] == "order-core"
        assert entry["user_id"] == "user-1"
        assert entry["metadata"] == {"order_number": "ORD-2025-000001"}
        assert entry["context"]["event_type"] == "order_created"

    def test_exception_details_are_captured(self, capsys):
        logger = StructuredLogger(name="test.errors")
        try:
            raise ConnectionError("smtp down")
        except ConnectionError as e:
            logger.error(message="Send failed", exception=e)

        entry = json.loads(capsys.readouterr().out.strip())
        assert entry["exception"]["type"] == "ConnectionError"
        assert entry["exception"]["message"] == "smtp down"
        assert "Traceback" in entry["exception"]["traceback"]

    def test_level_filtering(self, capsys):
        logger = StructuredLogger(name="test.quiet", level=LogLevel.WARNING)
        logger.info(message="not shown")
        logger.debug(message="not shown either")
        assert capsys.readouterr().out == ""

    def test_simple_format(self, capsys):
        logger = StructuredLogger(name="test.simple", log_format=LogFormat.SIMPLE)
        logger.warning(message="Lookup failed", metadata={"pincode": "400050"})
        assert "Lookup failed | Metadata: {'pincode': '400050'}" in capsys.readouterr().out


@pytest.mark.unit
class TestParseBool:

    @pytest.mark.parametrize("value,expected", [
        ("true", True), ("1", True), ("Yes", True), ("false", False), ("0", False), ("", False),
    ])
    def test_parse_bool(self, value, expected):
        assert parse_bool(value) is expected
