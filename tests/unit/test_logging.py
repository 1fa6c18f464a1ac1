"""Unit tests for the logging abstraction and correlation IDs."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterator
from pathlib import Path

import pytest

from tasmota_control.correlation import correlation_context, get_correlation_id, set_correlation_id
from tasmota_control.logging_abstraction import (
    ROOT_LOGGER,
    HumanReadableFormatter,
    JSONFormatter,
    TasmotaLogger,
    configure_logging,
    get_logger,
)


class _Capture(logging.Handler):
    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def _unique_name() -> str:
    return f"{ROOT_LOGGER}.test.{uuid.uuid4().hex}"


@pytest.fixture(autouse=True)
def _clear_correlation_id() -> None:
    set_correlation_id(None)


@pytest.fixture
def captured() -> Iterator[tuple[TasmotaLogger, _Capture]]:
    logger = get_logger(_unique_name())
    capture = _Capture()
    logger.logger.addHandler(capture)
    logger.logger.setLevel(logging.DEBUG)
    yield logger, capture
    logger.logger.removeHandler(capture)


class TestFormatters:
    def test_json_promotes_device_fields(self, captured: tuple[TasmotaLogger, _Capture]) -> None:
        logger, capture = captured
        with correlation_context("abc123"):
            logger.info(
                "sent %s",
                "Power1",
                extra={"device": "plug", "transport": "mqtt", "command": "Power1", "sequence": 7, "attempt": 2},
            )

        data = json.loads(JSONFormatter().format(capture.records[-1]))
        assert data["message"] == "sent Power1"
        assert data["level"] == "INFO"
        assert data["correlation_id"] == "abc123"
        assert (data["device"], data["transport"], data["command"], data["sequence"]) == ("plug", "mqtt", "Power1", 7)
        assert data["context"] == {"attempt": 2}

    def test_json_without_context(self, captured: tuple[TasmotaLogger, _Capture]) -> None:
        logger, capture = captured
        logger.info("plain")

        data = json.loads(JSONFormatter().format(capture.records[-1]))
        assert "context" not in data
        assert "device" not in data
        assert data["correlation_id"] is None

    def test_record_correlation_id_wins_over_active_scope(self, captured: tuple[TasmotaLogger, _Capture]) -> None:
        logger, capture = captured
        # replies are handled on the session's task, outside the sender's scope
        logger.debug("answered", extra={"correlation_id": "sender01", "sequence": 3})

        record = capture.records[-1]
        assert json.loads(JSONFormatter().format(record))["correlation_id"] == "sender01"
        assert "[sender01]" in HumanReadableFormatter().format(record)

    def test_human_tags_device_and_appends_context(self, captured: tuple[TasmotaLogger, _Capture]) -> None:
        logger, capture = captured
        with correlation_context("0123456789abcdef"):
            logger.info("sent %s", "Dimmer", extra={"device": "bulb", "transport": "mqtt", "sequence": 4, "partial": False})

        line = HumanReadableFormatter().format(capture.records[-1])
        assert "[01234567] bulb/mqtt#4 > sent Dimmer" in line
        assert line.endswith("| partial=False")

    def test_human_without_device_fields(self, captured: tuple[TasmotaLogger, _Capture]) -> None:
        logger, capture = captured
        logger.warning("plain")

        line = HumanReadableFormatter().format(capture.records[-1])
        assert "[--------] > plain" in line

    def test_human_command_only(self, captured: tuple[TasmotaLogger, _Capture]) -> None:
        logger, capture = captured
        logger.info("queued", extra={"command": "CT"})
        assert "[--------] CT > queued" in HumanReadableFormatter().format(capture.records[-1])

    def test_records_point_at_the_caller(self, captured: tuple[TasmotaLogger, _Capture]) -> None:
        logger, capture = captured
        logger.debug("where")
        assert capture.records[-1].funcName == "test_records_point_at_the_caller"


class TestLibraryLoggers:
    def test_get_logger_attaches_no_handlers(self) -> None:
        logger = get_logger(_unique_name())
        assert logger.logger.handlers == []
        assert any(isinstance(h, logging.NullHandler) for h in logging.getLogger(ROOT_LOGGER).handlers)

    def test_disabled_level_is_not_emitted(self, captured: tuple[TasmotaLogger, _Capture]) -> None:
        logger, capture = captured
        logger.logger.setLevel(logging.WARNING)
        logger.info("quiet")
        assert capture.records == []


class TestConfigureLogging:
    def test_writes_human_file(self, tmp_path: Path) -> None:
        name = _unique_name()
        target = tmp_path / "logs" / "tasmota.log"
        configured = configure_logging("human", human_output=str(target), logger_name=name)

        get_logger(f"{name}.session").info("%s connected", "session:", extra={"connections": 1})
        for handler in configured.handlers:
            handler.flush()

        content = target.read_text(encoding="utf-8")
        assert "session: connected" in content
        assert "connections=1" in content

    def test_writes_json_file(self, tmp_path: Path) -> None:
        name = _unique_name()
        target = tmp_path / "tasmota.jsonl"
        configured = configure_logging("json", json_file=target, logger_name=name)

        get_logger(f"{name}.correlator").warning("no reply to %s", "Power1", extra={"device": "plug"})
        for handler in configured.handlers:
            handler.flush()

        data = json.loads(target.read_text(encoding="utf-8").splitlines()[-1])
        assert data["message"] == "no reply to Power1"
        assert data["device"] == "plug"

    def test_unknown_format_falls_back_to_human(self) -> None:
        configured = configure_logging("xml", human_output="stderr", logger_name=_unique_name())
        assert [type(h.formatter) for h in configured.handlers] == [HumanReadableFormatter]

    def test_reconfiguring_replaces_own_handlers_only(self) -> None:
        name = _unique_name()
        foreign = logging.NullHandler()
        logging.getLogger(name).addHandler(foreign)

        configure_logging("human", human_output="stderr", logger_name=name)
        configured = configure_logging("human", human_output="stdout", logger_name=name, debug=True)

        assert foreign in configured.handlers
        assert len(configured.handlers) == 2
        assert configured.level == logging.DEBUG


class TestCorrelation:
    def test_nested_scopes_share_id(self) -> None:
        with correlation_context() as outer:
            with correlation_context() as inner:
                assert inner == outer
            assert get_correlation_id() == outer
        assert get_correlation_id() is None

    def test_explicit_id_wins_and_is_restored(self) -> None:
        with correlation_context("outer"):
            with correlation_context("inner") as inner:
                assert inner == "inner"
            assert get_correlation_id() == "outer"

    def test_generated_ids_are_uuid_hex(self) -> None:
        with correlation_context() as corr_id:
            assert len(corr_id) == 32
