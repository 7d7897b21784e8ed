"""Tests for logging module."""

from typing import Any

import pytest
from loguru import logger

from imbue.throwaway_sshd.logging import log_span
from imbue.throwaway_sshd.logging import setup_logging


def test_setup_logging_accepts_lower_case_levels() -> None:
    setup_logging(level="debug")
    setup_logging()


def test_log_span_emits_debug_on_entry_and_trace_on_exit() -> None:
    captured: list[tuple[str, str]] = []

    def sink(message: Any) -> None:
        record = message.record
        captured.append((record["level"].name, record["message"]))

    handler_id = logger.add(sink, level="TRACE", format="{message}")
    try:
        with log_span("staging credentials in {}", "/tmp/x"):
            pass
    finally:
        logger.remove(handler_id)

    assert captured[0] == ("DEBUG", "staging credentials in /tmp/x")
    assert captured[1][0] == "TRACE"
    assert captured[1][1].startswith("staging credentials in /tmp/x [done in ")


def test_log_span_reports_failure_and_reraises() -> None:
    captured: list[str] = []

    def sink(message: Any) -> None:
        captured.append(message.record["message"])

    handler_id = logger.add(sink, level="TRACE", format="{message}")
    try:
        with pytest.raises(RuntimeError, match="boom"):
            with log_span("spawning sshd"):
                raise RuntimeError("boom")
    finally:
        logger.remove(handler_id)

    assert any("[failed after " in message for message in captured)


def test_log_span_binds_context_to_inner_messages() -> None:
    extras: list[dict[str, Any]] = []

    def sink(message: Any) -> None:
        extras.append(dict(message.record["extra"]))

    handler_id = logger.add(sink, level="TRACE", format="{message}")
    try:
        with log_span("draining", sshd_port=2222):
            logger.info("inside")
    finally:
        logger.remove(handler_id)

    assert all(extra.get("sshd_port") == 2222 for extra in extras)
