"""Tests for conversation-id stamping of log records."""

import contextvars
import io
import logging

import pytest

from chat_orchestrator.config import LOG_FORMAT
from chat_orchestrator.logging_context import (
    NO_CONVERSATION,
    install_conversation_filter,
    set_conversation_id,
)
from chat_orchestrator.schemas.api_schema import ChatRequest

ORCHESTRATOR_LOGGER = "chat_orchestrator.conversation.orchestrator"


def _capture_handler() -> tuple[logging.Handler, io.StringIO]:
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler, stream


class TestHandlerFormat:
    def setup_method(self):
        self.handler, self.stream = _capture_handler()
        install_conversation_filter([self.handler])
        self.logger = logging.getLogger("tests.plain_module")
        self.logger.addHandler(self.handler)
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False

    def teardown_method(self):
        self.logger.removeHandler(self.handler)

    def test_plain_logger_gets_active_id(self):
        def emit():
            set_conversation_id("conv-fmt")
            self.logger.info("hello")

        contextvars.Context().run(emit)
        assert "[tests.plain_module] [conv-fmt] INFO: hello" in self.stream.getvalue()

    def test_outside_a_turn(self):
        contextvars.Context().run(self.logger.info, "idle")
        assert f"[{NO_CONVERSATION}] INFO: idle" in self.stream.getvalue()

    def test_install_is_idempotent(self):
        install_conversation_filter([self.handler])
        assert len(self.handler.filters) == 1


class TestTurnLogging:
    @pytest.mark.asyncio
    async def test_turn_records_carry_conversation_id(self, runtime, caplog):
        caplog.set_level(logging.INFO)
        request = ChatRequest(message="Hello", conversation_id="conv-log")
        await runtime.orchestrator.handle_turn(request, "10.0.0.1")

        records = [r for r in caplog.records if r.name == ORCHESTRATOR_LOGGER]
        assert records
        assert {r.conversation_id for r in records} == {"conv-log"}

    @pytest.mark.asyncio
    async def test_formatted_turn_line(self, runtime):
        handler, stream = _capture_handler()
        install_conversation_filter([handler])
        logger = logging.getLogger(ORCHESTRATOR_LOGGER)
        previous_level = logger.level
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        try:
            request = ChatRequest(message="Hello", conversation_id="conv-line")
            await runtime.orchestrator.handle_turn(request, "10.0.0.1")
        finally:
            logger.removeHandler(handler)
            logger.setLevel(previous_level)

        assert "[conv-line] INFO: Conversation conv-line created" in stream.getvalue()
