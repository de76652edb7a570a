"""Stamp log records with the conversation a chat turn belongs to.

The orchestrator binds the conversation id at the start of each turn; every
record emitted while that turn runs carries it as ``record.conversation_id``,
which the root handler format prints between the logger name and the level.
Records logged outside a turn show ``-``.
"""

import logging
from contextvars import ContextVar
from typing import Iterable, Optional

NO_CONVERSATION = "-"

_active_conversation: ContextVar[str] = ContextVar("active_conversation", default=NO_CONVERSATION)


def set_conversation_id(conversation_id: str) -> None:
    _active_conversation.set(conversation_id)


def current_conversation_id() -> str:
    return _active_conversation.get()


class ConversationIdFilter(logging.Filter):
    """Adds ``conversation_id`` to records that do not carry one yet."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "conversation_id"):
            record.conversation_id = current_conversation_id()  # type: ignore[attr-defined]
        return True


def install_conversation_filter(handlers: Optional[Iterable[logging.Handler]] = None) -> None:
    """Attach the filter to ``handlers`` (the root logger's by default).

    Handler filters also see records propagated from third-party loggers, so
    a format string using ``%(conversation_id)s`` never hits a missing key.
    """
    targets = logging.getLogger().handlers if handlers is None else handlers
    for handler in targets:
        if not any(isinstance(f, ConversationIdFilter) for f in handler.filters):
            handler.addFilter(ConversationIdFilter())


def get_conversation_logger(name: str) -> logging.Logger:
    """Module logger whose records are stamped at creation time.

    Stamping on the logger as well as the handler lets handlers added later
    (test capture, extra sinks) read the id without installing anything.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, ConversationIdFilter) for f in logger.filters):
        logger.addFilter(ConversationIdFilter())
    return logger
