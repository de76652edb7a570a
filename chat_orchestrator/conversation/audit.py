"""Internal audit messages written alongside the visitor-facing transcript."""

import logging
import uuid
from typing import Any, Optional

from chat_orchestrator.schemas.conversation_schema import Message, MessageRole
from chat_orchestrator.storage.base import Storage

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


class AuditTrail:
    """Writes ``internal=True`` assistant messages.

    These never reach the visitor, the model history or the message cap;
    they exist so an operator can replay what the orchestrator decided.
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    async def record(self, conversation_id: str, content: str, **metadata: Any) -> Message:
        message = Message(
            id=new_id(),
            conversation_id=conversation_id,
            role=MessageRole.ASSISTANT,
            content=content,
            metadata={"internal": True, **metadata},
        )
        return await self.storage.add_message(message)

    async def tool_call(
        self,
        conversation_id: str,
        tool_name: str,
        tool_args: dict,
        tool_call_id: str,
        content: Optional[str] = None,
        **metadata: Any,
    ) -> Message:
        return await self.record(
            conversation_id,
            content or f"[TOOL CALL] {tool_name}",
            type="tool_call",
            tool_name=tool_name,
            tool_args=tool_args,
            tool_call_id=tool_call_id,
            **metadata,
        )

    async def tool_result(
        self,
        conversation_id: str,
        tool_name: str,
        tool_result: dict,
        tool_call_id: str,
        content: Optional[str] = None,
    ) -> Message:
        return await self.record(
            conversation_id,
            content or f"[TOOL RESULT] {tool_name}",
            type="tool_result",
            tool_name=tool_name,
            tool_result=tool_result,
            tool_call_id=tool_call_id,
        )
