from chat_orchestrator.conversation.events import ConversationEvent, EventChannel
from chat_orchestrator.conversation.guardrails import GuardrailPipeline, GuardrailResult
from chat_orchestrator.conversation.intake import (
    DEFAULT_INTAKE_OBJECTIVES,
    IntakeTracker,
    is_objective_complete,
)

__all__ = [
    "ConversationEvent",
    "EventChannel",
    "GuardrailPipeline",
    "GuardrailResult",
    "DEFAULT_INTAKE_OBJECTIVES",
    "IntakeTracker",
    "is_objective_complete",
]
