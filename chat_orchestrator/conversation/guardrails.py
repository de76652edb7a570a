"""
Post-model guardrails for assistant replies.

Two independent checks run on every reply before it is stored:
1. StallGuardrail drops "one moment"-style sentences the chat cannot honor.
2. FabricationGuardrail flags replies that claim a booking which did not happen.

The fabrication check is a phrase-list heuristic. It can over-trigger on a
legitimately worded sentence and miss novel phrasings; the orchestrator
treats a hit as a signal to verify, not as proof.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class GuardrailResult:
    """Outcome of a single guardrail check."""
    passed: bool
    violation_type: Optional[str] = None
    message: Optional[str] = None
    severity: str = "warning"  # "warning" | "override" | "auto_book"


class StallGuardrail:
    """Removes sentences that promise a follow-up the chat will never send."""

    STALL_PATTERNS = [
        re.compile(r"one moment", re.IGNORECASE),
        re.compile(r"hold on", re.IGNORECASE),
        re.compile(r"please wait", re.IGNORECASE),
        re.compile(r"let me check", re.IGNORECASE),
        re.compile(r"i'?ll check", re.IGNORECASE),
        re.compile(r"checking (that|availability|the schedule)", re.IGNORECASE),
        re.compile(r"just a moment", re.IGNORECASE),
    ]

    EMPTY_REPLY = "Got it."

    _SENTENCE = re.compile(r"[^.!?]+[.!?]*")

    def sanitize(self, text: str) -> str:
        parts = self._SENTENCE.findall(text or "") or [text or ""]
        kept = [p for p in parts if not any(rx.search(p) for rx in self.STALL_PATTERNS)]
        cleaned = re.sub(r"\s+", " ", " ".join(kept)).strip()
        return cleaned or self.EMPTY_REPLY


class FabricationGuardrail:
    """Detects success-sounding booking language not backed by a real booking."""

    # Checked when create_booking ran and failed
    FAILED_INDICATORS = [
        "confirmado", "confirmed", "agendado", "booked", "scheduled", "reservado",
        "seu agendamento", "your booking", "your appointment", "marcado",
    ]

    # Checked when create_booking was never called this turn
    UNATTEMPTED_INDICATORS = [
        "you're all set", "all set", "booking is confirmed", "booked for", "scheduled for",
        "confirmado", "agendado", "marcado para", "your appointment is", "successfully booked",
        "you'll get a text confirmation", "text confirmation",
    ]

    @staticmethod
    def _first_hit(text: str, indicators: list[str]) -> Optional[str]:
        lower = (text or "").lower().replace("’", "'")
        for phrase in indicators:
            if phrase in lower:
                return phrase
        return None

    def check_failed_booking(self, text: str) -> GuardrailResult:
        hit = self._first_hit(text, self.FAILED_INDICATORS)
        if hit is None:
            return GuardrailResult(passed=True)
        logger.warning("Reply claims success after a failed booking: '%s'", hit)
        return GuardrailResult(
            passed=False,
            violation_type="failed_booking_claimed",
            message=f"Reply contains '{hit}' although create_booking failed.",
            severity="override",
        )

    def check_unattempted_booking(self, text: str) -> GuardrailResult:
        hit = self._first_hit(text, self.UNATTEMPTED_INDICATORS)
        if hit is None:
            return GuardrailResult(passed=True)
        logger.warning("Reply claims a booking that was never attempted: '%s'", hit)
        return GuardrailResult(
            passed=False,
            violation_type="fabricated_booking",
            message=f"Reply contains '{hit}' but create_booking was never called.",
            severity="auto_book",
        )


class GuardrailPipeline:
    """Composes the reply guardrails."""

    def __init__(self) -> None:
        self.stall = StallGuardrail()
        self.fabrication = FabricationGuardrail()

    def sanitize(self, text: str) -> str:
        return self.stall.sanitize(text)

    def check_booking_claims(
        self, text: str, booking_attempted: bool, booking_failed: bool, booking_completed: bool
    ) -> Optional[GuardrailResult]:
        """Returns the violation to act on, if any."""
        if booking_completed:
            return None
        if booking_attempted and booking_failed:
            result = self.fabrication.check_failed_booking(text)
        elif not booking_attempted:
            result = self.fabrication.check_unattempted_booking(text)
        else:
            return None
        return None if result.passed else result
