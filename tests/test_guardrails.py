"""Tests for the reply guardrails."""

from chat_orchestrator.conversation.guardrails import (
    FabricationGuardrail,
    GuardrailPipeline,
    StallGuardrail,
)


class TestStallGuardrail:
    def setup_method(self):
        self.guard = StallGuardrail()

    def test_clean_reply_unchanged(self):
        assert self.guard.sanitize("Monday works. What's your name?") == "Monday works. What's your name?"

    def test_stall_sentence_removed(self):
        result = self.guard.sanitize("Let me check the calendar. Which day suits you?")
        assert result == "Which day suits you?"

    def test_only_stall_becomes_placeholder(self):
        assert self.guard.sanitize("One moment please.") == StallGuardrail.EMPTY_REPLY

    def test_empty_reply_becomes_placeholder(self):
        assert self.guard.sanitize("") == StallGuardrail.EMPTY_REPLY

    def test_leading_stall_dropped(self):
        assert self.guard.sanitize("Just a moment. Tuesday is open.") == "Tuesday is open."


class TestFabricationGuardrail:
    def setup_method(self):
        self.guard = FabricationGuardrail()

    def test_failed_booking_claimed_as_confirmed(self):
        result = self.guard.check_failed_booking("Your booking is confirmed!")
        assert result.passed is False
        assert result.severity == "override"

    def test_failed_booking_in_portuguese(self):
        assert self.guard.check_failed_booking("Seu agendamento foi feito").passed is False

    def test_failed_booking_honest_reply_passes(self):
        assert self.guard.check_failed_booking("That time was taken. How about 11am?").passed is True

    def test_unattempted_all_set(self):
        result = self.guard.check_unattempted_booking("You're all set for Monday!")
        assert result.passed is False
        assert result.severity == "auto_book"

    def test_unattempted_curly_apostrophe(self):
        assert self.guard.check_unattempted_booking("You’re all set!").passed is False

    def test_unattempted_question_passes(self):
        assert self.guard.check_unattempted_booking("Which time works for you?").passed is True


class TestGuardrailPipeline:
    def test_completed_booking_never_flagged(self, guardrail_pipeline):
        assert guardrail_pipeline.check_booking_claims("You're all set!", True, False, True) is None

    def test_failed_booking_overrides(self, guardrail_pipeline):
        result = guardrail_pipeline.check_booking_claims("Booked for Monday!", True, True, False)
        assert result is not None
        assert result.severity == "override"

    def test_unattempted_triggers_auto_book(self, guardrail_pipeline):
        result = guardrail_pipeline.check_booking_claims("Scheduled for Monday at 10am", False, False, False)
        assert result is not None
        assert result.severity == "auto_book"

    def test_attempted_without_failure_not_checked(self):
        pipeline = GuardrailPipeline()
        assert pipeline.check_booking_claims("Confirmed", True, False, False) is None

    def test_sanitize_delegates_to_stall(self):
        assert GuardrailPipeline().sanitize("Please wait.") == StallGuardrail.EMPTY_REPLY
