"""Tests for heuristic field capture and slot resolution."""

from chat_orchestrator.conversation.capture import (
    apply_selected_slot,
    capture_contact_fields,
    last_visible_assistant_message,
    latest_proposed_service_id,
    missing_booking_fields,
    resolve_selected_slot,
)
from chat_orchestrator.schemas.conversation_schema import Conversation, Message, MessageRole
from chat_orchestrator.schemas.memory_schema import ConversationMemory, SuggestedOption
from tests.conftest import MONDAY, TODAY, TUESDAY, ready_to_book


def _conversation() -> Conversation:
    return Conversation(id="c1")


class TestCaptureContactFields:
    def test_name_from_phrase(self):
        conversation = _conversation()
        result = capture_contact_fields(conversation, "Hi, my name is Maria Silva", 0, 3)
        assert result.captured
        assert result.contact_updates == {"name": "Maria Silva"}
        assert conversation.memory.collected_data.name == "Maria Silva"
        assert conversation.visitor_name == "Maria Silva"
        assert "name" in conversation.memory.completed_steps

    def test_phone_and_zip_in_one_message(self):
        conversation = _conversation()
        result = capture_contact_fields(conversation, "62704 and my cell is 555-123-4567", 4, 3)
        assert result.phone == "555-123-4567"
        assert conversation.visitor_zipcode == "62704"
        assert conversation.visitor_phone == "555-123-4567"

    def test_phone_with_comma_is_not_an_address(self):
        conversation = _conversation()
        capture_contact_fields(conversation, "555-123-4567, thanks", 4, 3)
        assert conversation.visitor_phone == "555-123-4567"
        assert conversation.memory.collected_data.address is None

    def test_address(self):
        conversation = _conversation()
        capture_contact_fields(conversation, "123 Main Street, Springfield", 6, 3)
        assert conversation.memory.collected_data.address == "123 Main Street, Springfield"
        assert conversation.visitor_address == "123 Main Street, Springfield"

    def test_bare_name_needs_history_and_pending_name(self):
        early = _conversation()
        assert not capture_contact_fields(early, "Maria Silva", 1, 3, "name").captured

        wrong_step = _conversation()
        assert not capture_contact_fields(wrong_step, "Maria Silva", 6, 3, "phone").captured

        asked = _conversation()
        result = capture_contact_fields(asked, "Maria Silva", 6, 3, "name")
        assert result.memory_updates == {"name": "Maria Silva"}

    def test_collected_fields_not_overwritten(self):
        conversation = _conversation()
        conversation.memory.collected_data.phone = "555-999-0000"
        conversation.memory.mark_completed("phone")
        result = capture_contact_fields(conversation, "actually 555-123-4567", 6, 3)
        assert not result.captured
        assert conversation.memory.collected_data.phone == "555-999-0000"

    def test_nothing_to_capture(self):
        result = capture_contact_fields(_conversation(), "I need my sofa cleaned", 0, 3)
        assert result.captured is False
        assert result.labels == []


class TestResolveSelectedSlot:
    def _memory(self) -> ConversationMemory:
        return ConversationMemory(
            last_suggested_options=[
                SuggestedOption(date=MONDAY, available_slots=["09:00", "10:00"]),
                SuggestedOption(date=TUESDAY, available_slots=["09:00", "11:00"]),
            ]
        )

    def test_unique_time_picks_its_date(self):
        assert resolve_selected_slot(self._memory(), "10am", TODAY) == (MONDAY, "10:00")
        assert resolve_selected_slot(self._memory(), "11am works", TODAY) == (TUESDAY, "11:00")

    def test_shared_time_is_ambiguous(self):
        assert resolve_selected_slot(self._memory(), "9am", TODAY) is None

    def test_named_date_disambiguates(self):
        assert resolve_selected_slot(self._memory(), "tuesday at 9am", TODAY) == (TUESDAY, "09:00")

    def test_named_date_without_that_time(self):
        assert resolve_selected_slot(self._memory(), "monday 11am", TODAY) is None

    def test_no_time_in_reply(self):
        assert resolve_selected_slot(self._memory(), "monday", TODAY) is None

    def test_falls_back_to_last_suggested_date(self):
        memory = ConversationMemory(last_suggested_date=MONDAY, last_suggested_slots=["14:00"])
        assert resolve_selected_slot(memory, "2pm", TODAY) == (MONDAY, "14:00")
        assert resolve_selected_slot(memory, "3pm", TODAY) is None

    def test_apply_selected_slot_clears_hints(self):
        memory = self._memory()
        apply_selected_slot(memory, MONDAY, "10:00")
        assert memory.collected_data.selected_date == MONDAY
        assert memory.collected_data.selected_time == "10:00"
        assert memory.collected_data.preferred_date == MONDAY
        assert "date" in memory.completed_steps
        assert memory.last_suggested_options == []


class TestMessageHelpers:
    def test_latest_proposed_service_id(self):
        messages = [
            Message(
                id="a",
                conversation_id="c1",
                role=MessageRole.ASSISTANT,
                content="[TOOL CALL] add_service",
                metadata={"internal": True, "type": "tool_call", "tool_name": "add_service", "tool_args": {"service_id": 2.0}},
            ),
            Message(id="b", conversation_id="c1", role=MessageRole.VISITOR, content="hmm"),
        ]
        assert latest_proposed_service_id(messages) == "2"
        assert latest_proposed_service_id(messages[1:]) is None

    def test_last_visible_assistant_message_skips_internal(self):
        messages = [
            Message(id="a", conversation_id="c1", role=MessageRole.ASSISTANT, content="Which day?"),
            Message(
                id="b",
                conversation_id="c1",
                role=MessageRole.ASSISTANT,
                content="[INTAKE] Next step",
                metadata={"internal": True},
            ),
            Message(id="c", conversation_id="c1", role=MessageRole.VISITOR, content="monday"),
        ]
        assert last_visible_assistant_message(messages).id == "a"
        assert last_visible_assistant_message([]) is None

    def test_missing_booking_fields(self):
        assert missing_booking_fields(_conversation()) == [
            "service selection",
            "preferred date",
            "time slot",
            "your name",
            "phone number",
            "address",
        ]
        assert missing_booking_fields(ready_to_book(_conversation())) == []
