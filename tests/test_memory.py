"""Tests for the versioned conversation memory."""

import pytest
from pydantic import ValidationError

from chat_orchestrator.schemas.conversation_schema import Conversation
from chat_orchestrator.schemas.memory_schema import (
    MEMORY_VERSION,
    CartLine,
    ConversationMemory,
    InvalidMemoryError,
    migrate_memory,
)


class TestCartLine:
    def test_price_is_unit_times_quantity(self):
        line = CartLine(service_id="1", service_name="Sofa", unit_price=49.99, quantity=3)
        assert line.price == pytest.approx(149.97)

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValueError):
            CartLine(service_id="1", service_name="Sofa", unit_price=10, quantity=0)


class TestConversationMemory:
    def test_mark_completed_is_a_set(self):
        memory = ConversationMemory()
        memory.mark_completed("name", "phone", "name")
        assert memory.completed_steps == ["name", "phone"]

    def test_cart_total(self):
        memory = ConversationMemory(
            cart=[
                CartLine(service_id="1", service_name="Sofa", unit_price=120),
                CartLine(service_id="4", service_name="Rug", unit_price=60, quantity=2),
            ]
        )
        assert memory.cart_total() == 240

    def test_clear_suggestions(self):
        memory = ConversationMemory(last_suggested_date="2025-03-17", last_suggested_slots=["09:00"])
        memory.clear_suggestions()
        assert memory.last_suggested_date is None
        assert memory.last_suggested_slots == []
        assert memory.last_suggested_options == []


class TestMigration:
    def test_empty_blob(self):
        assert migrate_memory(None) == ConversationMemory()
        assert migrate_memory({}) == ConversationMemory()

    def test_legacy_camel_case_blob(self):
        memory = migrate_memory(
            {
                "collectedData": {"serviceType": "sofa", "selectedTime": "10:00", "phone": ""},
                "completedSteps": ["serviceType", "serviceType"],
                "cart": [
                    {"serviceId": 7, "serviceName": "Sofa", "price": 200, "quantity": 2},
                    "garbage",
                    {"serviceName": "no id"},
                ],
                "lastSuggestedOptions": [{"date": "2025-03-17", "availableSlots": ["09:00"]}],
                "language": "pt-BR",
            }
        )
        assert memory.version == MEMORY_VERSION
        assert memory.collected_data.service_type == "sofa"
        assert memory.collected_data.selected_time == "10:00"
        assert memory.collected_data.phone is None
        assert memory.completed_steps == ["serviceType"]
        assert len(memory.cart) == 1
        assert memory.cart[0].service_id == "7"
        assert memory.cart[0].unit_price == 100
        assert memory.cart[0].price == 200
        assert memory.last_suggested_options[0].available_slots == ["09:00"]
        assert memory.language == "pt-BR"

    def test_v1_blob_upgraded(self):
        memory = migrate_memory({"version": 1, "completed_steps": ["name"]})
        assert memory.version == MEMORY_VERSION
        assert memory.completed_steps == ["name"]

    def test_current_blob_round_trips(self):
        original = ConversationMemory(current_step="date")
        assert migrate_memory(original.model_dump(mode="json")) == original

    def test_future_version_rejected(self):
        with pytest.raises(InvalidMemoryError):
            migrate_memory({"version": MEMORY_VERSION + 1})


class TestConversationLoad:
    def test_legacy_blob_is_migrated(self):
        conversation = Conversation.model_validate(
            {
                "id": "c1",
                "memory": {
                    "collectedData": {"name": "Ana"},
                    "completedSteps": ["name"],
                    "cart": [{"serviceId": 1, "serviceName": "3 Seater Sofa", "price": 240, "quantity": 2}],
                },
            }
        )
        memory = conversation.memory
        assert memory.version == MEMORY_VERSION
        assert memory.collected_data.name == "Ana"
        assert memory.completed_steps == ["name"]
        assert memory.cart[0].service_id == "1"
        assert memory.cart[0].unit_price == 120

    def test_stored_current_memory_is_kept(self):
        original = Conversation(id="c1")
        original.memory.collected_data.zipcode = "62704"
        loaded = Conversation.model_validate(original.model_dump(mode="json"))
        assert loaded.memory == original.memory

    def test_future_version_rejected_on_load(self):
        with pytest.raises(ValidationError):
            Conversation.model_validate({"id": "c1", "memory": {"version": MEMORY_VERSION + 1}})
