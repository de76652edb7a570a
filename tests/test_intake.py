"""Tests for the intake objective tracker."""

from chat_orchestrator.conversation.intake import (
    DEFAULT_INTAKE_OBJECTIVES,
    IntakeTracker,
    is_objective_complete,
    order_objectives,
)
from chat_orchestrator.schemas.conversation_schema import (
    Conversation,
    IntakeObjective,
    Message,
    MessageRole,
    ObjectiveId,
)
from chat_orchestrator.schemas.memory_schema import CartLine


def _conversation(**fields) -> Conversation:
    return Conversation(id="c1", **fields)


def _intake_next(objective_id: str, index: int) -> Message:
    return Message(
        id=f"m{index}",
        conversation_id="c1",
        role=MessageRole.ASSISTANT,
        content="[INTAKE] Next step",
        metadata={"internal": True, "type": "intake_next", "next_step": {"id": objective_id}},
    )


class TestOrdering:
    def test_empty_config_uses_defaults(self):
        assert [o.id for o in order_objectives([])] == [o.id for o in DEFAULT_INTAKE_OBJECTIVES]

    def test_zipcode_first_moves_after_details(self):
        objectives = [
            IntakeObjective(id=ObjectiveId.ZIPCODE, label="Zip"),
            IntakeObjective(id=ObjectiveId.SERVICE_TYPE, label="Service"),
            IntakeObjective(id=ObjectiveId.SERVICE_DETAILS, label="Details"),
            IntakeObjective(id=ObjectiveId.NAME, label="Name"),
        ]
        ordered = [o.id for o in order_objectives(objectives)]
        assert ordered == [
            ObjectiveId.SERVICE_TYPE,
            ObjectiveId.SERVICE_DETAILS,
            ObjectiveId.ZIPCODE,
            ObjectiveId.NAME,
        ]

    def test_disabled_objectives_skipped(self):
        objectives = [
            IntakeObjective(id=ObjectiveId.SERVICE_TYPE, label="Service"),
            IntakeObjective(id=ObjectiveId.PHONE, label="Phone", enabled=False),
        ]
        tracker = IntakeTracker(objectives)
        assert tracker.enabled_ids == {"serviceType"}


class TestCompletion:
    def test_address_supersedes_zipcode(self):
        conversation = _conversation(visitor_address="1 Main St, Dover")
        assert is_objective_complete(ObjectiveId.ZIPCODE, conversation) is True

    def test_service_type_needs_cart(self):
        conversation = _conversation()
        conversation.memory.collected_data.service_type = "sofa"
        assert is_objective_complete(ObjectiveId.SERVICE_TYPE, conversation) is False
        conversation.memory.cart.append(CartLine(service_id="1", service_name="Sofa", unit_price=100))
        assert is_objective_complete(ObjectiveId.SERVICE_TYPE, conversation) is True

    def test_service_details_from_text(self):
        conversation = _conversation()
        conversation.memory.collected_data.service_details = "linen, 3 seats"
        assert is_objective_complete(ObjectiveId.SERVICE_DETAILS, conversation) is True

    def test_date_needs_time(self):
        conversation = _conversation()
        conversation.memory.collected_data.preferred_date = "2025-03-17"
        assert is_objective_complete(ObjectiveId.DATE, conversation) is False
        conversation.memory.collected_data.selected_time = "10:00"
        assert is_objective_complete(ObjectiveId.DATE, conversation) is True

    def test_denormalized_contact_fields_count(self):
        conversation = _conversation(visitor_name="Ana", visitor_phone="555-123-4567")
        assert is_objective_complete(ObjectiveId.NAME, conversation) is True
        assert is_objective_complete(ObjectiveId.PHONE, conversation) is True
        assert is_objective_complete(ObjectiveId.ADDRESS, conversation) is False


class TestTracker:
    def test_next_objective_walks_in_order(self):
        tracker = IntakeTracker()
        conversation = _conversation()
        assert tracker.next_objective(conversation).id == ObjectiveId.SERVICE_TYPE

        conversation.memory.cart.append(CartLine(service_id="1", service_name="Sofa", unit_price=100))
        assert tracker.next_objective(conversation).id == ObjectiveId.ZIPCODE

    def test_out_of_order_value_satisfies_step(self):
        tracker = IntakeTracker()
        conversation = _conversation(visitor_phone="555-123-4567")
        conversation.memory.cart.append(CartLine(service_id="1", service_name="Sofa", unit_price=100))
        conversation.memory.collected_data.zipcode = "62704"
        conversation.memory.collected_data.selected_date = "2025-03-17"
        conversation.memory.collected_data.selected_time = "10:00"
        conversation.memory.collected_data.name = "Ana"
        assert tracker.next_objective(conversation).id == ObjectiveId.ADDRESS

    def test_all_complete(self):
        tracker = IntakeTracker([IntakeObjective(id=ObjectiveId.NAME, label="Name")])
        assert tracker.next_objective(_conversation(visitor_name="Ana")) is None

    def test_flow_text_numbered(self):
        tracker = IntakeTracker()
        assert tracker.flow_text().startswith("1. Service type\n2. Service details")

    def test_repeat_count_counts_trailing_run(self):
        objective = IntakeObjective(id=ObjectiveId.PHONE, label="Phone")
        messages = [
            _intake_next("name", 0),
            _intake_next("phone", 1),
            _intake_next("phone", 2),
        ]
        assert IntakeTracker.repeat_count(messages, objective) == 2

    def test_repeat_count_ignores_other_messages(self):
        objective = IntakeObjective(id=ObjectiveId.PHONE, label="Phone")
        visible = Message(id="v", conversation_id="c1", role=MessageRole.VISITOR, content="hi")
        assert IntakeTracker.repeat_count([visible], objective) == 0
        assert IntakeTracker.repeat_count([_intake_next("phone", 0)], None) == 0
