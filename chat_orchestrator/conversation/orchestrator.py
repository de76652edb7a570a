"""
Dialogue turn orchestrator.

One ``handle_turn`` call per HTTP request. The turn runs as a fixed sequence
of stages, any of which may end it early:

1. Admission        rate limit, chat enabled, page exclusion, message cap
2. Provider         resolve the active model provider (503 when none)
3. Conversation     load or create, reopen, pick the reply language
4. Pre-capture      regex capture of ZIP, name, phone and address
5. Confirmations    service re-add and direct auto-booking on "yes"
6. Slot resolution  "10am" against the last shown availability
7. Model turn       prompt, tool calls, second completion
8. Enforcement      make sure the reply asks for the next intake step
9. Safety net       correct replies that claim a booking that did not happen
10. Persistence     store the reply and publish the event

The orchestrator never writes a Booking itself; every booking goes through
the create_booking tool so leasing and auditing are identical for
model-issued and server-issued attempts.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Optional
from urllib.parse import urlsplit

from chat_orchestrator.config import ChatConfig, ModelConfig, settings
from chat_orchestrator.conversation.audit import AuditTrail, new_id
from chat_orchestrator.conversation.capture import (
    apply_selected_slot,
    capture_contact_fields,
    last_visible_assistant_message,
    latest_proposed_service_id,
    missing_booking_fields,
    resolve_selected_slot,
)
from chat_orchestrator.conversation.events import ConversationEvent, EventChannel
from chat_orchestrator.conversation.guardrails import GuardrailPipeline
from chat_orchestrator.conversation.intake import IntakeTracker
from chat_orchestrator.conversation.parsing import (
    detect_date_window,
    detect_message_language,
    format_availability_response,
    is_affirmative_response,
    is_booking_confirmation_prompt,
    is_likely_direct_question,
    is_service_confirmation_prompt,
    mentions_time,
    normalize_language,
    normalize_service_name,
    parse_relative_date,
    response_mentions_objective,
)
from chat_orchestrator.logging_context import get_conversation_logger, set_conversation_id
from chat_orchestrator.prompts.messages import (
    BOOKING_FAILED_FALLBACK,
    BOOKING_MISSING_INFO,
    DEFAULT_RESPONSE,
    MODEL_UNAVAILABLE,
    booking_confirmation_reply,
    get_intake_question,
)
from chat_orchestrator.prompts.system_prompts import (
    build_company_info,
    build_memory_context,
    build_step_directive,
    build_system_prompt,
)
from chat_orchestrator.providers.llm import (
    ChatCompletionClient,
    ChatModel,
    LLMError,
    ProviderSelection,
    ProviderUnavailableError,
    resolve_provider,
)
from chat_orchestrator.schemas.api_schema import BookingCompleted, ChatRequest, ChatResponse
from chat_orchestrator.schemas.conversation_schema import (
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    UrlMatchType,
    UrlRule,
)
from chat_orchestrator.storage.base import Notifier, Storage
from chat_orchestrator.tools.catalog import infer_service_from_text
from chat_orchestrator.tools.rate_limit import TokenBucketLimiter
from chat_orchestrator.tools.registry import (
    ADD_SERVICE,
    CREATE_BOOKING,
    INFORMATIONAL_TOOLS,
    SUGGEST_BOOKING_DATES,
    UPDATE_CONTACT,
    ToolContext,
    ToolDispatcher,
    build_tool_definitions,
)

logger = get_conversation_logger(__name__)

LLMFactory = Callable[[ProviderSelection], ChatModel]


class ChatAdmissionError(Exception):
    """A turn rejected before any work was done; carries the HTTP status."""

    def __init__(self, status_code: int, message: str, **extra: Any):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.extra = extra

    def to_body(self) -> dict:
        return {"message": self.message, **self.extra}


def is_url_excluded(url: Optional[str], rules: list[UrlRule]) -> bool:
    """Match the path of an absolute or path-only URL against exclusion rules."""
    if not url or not rules:
        return False
    path = urlsplit(url).path or "/"
    for rule in rules:
        if rule.match == UrlMatchType.EQUALS and path == rule.pattern:
            return True
        if rule.match == UrlMatchType.CONTAINS and rule.pattern in path:
            return True
        if rule.match == UrlMatchType.STARTS_WITH and path.startswith(rule.pattern):
            return True
    return False


@dataclass
class AutoBookingAttempt:
    success: bool
    result: Optional[dict] = None
    missing: list[str] = field(default_factory=list)

    @property
    def booking_completed(self) -> Optional[dict]:
        if not self.success or self.result is None:
            return None
        return _booking_completed(self.result)


def _booking_completed(result: dict) -> dict:
    try:
        value = float(result.get("total_price") or 0)
    except (TypeError, ValueError):
        value = 0.0
    return {"value": value, "services": [s["name"] for s in result.get("services") or []]}


def _failed_booking_reply(result: Optional[dict]) -> str:
    """Visitor-facing text for a failed create_booking, with fresh options when known."""
    if not result:
        return BOOKING_FAILED_FALLBACK
    reply = result.get("user_message") or BOOKING_FAILED_FALLBACK
    suggestions = list(result.get("suggestions") or [])
    if result.get("available_slots") and result.get("booking_date"):
        suggestions.insert(
            0, {"date": result["booking_date"], "available_slots": result["available_slots"][:4]}
        )
    if suggestions:
        reply = f"{reply}\n{format_availability_response(suggestions)}"
    return reply


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _TurnState:
    """Bookkeeping for one model turn."""

    tool_names: list[str] = field(default_factory=list)
    lead_captured: bool = False
    booking_attempted: bool = False
    booking_failed: bool = False
    failed_result: Optional[dict] = None
    booking_completed: Optional[dict] = None
    suggestions: list[dict] = field(default_factory=list)


class ChatOrchestrator:
    """Per-request controller for the booking chat."""

    def __init__(
        self,
        storage: Storage,
        dispatcher: ToolDispatcher,
        audit: AuditTrail,
        rate_limiter: TokenBucketLimiter,
        chat_config: ChatConfig = settings.chat,
        model_config: ModelConfig = settings.model,
        llm_factory: Optional[LLMFactory] = None,
        notifier: Optional[Notifier] = None,
        events: Optional[EventChannel] = None,
        guardrails: Optional[GuardrailPipeline] = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.storage = storage
        self.dispatcher = dispatcher
        self.audit = audit
        self.rate_limiter = rate_limiter
        self.chat_config = chat_config
        self.model_config = model_config
        self.llm_factory = llm_factory or (lambda selection: ChatCompletionClient(selection, model_config))
        self.notifier = notifier
        self.events = events or EventChannel()
        self.guardrails = guardrails or GuardrailPipeline()
        self._now = now
        self._background: set[asyncio.Task] = set()

    # -- helpers ------------------------------------------------------------

    def _fire_and_forget(self, coro: Coroutine, label: str) -> None:
        async def runner() -> None:
            try:
                await coro
            except Exception:
                logger.exception("%s failed", label)

        task = asyncio.get_running_loop().create_task(runner())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _reload(self, conversation_id: str) -> Conversation:
        conversation = await self.storage.get_conversation(conversation_id)
        if conversation is None:
            raise LookupError(f"Conversation {conversation_id} disappeared mid-turn")
        return conversation

    def _publish(self, conversation: Conversation, message: Message) -> None:
        self.events.publish(
            ConversationEvent(
                type="new_message",
                conversation_id=conversation.id,
                message=message.model_dump(mode="json"),
                conversation=conversation.model_dump(mode="json"),
            )
        )

    async def _run_tool(
        self,
        name: str,
        args: dict,
        ctx: ToolContext,
        tool_call_id: Optional[str] = None,
        call_content: Optional[str] = None,
        **call_metadata: Any,
    ) -> tuple[str, dict]:
        """Execute a tool with the paired [TOOL CALL] / [TOOL RESULT] audit messages."""
        tool_call_id = tool_call_id or new_id()
        await self.audit.tool_call(
            ctx.conversation_id, name, args, tool_call_id, content=call_content, **call_metadata
        )
        result = await self.dispatcher.execute(name, args, ctx)
        await self.audit.tool_result(ctx.conversation_id, name, result, tool_call_id)
        return tool_call_id, result

    # -- admission ----------------------------------------------------------

    async def _admit(self, request: ChatRequest, client_ip: Optional[str]):
        key = self.rate_limiter.key_for(client_ip, request.conversation_id)
        if not self.rate_limiter.allow(key):
            raise ChatAdmissionError(429, "Too many requests, please slow down.")

        chat_settings = await self.storage.get_chat_settings()
        if not chat_settings.enabled:
            raise ChatAdmissionError(503, "Chat is currently disabled.")
        if is_url_excluded(request.page_url, chat_settings.excluded_url_rules):
            raise ChatAdmissionError(403, "Chat is not available on this page.")

        prior_messages = (
            await self.storage.get_messages(request.conversation_id) if request.conversation_id else []
        )
        visible_count = sum(1 for m in prior_messages if not m.internal)
        if visible_count >= self.chat_config.max_conversation_messages:
            raise ChatAdmissionError(
                429,
                "This conversation has reached the message limit. Please start a new conversation.",
                limitReached=True,
            )

        try:
            selection = await resolve_provider(self.storage, self.model_config)
        except ProviderUnavailableError as e:
            raise ChatAdmissionError(503, str(e)) from e
        return chat_settings, selection, prior_messages

    async def _open_conversation(self, request: ChatRequest, conversation_id: str) -> Conversation:
        conversation = await self.storage.get_conversation(conversation_id)
        if conversation is None:
            conversation = await self.storage.create_conversation(
                Conversation(
                    id=conversation_id,
                    first_page_url=request.page_url,
                    visitor_name=request.visitor_name,
                    visitor_email=request.visitor_email,
                    visitor_phone=request.visitor_phone,
                    last_message_at=self._now(),
                )
            )
            logger.info("Conversation %s created", conversation_id)
            if self.notifier is not None:
                self._fire_and_forget(
                    self.notifier.notify_new_conversation(conversation), "New chat notification"
                )
            return conversation

        conversation.last_message_at = self._now()
        if conversation.status == ConversationStatus.CLOSED:
            logger.info("Reopening closed conversation %s", conversation_id)
            conversation.status = ConversationStatus.OPEN
        return await self.storage.update_conversation(conversation)

    # -- public API ---------------------------------------------------------

    async def handle_turn(
        self, request: ChatRequest, client_ip: Optional[str] = None
    ) -> ChatResponse:
        """Process one visitor message and return the reply.

        Raises:
            ChatAdmissionError: When the turn is rejected (429, 403 or 503).
        """
        chat_settings, selection, prior_messages = await self._admit(request, client_ip)
        conversation_id = request.conversation_id or new_id()
        set_conversation_id(conversation_id)
        conversation = await self._open_conversation(request, conversation_id)

        language = (
            normalize_language(request.language)
            or detect_message_language(request.message)
            or normalize_language(conversation.memory.language)
            or "en"
        )
        if conversation.memory.language != language:
            conversation.memory.language = language
            conversation = await self.storage.update_conversation(conversation)

        visible_count = sum(1 for m in prior_messages if not m.internal)

        text = request.message.strip()
        visitor_message = await self.storage.add_message(
            Message(
                id=new_id(),
                conversation_id=conversation_id,
                role=MessageRole.VISITOR,
                content=text,
                metadata={
                    "page_url": request.page_url,
                    "user_agent": request.user_agent,
                    "visitor_id": request.visitor_id,
                    "language": language,
                },
            )
        )
        self._publish(conversation, visitor_message)

        ctx = ToolContext(
            conversation_id=conversation_id,
            language=language,
            user_message=text,
            user_message_id=visitor_message.id,
        )
        tracker = IntakeTracker(chat_settings.intake_objectives)
        state = _TurnState()

        # Pre-capture
        pending = tracker.next_objective(conversation)
        conversation, state.lead_captured = await self._pre_capture(
            conversation, text, visible_count, pending.id.value if pending else None, ctx
        )

        # Confirmation replies
        last_assistant = last_visible_assistant_message(prior_messages)
        affirmative = is_affirmative_response(text)
        direct_question = is_likely_direct_question(text)
        service_prompt = bool(last_assistant) and is_service_confirmation_prompt(last_assistant.content)
        booking_prompt = bool(last_assistant) and is_booking_confirmation_prompt(last_assistant.content)
        if affirmative:
            await self.audit.record(
                conversation_id,
                f"[AUTO-ADD EVAL] affirmative reply, service prompt: {service_prompt}, "
                f"booking prompt: {booking_prompt}",
                type="debug",
            )
        if affirmative and service_prompt and not conversation.memory.cart:
            await self._readd_proposed_service(conversation, prior_messages, last_assistant, ctx)

        auto_booking: Optional[AutoBookingAttempt] = None
        if affirmative and booking_prompt:
            auto_booking = await self.attempt_auto_booking(
                conversation_id, "Creating booking on user confirmation", ctx
            )

        # Slot resolution
        conversation = await self._reload(conversation_id)
        today = await self.dispatcher.availability.today_str()
        await self._resolve_slot(conversation, tracker, text, today)

        if auto_booking is not None and auto_booking.success:
            result = auto_booking.result or {}
            state.booking_attempted = True
            state.booking_completed = auto_booking.booking_completed
            response = booking_confirmation_reply(
                state.booking_completed["services"],
                result.get("booking_date", ""),
                result.get("start_time", ""),
            )
            logger.info("Auto-booking on confirmation succeeded; skipping the model")
        else:
            response = await self._model_turn(
                selection, tracker, prior_messages, ctx, state, today, direct_question
            )

        return await self._finish(conversation_id, response, state)

    # -- stages -------------------------------------------------------------

    async def _pre_capture(
        self,
        conversation: Conversation,
        text: str,
        visible_count: int,
        pending_objective: Optional[str],
        ctx: ToolContext,
    ) -> tuple[Conversation, bool]:
        capture = capture_contact_fields(
            conversation,
            text,
            visible_count,
            self.chat_config.min_history_for_name,
            pending_objective,
        )
        if not capture.captured:
            return conversation, False

        conversation = await self.storage.update_conversation(conversation)
        await self.audit.record(
            conversation.id,
            f"[INTAKE] Auto-captured: {', '.join(capture.labels)}",
            type="intake_auto",
            captured=capture.memory_updates,
        )
        lead_captured = False
        if capture.contact_updates:
            await self._run_tool(UPDATE_CONTACT, dict(capture.contact_updates), ctx)
            lead_captured = True

        if capture.phone:
            await self._close_duplicates(conversation.id, capture.phone)
        return await self._reload(conversation.id), lead_captured

    async def _close_duplicates(self, conversation_id: str, phone: str) -> None:
        duplicates = await self.storage.find_open_conversations_by_phone(phone, exclude_id=conversation_id)
        for duplicate in duplicates:
            logger.info(
                "Closing conversation %s in favor of %s (same phone)", duplicate.id, conversation_id
            )
            duplicate.status = ConversationStatus.CLOSED
            await self.storage.update_conversation(duplicate)
            await self.audit.record(
                duplicate.id,
                f"[SYSTEM] Conversation closed: customer started a new conversation ({conversation_id})",
                type="dedup",
                new_conversation_id=conversation_id,
            )

    async def _readd_proposed_service(
        self,
        conversation: Conversation,
        prior_messages: list[Message],
        last_assistant: Message,
        ctx: ToolContext,
    ) -> None:
        """The visitor said yes to a service the model never put in the cart."""
        services = await self.dispatcher.services()
        service_id = latest_proposed_service_id(prior_messages)
        service = next((s for s in services if s.id == service_id), None) if service_id else None
        if service is None:
            service = infer_service_from_text(services, last_assistant.content)
        if service is None:
            logger.info("Affirmative reply to a service prompt but no service to re-add")
            return

        _, result = await self._run_tool(
            ADD_SERVICE,
            {"service_id": service.id, "service_name": service.name, "price": service.price, "quantity": 1},
            ctx,
        )
        if not result.get("success"):
            return
        conversation = await self._reload(conversation.id)
        conversation.memory.auto_added_services = [normalize_service_name(service.name)]
        conversation.memory.auto_added_message_id = ctx.user_message_id
        await self.storage.update_conversation(conversation)
        logger.info("Re-added %s after visitor confirmation", service.name)

    async def _resolve_slot(
        self, conversation: Conversation, tracker: IntakeTracker, text: str, today: str
    ) -> None:
        objective = tracker.next_objective(conversation)
        if objective is None or objective.id.value != "date":
            return
        picked = resolve_selected_slot(conversation.memory, text, today)
        if picked is None:
            return
        booking_date, start_time = picked
        apply_selected_slot(conversation.memory, booking_date, start_time)
        await self.storage.update_conversation(conversation)
        await self.audit.record(
            conversation.id,
            f"[INTAKE] Auto-captured time {start_time} for {booking_date}",
            type="intake_auto",
            selected_time=start_time,
            selected_date=booking_date,
        )

    async def attempt_auto_booking(
        self, conversation_id: str, reason: str, ctx: ToolContext
    ) -> AutoBookingAttempt:
        """Book straight from memory, through the same create_booking tool the model uses.

        Nothing is attempted (no lease, no tool call) unless the cart, date,
        time, name, phone and address are all known.
        """
        conversation = await self._reload(conversation_id)
        missing = missing_booking_fields(conversation)
        if missing:
            logger.info("%s: cannot auto-book, missing %s", reason, ", ".join(missing))
            return AutoBookingAttempt(success=False, missing=missing)

        memory = conversation.memory
        collected = memory.collected_data
        args = {
            "service_ids": [line.service_id for line in memory.cart],
            "booking_date": collected.selected_date or collected.preferred_date,
            "start_time": collected.selected_time,
            "customer_name": collected.name or conversation.visitor_name,
            "customer_phone": collected.phone or conversation.visitor_phone,
            "customer_address": collected.address or conversation.visitor_address,
        }
        email = collected.email or conversation.visitor_email
        if email:
            args["customer_email"] = email

        booking_ctx = ToolContext(
            conversation_id=conversation_id,
            language=ctx.language,
            user_message=ctx.user_message,
            user_message_id=ctx.user_message_id,
            confirmed=True,
        )
        tool_call_id = new_id()
        await self.audit.tool_call(
            conversation_id,
            CREATE_BOOKING,
            args,
            tool_call_id,
            content=f"[AUTO-BOOK] {reason}",
            reason=reason,
        )
        result = await self.dispatcher.execute(CREATE_BOOKING, args, booking_ctx)
        outcome = "Success" if result.get("success") else f"Failed - {result.get('error') or 'Unknown error'}"
        await self.audit.tool_result(
            conversation_id, CREATE_BOOKING, result, tool_call_id, content=f"[AUTO-BOOK] Result: {outcome}"
        )
        logger.info("Auto-booking (%s): %s", reason, outcome)
        return AutoBookingAttempt(success=bool(result.get("success")), result=result)

    async def _model_turn(
        self,
        selection: ProviderSelection,
        tracker: IntakeTracker,
        prior_messages: list[Message],
        ctx: ToolContext,
        state: _TurnState,
        today: str,
        direct_question: bool,
    ) -> str:
        conversation_id = ctx.conversation_id
        conversation = await self._reload(conversation_id)
        company = await self.storage.get_company_profile()

        objective = tracker.next_objective(conversation)
        repeat_count = tracker.repeat_count(prior_messages, objective)
        await self.audit.record(
            conversation_id,
            "[INTAKE] Next step: "
            + (f"{objective.label} ({objective.id.value})" if objective else "None"),
            type="intake_next",
            next_step={"id": objective.id.value, "label": objective.label} if objective else None,
            completed_steps=list(conversation.memory.completed_steps),
        )

        history = [
            m for m in await self.storage.get_messages(conversation_id) if not m.internal
        ][-self.chat_config.history_window:]
        chat_messages = [
            {
                "role": "system",
                "content": build_system_prompt(
                    company, tracker.flow_text(), tracker.enabled_ids, today, ctx.language
                ),
            },
            {"role": "system", "content": build_company_info(company)},
            {"role": "system", "content": build_memory_context(conversation)},
            {"role": "system", "content": build_step_directive(objective, repeat_count, direct_question)},
        ] + [
            {"role": "assistant" if m.role == MessageRole.ASSISTANT else "user", "content": m.content}
            for m in history
        ]

        llm = self.llm_factory(selection)
        try:
            response = await self._complete_with_tools(
                llm, chat_messages, build_tool_definitions(tracker.objectives), ctx, state
            )
        except LLMError as e:
            logger.error("Model call failed: %s", e)
            return MODEL_UNAVAILABLE
        finally:
            await llm.close()

        conversation = await self._reload(conversation_id)
        objective = tracker.next_objective(conversation)
        if objective is not None and objective.id.value == "date":
            response = await self._offer_dates_from_message(conversation, ctx, state, today, response)
        response = self._enforce_objective(objective, response, ctx, state, direct_question)
        return await self._apply_safety_net(response, ctx, state)

    async def _complete_with_tools(
        self,
        llm: ChatModel,
        chat_messages: list[dict],
        tools: list[dict],
        ctx: ToolContext,
        state: _TurnState,
    ) -> str:
        first = await llm.complete(chat_messages, tools)
        if not first.tool_calls:
            return self.guardrails.sanitize(first.content or DEFAULT_RESPONSE)

        tool_messages = []
        for call in first.tool_calls:
            state.tool_names.append(call.name)
            _, result = await self._run_tool(call.name, call.parsed_arguments(), ctx, tool_call_id=call.id)
            await self._observe_tool_result(call.name, result, ctx, state)
            tool_messages.append(
                {"role": "tool", "tool_call_id": call.id, "content": json.dumps(result, default=str)}
            )

        assistant_turn = {
            "role": "assistant",
            "content": None,
            "tool_calls": [call.to_message() for call in first.tool_calls],
        }
        second = await llm.complete(chat_messages + [assistant_turn] + tool_messages)
        response = self.guardrails.sanitize(second.content or DEFAULT_RESPONSE)
        if state.suggestions and not mentions_time(response):
            response = format_availability_response(state.suggestions)
        return response

    async def _observe_tool_result(
        self, name: str, result: dict, ctx: ToolContext, state: _TurnState
    ) -> None:
        if name == UPDATE_CONTACT and result.get("success"):
            conversation = await self._reload(ctx.conversation_id)
            if conversation.visitor_name or conversation.visitor_email or conversation.visitor_phone:
                state.lead_captured = True
        elif name == CREATE_BOOKING and result.get("requires_confirmation"):
            logger.info("create_booking deferred until the visitor confirms the summary")
        elif name == CREATE_BOOKING:
            state.booking_attempted = True
            if result.get("success"):
                state.booking_completed = _booking_completed(result)
            else:
                state.booking_failed = True
                state.failed_result = result
                logger.warning("Booking failed: %s", result.get("error"))
        elif name == SUGGEST_BOOKING_DATES and result.get("success"):
            state.suggestions = list(result.get("suggestions") or [])

    async def _offer_dates_from_message(
        self,
        conversation: Conversation,
        ctx: ToolContext,
        state: _TurnState,
        today: str,
        response: str,
    ) -> str:
        """Answer "tomorrow?" / "next week" with real availability."""
        if SUGGEST_BOOKING_DATES in state.tool_names or not conversation.memory.cart:
            return response
        specific = parse_relative_date(ctx.user_message, today)
        window = detect_date_window(ctx.user_message)
        if not specific and not window:
            return response

        args: dict[str, Any] = {"service_id": conversation.memory.cart[0].service_id}
        if specific:
            args["specific_date"] = specific
        if window:
            args["date_window"] = ctx.user_message
        _, result = await self._run_tool(SUGGEST_BOOKING_DATES, args, ctx)
        if result.get("success") and result.get("suggestions"):
            state.tool_names.append(SUGGEST_BOOKING_DATES)
            state.suggestions = list(result["suggestions"])
            return result.get("formatted_text") or format_availability_response(state.suggestions)
        return response

    def _enforce_objective(
        self, objective, response: str, ctx: ToolContext, state: _TurnState, direct_question: bool
    ) -> str:
        if objective is None or direct_question:
            return response
        if any(name in INFORMATIONAL_TOOLS for name in state.tool_names):
            return response
        if response_mentions_objective(response, objective.id.value):
            return response
        question = get_intake_question(objective.id.value, ctx.language)
        if not response.strip() or response == DEFAULT_RESPONSE:
            return question
        return f"{response} {question}"

    async def _apply_safety_net(self, response: str, ctx: ToolContext, state: _TurnState) -> str:
        violation = self.guardrails.check_booking_claims(
            response,
            state.booking_attempted,
            state.booking_failed,
            state.booking_completed is not None,
        )
        if violation is None:
            return response

        if violation.severity == "override":
            logger.error("Safety net: reply claims success but create_booking failed")
            return _failed_booking_reply(state.failed_result)

        logger.error("Safety net: reply claims a booking that was never attempted")
        attempt = await self.attempt_auto_booking(
            ctx.conversation_id, "AI fabricated confirmation without calling create_booking", ctx
        )
        state.booking_attempted = attempt.result is not None
        if attempt.success:
            state.booking_completed = attempt.booking_completed
            return response
        if attempt.result is not None:
            state.booking_failed = True
            return _failed_booking_reply(attempt.result)
        return BOOKING_MISSING_INFO

    async def _finish(self, conversation_id: str, response: str, state: _TurnState) -> ChatResponse:
        message = await self.storage.add_message(
            Message(
                id=new_id(),
                conversation_id=conversation_id,
                role=MessageRole.ASSISTANT,
                content=response,
            )
        )
        conversation = await self._reload(conversation_id)
        conversation.last_message_at = self._now()
        conversation = await self.storage.update_conversation(conversation)
        self._publish(conversation, message)

        completed = state.booking_completed
        return ChatResponse(
            conversation_id=conversation_id,
            response=response,
            lead_captured=state.lead_captured,
            booking_completed=BookingCompleted(**completed) if completed else None,
        )
