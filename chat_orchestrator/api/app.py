"""
FastAPI surface for the booking chat.

``create_app`` wires storage, tools and the orchestrator through
constructors; tests pass their own ``ChatRuntime`` with a fake model.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from chat_orchestrator.config import AppConfig, settings
from chat_orchestrator.conversation.audit import AuditTrail
from chat_orchestrator.conversation.orchestrator import ChatAdmissionError, ChatOrchestrator, LLMFactory
from chat_orchestrator.providers.calendar import CalendarClient
from chat_orchestrator.schemas.api_schema import ChatRequest
from chat_orchestrator.schemas.booking_schema import CompanyProfile
from chat_orchestrator.storage.base import LoggingNotifier, Notifier, Storage
from chat_orchestrator.storage.memory import InMemoryStorage
from chat_orchestrator.tools.availability import AvailabilityEngine
from chat_orchestrator.tools.booking import BookingWriter
from chat_orchestrator.tools.cache import TTLCache
from chat_orchestrator.tools.leases import LeaseManager
from chat_orchestrator.tools.rate_limit import BookingLimiter, TokenBucketLimiter
from chat_orchestrator.tools.registry import ToolDispatcher

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChatRuntime:
    """Everything one server process shares across requests."""
    config: AppConfig
    storage: Storage
    orchestrator: ChatOrchestrator
    leases: LeaseManager
    rate_limiter: TokenBucketLimiter
    booking_limiter: BookingLimiter
    cache: TTLCache
    calendar: Optional[CalendarClient] = None
    now: Callable[[], datetime] = _utcnow


def default_storage(config: AppConfig) -> InMemoryStorage:
    biz = config.business
    return InMemoryStorage(
        CompanyProfile(
            name=biz.name,
            industry=biz.industry,
            phone=biz.phone,
            email=biz.email,
            address=biz.address,
            timezone=biz.timezone,
            minimum_booking_value=biz.minimum_booking_value,
        )
    )


def build_runtime(
    config: AppConfig = settings,
    storage: Optional[Storage] = None,
    llm_factory: Optional[LLMFactory] = None,
    notifier: Optional[Notifier] = None,
    calendar: Optional[CalendarClient] = None,
    now: Callable[[], datetime] = _utcnow,
) -> ChatRuntime:
    """Construct the object graph for one process."""
    storage = storage if storage is not None else default_storage(config)
    if calendar is None and config.calendar.usable:
        calendar = CalendarClient(config.calendar)
    notifier = notifier or LoggingNotifier()

    cache = TTLCache(config.chat.cache_ttl_seconds)
    add_listener = getattr(storage, "add_catalog_listener", None)
    if add_listener is not None:
        add_listener(cache.invalidate)

    audit = AuditTrail(storage)
    availability = AvailabilityEngine(storage, calendar, now=now)
    leases = LeaseManager(
        storage, config.lease.ttl_seconds, config.lease.sweep_interval_seconds, now=now
    )
    booking_limiter = BookingLimiter(
        config.chat.max_bookings_per_conversation, config.chat.booking_limit_window_seconds
    )
    booking = BookingWriter(
        storage,
        availability,
        leases,
        booking_limiter,
        audit,
        calendar=calendar,
        notifier=notifier,
    )
    dispatcher = ToolDispatcher(storage, availability, booking, cache, audit, calendar=calendar)
    rate_limiter = TokenBucketLimiter(config.chat.rate_limit, config.chat.rate_window_seconds)
    orchestrator = ChatOrchestrator(
        storage,
        dispatcher,
        audit,
        rate_limiter,
        chat_config=config.chat,
        model_config=config.model,
        llm_factory=llm_factory,
        notifier=notifier,
        now=now,
    )
    return ChatRuntime(
        config=config,
        storage=storage,
        orchestrator=orchestrator,
        leases=leases,
        rate_limiter=rate_limiter,
        booking_limiter=booking_limiter,
        cache=cache,
        calendar=calendar,
        now=now,
    )


async def close_inactive(runtime: ChatRuntime) -> int:
    cutoff = runtime.now() - timedelta(hours=runtime.config.chat.inactive_close_hours)
    closed = await runtime.storage.close_inactive_conversations(cutoff)
    if closed:
        logger.info("Closed %d inactive conversations", closed)
    pruned = runtime.rate_limiter.prune()
    if pruned:
        logger.debug("Pruned %d idle rate-limit buckets", pruned)
    expired = runtime.booking_limiter.prune()
    if expired:
        logger.debug("Pruned %d expired booking windows", expired)
    return closed


async def _housekeeping_forever(runtime: ChatRuntime) -> None:
    while True:
        await asyncio.sleep(runtime.config.lease.sweep_interval_seconds)
        try:
            await close_inactive(runtime)
        except Exception:
            logger.exception("Inactive conversation sweep failed")


def create_app(runtime: Optional[ChatRuntime] = None) -> FastAPI:
    runtime = runtime or build_runtime()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime.leases.start()
        housekeeping = asyncio.create_task(_housekeeping_forever(runtime))
        logger.info("%s started", runtime.config.app_name)
        try:
            yield
        finally:
            housekeeping.cancel()
            try:
                await housekeeping
            except asyncio.CancelledError:
                pass
            await runtime.leases.stop()
            if runtime.calendar is not None:
                await runtime.calendar.close()

    app = FastAPI(title="Chat Booking Orchestrator", lifespan=lifespan)
    app.state.runtime = runtime

    @app.exception_handler(RequestValidationError)
    async def invalid_input(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"message": "Invalid input", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(ChatAdmissionError)
    async def admission_rejected(request: Request, exc: ChatAdmissionError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/api/chat")
    async def chat(body: ChatRequest, request: Request):
        client_ip = request.client.host if request.client else None
        result = await runtime.orchestrator.handle_turn(body, client_ip)
        return JSONResponse(content=result.model_dump(mode="json", by_alias=True))

    return app
