"""Service and FAQ ranking, plus service-name resolution for the cart."""

import logging
import re
from typing import Optional, TypedDict

from chat_orchestrator.conversation.parsing import normalize_service_name
from chat_orchestrator.schemas.booking_schema import Faq, Service
from chat_orchestrator.utils import strip_accents

logger = logging.getLogger(__name__)

SERVICE_SYNONYMS: dict[str, list[str]] = {
    "sectional": ["sectional", "l-shaped", "l shaped", "corner", "modular"],
    "sofa": ["sofa", "couch", "settee", "loveseat", "seater"],
    "carpet": ["carpet", "rug", "floor"],
    "mattress": ["mattress", "bed"],
}

FAQ_SYNONYMS: dict[str, list[str]] = {
    "pet": ["pet", "pets", "animal", "dog", "cat"],
    "children": ["children", "child", "kids", "kid", "baby"],
    "safe": ["safe", "safety", "seguro", "segura"],
    "products": ["product", "products", "chemicals", "cleaners", "detergent"],
    "cancellation": ["cancel", "cancellation", "reschedule", "refund"],
    "guarantee": ["guarantee", "warranty", "satisfaction"],
    "payment": ["payment", "pay", "card", "cash", "invoice"],
}

MAX_FAQ_RESULTS = 5
FAQ_FALLBACK_COUNT = 3


class ServiceSummary(TypedDict):
    """Service as exposed to the model."""

    id: str
    name: str
    description: str
    price: str


def format_service(service: Service) -> ServiceSummary:
    return {
        "id": service.id,
        "name": service.name,
        "description": service.description,
        "price": f"{service.price:.2f}",
    }


def _numbers(text: str) -> list[int]:
    return [int(n) for n in re.findall(r"\d+", text)]


def _expand_service_words(words: list[str]) -> set[str]:
    expanded = set(words)
    for word in words:
        for key, synonyms in SERVICE_SYNONYMS.items():
            if word == key or word in synonyms:
                expanded.update(synonyms)
    return expanded


def score_service(service: Service, query: str) -> int:
    """Relevance of a service for a lower-cased query. 0 means unrelated."""
    name = service.name.lower()
    description = (service.description or "").lower()
    score = 0

    if query in name:
        score += 100

    query_numbers = _numbers(query)
    service_numbers = _numbers(name)
    if query_numbers and service_numbers:
        low, high = min(service_numbers), max(service_numbers)
        for number in query_numbers:
            if number in service_numbers:
                score += 50
            # "7" falls inside a "6-8 seater" style range
            if len(service_numbers) >= 2 and low <= number <= high:
                score += 40

    words = [w for w in re.split(r"[\s,]+", query) if len(w) > 2]
    for word in _expand_service_words(words):
        if word in name:
            score += 10
        if word in description:
            score += 5
    return score


def rank_services(services: list[Service], query: Optional[str]) -> list[Service]:
    """Services ordered by relevance; the full list when nothing matches.

    An empty result would dead-end the conversation, so an unmatched query
    falls back to everything.
    """
    query = (query or "").lower().strip()
    if not query:
        return list(services)

    scored = [(score_service(s, query), s) for s in services]
    matched = [s for score, s in sorted(scored, key=lambda pair: -pair[0]) if score > 0]
    if not matched:
        logger.debug("No service matched %r, returning full catalog", query)
    return matched or list(services)


def rank_faqs(faqs: list[Faq], query: Optional[str]) -> dict:
    """FAQ search result payload for the model."""
    query = (query or "").lower().strip()
    if not query:
        return {"faqs": [{"question": f.question, "answer": f.answer} for f in faqs]}

    normalized_query = strip_accents(query)
    tokens = [t for t in re.split(r"[^a-z0-9]+", normalized_query) if t]
    expanded: set[str] = set()
    for token in tokens:
        expanded.add(token)
        for key, values in FAQ_SYNONYMS.items():
            if token == key or token in values:
                expanded.update(values)
                expanded.add(key)

    scored = []
    for faq in faqs:
        haystack = f"{strip_accents(faq.question or '')} {strip_accents(faq.answer or '')}"
        score = 50 if normalized_query in haystack else 0
        score += sum(6 for token in expanded if len(token) >= 2 and token in haystack)
        scored.append((score, faq))

    matched = [
        faq for score, faq in sorted(scored, key=lambda pair: -pair[0]) if score > 0
    ][:MAX_FAQ_RESULTS]
    selected = matched or faqs[:FAQ_FALLBACK_COUNT]
    return {
        "faqs": [{"question": f.question, "answer": f.answer} for f in selected],
        "search_query": query,
        "result_count": len(matched),
        "used_fallback": not matched,
    }


def resolve_service_by_name(services: list[Service], name: str) -> Optional[Service]:
    """Find a service by (normalized) name: exact match first, then the longest containing match."""
    target = normalize_service_name(name)
    if not target:
        return None

    for service in services:
        if normalize_service_name(service.name) == target:
            return service

    candidates = []
    for service in services:
        normalized = normalize_service_name(service.name)
        if normalized and (normalized in target or target in normalized):
            candidates.append((len(normalized), service))
    if not candidates:
        return None
    candidates.sort(key=lambda pair: -pair[0])
    return candidates[0][1]


def infer_service_from_text(services: list[Service], text: str) -> Optional[Service]:
    """The service whose normalized name appears in free text, longest name first."""
    haystack = normalize_service_name(text)
    if not haystack:
        return None
    best = None
    best_length = 0
    for service in services:
        normalized = normalize_service_name(service.name)
        if normalized and normalized in haystack and len(normalized) > best_length:
            best, best_length = service, len(normalized)
    return best
