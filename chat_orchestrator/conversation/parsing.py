"""
Heuristic text extraction and classification for visitor/assistant messages.

Every function here is pure: text in, value out. They are deliberately
regex-driven and locale-aware (en, pt-BR, es); treat them as a best-effort
heuristic layer, not a parser with formal guarantees.
"""

import re
import unicodedata
from datetime import timedelta
from typing import Optional

from chat_orchestrator.schemas.booking_schema import WEEKDAYS, BusinessHours
from chat_orchestrator.utils import parse_iso_date, strip_accents

# --- dates and times --------------------------------------------------------

_WEEKDAY_PATTERNS = [
    (6, re.compile(r"\b(sun(day)?|domingo|dom)\b")),
    (0, re.compile(r"\b(mon(day)?|segunda(-feira)?|seg)\b")),
    (1, re.compile(r"\b(tue(s(day)?)?|terca(-feira)?|ter)\b")),
    (2, re.compile(r"\b(wed(nesday)?|quarta(-feira)?|qua)\b")),
    (3, re.compile(r"\b(thu(rs(day)?)?|quinta(-feira)?|qui)\b")),
    (4, re.compile(r"\b(fri(day)?|sexta(-feira)?|sex)\b")),
    (5, re.compile(r"\b(sat(urday)?|sabado|sab)\b")),
]
_NEXT_WORDS = re.compile(r"\b(next|proxima|proximo|seguinte|que vem|semana que vem)\b")
_THIS_WORDS = re.compile(r"\b(this|esta|esse|essa|nesta|neste|desta)\b")

_AMPM_TIME = re.compile(r"\b(1[0-2]|0?[1-9])(?::([0-5]\d))?\s*(a\.?m\.?|p\.?m\.?)(?=\W|$)")
_24H_TIME = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_TIME_MENTION = re.compile(r"\d+\s*(am|pm)|:\d{2}", re.IGNORECASE)

_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def parse_relative_date(text: str, base_date: str) -> Optional[str]:
    """Resolve "today", "tomorrow", "next friday", "sexta" ... against base_date.

    A bare weekday that equals today's weekday resolves to today; "next"
    pushes it a week out.
    """
    if not text:
        return None
    normalized = strip_accents(text)
    base = parse_iso_date(base_date)

    if re.search(r"\b(today|hoje|hoy)\b", normalized):
        return base_date
    if re.search(r"\b(tomorrow|amanha|manana)\b", normalized):
        return (base + timedelta(days=1)).isoformat()

    target = next((day for day, regex in _WEEKDAY_PATTERNS if regex.search(normalized)), None)
    if target is None:
        return None

    delta = (target - base.weekday()) % 7
    if delta == 0 and _NEXT_WORDS.search(normalized):
        delta = 7
    return (base + timedelta(days=delta)).isoformat()


def parse_time(text: str) -> Optional[str]:
    """Extract a clock time as HH:MM ("3pm" -> "15:00", "10:30" -> "10:30")."""
    if not text:
        return None
    normalized = text.lower()

    match = _AMPM_TIME.search(normalized)
    if match:
        hour = int(match.group(1))
        minutes = int(match.group(2) or 0)
        is_pm = match.group(3).startswith("p")
        if hour == 12:
            hour = 12 if is_pm else 0
        elif is_pm:
            hour += 12
        return f"{hour:02d}:{minutes:02d}"

    match = _24H_TIME.search(normalized)
    if match:
        return f"{int(match.group(1)):02d}:{int(match.group(2)):02d}"
    return None


def mentions_time(text: str) -> bool:
    return bool(text and _TIME_MENTION.search(text))


def detect_date_window(text: str) -> Optional[dict]:
    """Detect "next week" / "this week" / "in two weeks" style windows."""
    if not text:
        return None
    normalized = strip_accents(text)
    if re.search(r"\b(next week|proxima semana|semana que vem|na semana que vem|proxima semana)\b", normalized):
        return {"start_offset_days": 7, "window_days": 7, "max_suggestions": 5}
    if re.search(r"\b(this week|esta semana|nessa semana|nesta semana)\b", normalized):
        return {"start_offset_days": 0, "window_days": 7, "max_suggestions": 5}
    if re.search(
        r"\b(in two weeks|in 2 weeks|two weeks from now|daqui duas semanas|"
        r"daqui 2 semanas|em duas semanas|em 2 semanas)\b",
        normalized,
    ):
        return {"start_offset_days": 14, "window_days": 7, "max_suggestions": 5}
    return None


def format_time_label(time24: str) -> str:
    """"15:00" -> "3pm", "09:30" -> "9:30am"."""
    hour, minute = (int(p) for p in time24.split(":")[:2])
    period = "pm" if hour >= 12 else "am"
    hour12 = hour % 12 or 12
    if minute == 0:
        return f"{hour12}{period}"
    return f"{hour12}:{minute:02d}{period}"


def format_date_label(date_str: str, long_format: bool = False) -> str:
    """"2025-03-17" -> "Mon Mar 17" (or "Monday Mar 17")."""
    day = parse_iso_date(date_str)
    weekday = WEEKDAYS[day.weekday()].capitalize()
    if not long_format:
        weekday = weekday[:3]
    return f"{weekday} {_MONTHS[day.month - 1]} {day.day}"


def format_availability_response(suggestions: list[dict]) -> str:
    """Render suggest_booking_dates output as a short visitor-facing reply."""
    if not suggestions:
        return "I couldn’t find any available times. Do you want to try a different day?"

    if len(suggestions) == 1:
        single = suggestions[0]
        slots = [format_time_label(s) for s in single.get("available_slots") or []]
        label = format_date_label(single["date"], long_format=True)
        if not slots:
            return f"{label} doesn’t have any available slots. Do you want a different day?"
        bullets = "\n".join(f"- {slot}" for slot in slots)
        return f"{label} has slots at\n{bullets}\nWhich works for you?"

    lines = [
        f"• {format_date_label(item['date'])} — "
        + ", ".join(format_time_label(s) for s in item.get("available_slots") or [])
        for item in suggestions
    ]
    return "Here are a few options:\n" + "\n".join(lines) + "\nWhich works best for you?"


def pick_random_slots(slots: list[str], max_slots: int) -> list[str]:
    """Representative slots: sorted ascending, first N (deterministic)."""
    if not slots:
        return []
    return sorted(slots)[: max(1, max_slots)]


def format_business_hours_summary(hours: Optional[BusinessHours]) -> str:
    if hours is None:
        return ""
    parts = []
    for weekday in WEEKDAYS:
        day = getattr(hours, weekday)
        label = weekday[:3].capitalize()
        parts.append(f"{label} {day.open}-{day.close}" if day.is_open else f"{label} closed")
    return ", ".join(parts)


# --- contact fields ---------------------------------------------------------

_ZIP = re.compile(r"\b\d{5}(?:-\d{4})?\b")
_PHONE = re.compile(r"(?:\+?1[-.\s]?)?(?:\(?(\d{3})\)?[-.\s]?)(\d{3})[-.\s]?(\d{4})")
_NAME_PATTERNS = [
    re.compile(r"\b(?:my name is|i am|i'm)\s+([a-z][a-z' -]{1,50})", re.IGNORECASE),
    re.compile(r"\b(?:meu nome e|meu nome eh|sou)\s+([a-z][a-z' -]{1,50})", re.IGNORECASE),
    re.compile(r"\b(?:mi nombre es|soy)\s+([a-z][a-z' -]{1,50})", re.IGNORECASE),
]
_NAME_WORD = re.compile(r"^[a-zA-Z][a-zA-Z'-]{1,29}$")
_BLOCKED_NAME_TOKENS = {
    "hi", "hey", "hello", "yes", "no", "yep", "yeah", "yup", "nope", "ok", "okay", "sure",
    "thanks", "thank", "please", "help", "my", "me", "we", "it", "and", "but", "or", "all",
    "thats", "that's", "sofa", "couch", "rug", "carpet", "clean", "cleaning", "mattress",
    "ottoman", "chair", "armchair", "loveseat", "sectional", "curtain", "drape", "upholstery",
    "booking", "book", "schedule", "appointment", "price", "cost", "what", "when", "where",
    "why", "how", "tomorrow", "today", "monday", "tuesday", "wednesday", "thursday", "friday",
    "saturday", "sunday", "need", "want", "have",
}
_ADDRESS_REJECT = re.compile(
    r"\b(clean|cleaning|seater|sofa|carpet|mattress|service|book|booking|schedule|need|want)\b"
)
_ADDRESS_TOKEN = re.compile(
    r"\b(st|street|ave|avenue|rd|road|dr|drive|blvd|boulevard|ln|lane|ct|court|way|pl|place|apt|suite|unit)\b",
    re.IGNORECASE,
)


def parse_zip(text: str) -> Optional[str]:
    match = _ZIP.search(text or "")
    return match.group(0) if match else None


def parse_phone(text: str) -> Optional[str]:
    """Return the phone-number substring (not the whole message)."""
    match = _PHONE.search(text or "")
    return match.group(0).strip() if match else None


def looks_like_name(text: str) -> bool:
    """Whether a short reply plausibly is just a person's name."""
    if not text:
        return False
    trimmed = text.strip()
    if not 2 <= len(trimmed) <= 60:
        return False
    if not re.match(r"^[a-zA-Z][a-zA-Z' -]*$", trimmed):
        return False
    words = trimmed.split()
    if len(words) > 3:
        return False
    if not all(_NAME_WORD.match(w) for w in words):
        return False
    return not any(w.lower() in _BLOCKED_NAME_TOKENS for w in words)


def parse_name(text: str) -> Optional[str]:
    """Extract a name from "my name is ..." / "meu nome é ..." / "me llamo"-style phrases."""
    if not text:
        return None
    normalized = "".join(
        ch for ch in unicodedata.normalize("NFD", text) if unicodedata.category(ch) != "Mn"
    ).strip()

    for pattern in _NAME_PATTERNS:
        match = pattern.search(normalized)
        if not match:
            continue
        candidate = re.split(r"[,.;!?]", match.group(1))[0].strip()
        candidate = " ".join(candidate.split()[:3])
        if looks_like_name(candidate):
            return candidate
    return None


def looks_like_address(text: str) -> bool:
    if not text:
        return False
    trimmed = text.strip()
    if not 8 <= len(trimmed) <= 140:
        return False
    if "?" in trimmed:
        return False
    if not re.search(r"\d", trimmed) or not re.search(r"[a-z]", trimmed, re.IGNORECASE):
        return False
    if _ADDRESS_REJECT.search(trimmed.lower()):
        return False
    return bool(_ADDRESS_TOKEN.search(trimmed)) or len(trimmed.split(",")) >= 2


def parse_address(text: str) -> Optional[str]:
    """Pull an address out of a longer message ("my address is ...", or from the street number on)."""
    if not text:
        return None
    compact = " ".join(text.split())

    marker = re.search(r"\b(?:address is|my address is|address:)\s*(.+)$", compact, re.IGNORECASE)
    if marker and looks_like_address(marker.group(1).strip()):
        return re.sub(r"[.,;!?]+$", "", marker.group(1).strip()).strip()

    street = re.search(r"\b\d{1,6}\s+[A-Za-z0-9.'-]+\b", compact)
    if not street:
        return None
    tail = compact[street.start():].strip()
    if not looks_like_address(tail):
        return None
    return re.sub(r"[.,;!?]+$", "", tail).strip()


# --- classification ---------------------------------------------------------

_NEGATIVE = re.compile(r"\b(no|nope|not now|don't|do not|cancel|nao|não)\b")
_AFFIRMATIVE_EXACT = re.compile(
    r"^(yes|yep|yeah|yup|correct|right|sure|ok|okay|confirm|sounds good|sounds right|"
    r"that's right|that is right|please do|go ahead|sim|si|sí|claro)$"
)
_AFFIRMATIVE_LEAD = re.compile(r"^(yes|yep|yeah|yup|sure|ok|okay|sim|si|sí|claro)\b")
_AFFIRMATIVE_ANY = re.compile(
    r"\b(confirm|please do|go ahead|book it|lock it in|sounds good|sounds right|that works|pode agendar)\b"
)


def _strip_terminal_punctuation(text: str) -> str:
    return re.sub(r"[.!\s]+$", "", text.lower().strip())


def is_negative_response(text: str) -> bool:
    return bool(text and _NEGATIVE.search(text.lower()))


def is_affirmative_response(text: str) -> bool:
    """Short or long confirmations ("yes", "Yes, please confirm the booking")."""
    if not text:
        return False
    normalized = _strip_terminal_punctuation(text)
    if is_negative_response(normalized):
        return False
    if _AFFIRMATIVE_EXACT.match(normalized) or _AFFIRMATIVE_LEAD.match(normalized):
        return True
    return bool(_AFFIRMATIVE_ANY.search(normalized))


def is_likely_direct_question(text: str) -> bool:
    if not text:
        return False
    normalized = strip_accents(text).strip()
    if "?" in normalized:
        return True
    return bool(
        re.search(
            r"\b(what|which|when|where|who|how|do you|can you|is there|are there|quanto|quais|"
            r"qual|quando|onde|como|voces|tem|tiene|tienen|cuando|donde)\b",
            normalized,
        )
    )


def is_service_confirmation_prompt(text: str) -> bool:
    if not text:
        return False
    return bool(
        re.search(
            r"(sound(s)? (right|good)|is that (right|correct|okay)|does that (sound|look|work)|"
            r"that work|work for you|correct\?|right\?)",
            text.lower(),
        )
    )


def is_booking_confirmation_prompt(text: str) -> bool:
    """Assistant text that asks the visitor to confirm the final booking summary."""
    if not text:
        return False
    normalized = text.lower()
    has_booking_context = re.search(
        r"(booking|appointment|schedule|confirm|ready to book|shall i book|want me to book)", normalized
    )
    has_confirm_question = re.search(
        r"(sound(s)? good|confirm\??|ready\??|shall i|want me to|go ahead|proceed|book it|set\?)",
        normalized,
    )
    has_summary = re.search(r"\b(at|on)\b.*\b(am|pm|\d{1,2}:\d{2})\b", normalized) and re.search(
        r"\$\d+", normalized
    )
    return bool(has_confirm_question and (has_booking_context or has_summary))


_PT_HINTS = re.compile(
    r"\b(ola|oi|voce|voces|preciso|quero|agendar|limpeza|endereco|telefone|cep|amanha|hoje|obrigado)\b"
)
_ES_HINTS = re.compile(
    r"\b(hola|usted|necesito|quiero|reservar|limpieza|direccion|telefono|manana|hoy|gracias)\b"
)


def detect_message_language(text: str) -> Optional[str]:
    """Return "pt-BR" or "es" when the message carries clear hint words, else None."""
    if not text:
        return None
    normalized = strip_accents(text)
    if _PT_HINTS.search(normalized):
        return "pt-BR"
    if _ES_HINTS.search(normalized):
        return "es"
    return None


def normalize_language(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized.startswith("pt"):
        return "pt-BR"
    if normalized.startswith("es"):
        return "es"
    if normalized.startswith("en"):
        return "en"
    return None


def normalize_service_name(value: str) -> str:
    """Lower-case, drop the word "cleaning", collapse non-alphanumerics."""
    value = (value or "").lower().replace("cleaning", "")
    value = re.sub(r"[^a-z0-9\s]", " ", value)
    return re.sub(r"\s+", " ", value).strip()


_OBJECTIVE_MENTIONS = {
    "zipcode": re.compile(r"zip|postal"),
    "serviceType": re.compile(r"service|cleaning|sofa|chair|mattress|carpet|rug|upholstery"),
    "serviceDetails": re.compile(r"size|seater|details|material|notes|how many|which"),
    "date": re.compile(
        r"date|day|schedule|when|slot|available|time|\d+\s*(am|pm)|"
        r"monday|tuesday|wednesday|thursday|friday|saturday|sunday"
    ),
    "name": re.compile(r"name"),
    "phone": re.compile(r"phone|number"),
    "address": re.compile(r"address|street|city|state"),
}


def response_mentions_objective(response: str, objective_id: str) -> bool:
    pattern = _OBJECTIVE_MENTIONS.get(objective_id)
    return bool(pattern and pattern.search((response or "").lower()))
