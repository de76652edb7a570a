"""
System prompt construction for the booking chat.

The base template carries the persona and intake rules; business facts,
conversation memory and the next-step directive are sent as separate system
messages so each can change per turn without rebuilding the others.
"""

from typing import Optional

from chat_orchestrator.conversation.parsing import format_business_hours_summary
from chat_orchestrator.schemas.booking_schema import CompanyProfile
from chat_orchestrator.schemas.conversation_schema import Conversation, IntakeObjective

CHAT_PROMPT_TEMPLATE = """You are a friendly booking assistant for {company_name}. {industry_line}
Your personality: Warm, helpful, and efficient.

## INTAKE FLOW
{intake_flow}

RULES:
- Ask ONE question at a time
- Be conversational but concise
- No filler phrases like "Great!", "Perfect!"
- Today is {today} ({time_zone})
- Interpret "next <weekday>" as the next upcoming weekday within 7 days
- Only offer services returned by list_services and times returned by suggest_booking_dates
- Call add_service as soon as the customer confirms a service
- Before booking, summarize services, date, time, address and total, then wait for a yes
- Never say a booking is confirmed unless create_booking returned success

## REQUIRED FIELDS: {required_fields}

{language_instruction}"""

# Repeats of the same intake question before the directive escalates
GENTLE_REPEAT = 1
FIRM_REPEAT = 3


def required_fields(enabled_ids: set[str]) -> list[str]:
    fields = ["service_id(s)", "booking_date", "start_time"]
    for objective_id, field_name in (
        ("name", "customer_name"),
        ("phone", "customer_phone"),
        ("address", "customer_address"),
    ):
        if objective_id in enabled_ids:
            fields.append(field_name)
    return fields


def _industry_line(industry: str) -> str:
    label = " ".join(word.capitalize() for word in industry.split())
    return f"Business type: {label}." if label else ""


def build_system_prompt(
    company: CompanyProfile,
    intake_flow: str,
    enabled_ids: set[str],
    today: str,
    language: Optional[str],
) -> str:
    """Render the base prompt for one turn."""
    return CHAT_PROMPT_TEMPLATE.format(
        company_name=(company.name or "the business").strip(),
        industry_line=_industry_line(company.industry or ""),
        intake_flow=intake_flow,
        today=today,
        time_zone=company.timezone,
        required_fields=", ".join(required_fields(enabled_ids)),
        language_instruction=f"Respond in {language}." if language else "",
    ).strip()


def build_company_info(company: CompanyProfile) -> str:
    lines = [
        f"Company: {company.name}" if company.name else None,
        f"Phone: {company.phone}" if company.phone else None,
        f"Email: {company.email}" if company.email else None,
        f"Address: {company.address}" if company.address else None,
        f"Time zone: {company.timezone}" if company.timezone else None,
        f"Business hours: {format_business_hours_summary(company.business_hours)}",
    ]
    summary = "\n".join(line for line in lines if line)
    return f"BUSINESS INFO (use this to answer questions):\n{summary}"


def build_memory_context(conversation: Conversation) -> str:
    """What the orchestrator already knows, as a bullet list."""
    memory = conversation.memory
    collected = memory.collected_data
    if memory.cart:
        cart_summary = ", ".join(
            f"{line.service_name or 'Service'} x {line.quantity} (${line.price:g})"
            for line in memory.cart
        )
    else:
        cart_summary = "Empty"

    lines = ["CONVERSATION STATE (from memory):", f"• Cart: {cart_summary}"]
    for label, value in (
        ("ZIP code", collected.zipcode),
        ("Service type", collected.service_type),
        ("Service details", collected.service_details),
        ("Preferred date", collected.preferred_date),
        ("Confirmed date", collected.selected_date),
        ("Confirmed time", collected.selected_time),
        ("Name", collected.name or conversation.visitor_name),
        ("Phone", collected.phone or conversation.visitor_phone),
        ("Email", collected.email or conversation.visitor_email),
        ("Address", collected.address or conversation.visitor_address),
    ):
        if value:
            lines.append(f"• {label}: {value}")
    if memory.completed_steps:
        lines.append(f"• Completed steps: {', '.join(memory.completed_steps)}")
    else:
        lines.append("• No steps completed yet")
    return "\n".join(lines)


def build_step_directive(
    objective: Optional[IntakeObjective], repeat_count: int, direct_question: bool
) -> str:
    """Next-step instruction; its wording hardens as the same step repeats."""
    if objective is None:
        return "All intake steps complete."
    step = f"NEXT REQUIRED STEP: {objective.label} ({objective.id.value})."
    if direct_question:
        return (
            f"{step} The user asked a direct question in this turn. Answer their question "
            "first with concrete information and only then ask for the next intake step."
        )
    if repeat_count >= FIRM_REPEAT:
        return (
            f"{step} IMPORTANT: You have already asked for this {repeat_count} times. The "
            "customer may not have this info right now. Acknowledge what they said, try "
            "rephrasing your question differently, or offer to skip this step and come back "
            "to it later. Do NOT repeat the same question verbatim."
        )
    if repeat_count >= GENTLE_REPEAT:
        return (
            f"{step} Note: you already asked for this. If the user provided something else, "
            "acknowledge it and gently ask again in a different way. If the user already "
            "provided it, call update_memory with completed_step and move to the next step."
        )
    return (
        f"{step} Ask ONLY for this step next. Do NOT ask about later steps. If the user asks "
        "a direct question outside the intake flow, answer it first using company info or FAQ "
        "data, then return to this step. If the user already provided it, call update_memory "
        "with completed_step and move to the next step."
    )
