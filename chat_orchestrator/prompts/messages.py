"""Localized visitor-facing copy (en, pt-BR, es)."""

from typing import Optional

ERROR_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "systemUnavailable": "Sorry, our scheduling system is temporarily unavailable. Please contact us by phone.",
        "availabilityCheckFailed": "We could not verify availability. Please try again.",
        "appointmentConfirmFailed": "We could not confirm this time slot. Can I show you other available times?",
        "contactCreationFailed": "There was a problem processing your information. Can you try again in a few minutes?",
        "minimumAdjustment": "Note: Your order has been adjusted to meet our minimum booking value of ${minimum}.",
        "bookingLimitReached": "You have reached the maximum number of bookings for this conversation. Please start a new chat for additional bookings.",
    },
    "pt": {
        "systemUnavailable": "Desculpe, nosso sistema de agendamento não está disponível no momento. Por favor, entre em contato por telefone.",
        "availabilityCheckFailed": "Não conseguimos verificar a disponibilidade. Por favor, tente novamente.",
        "appointmentConfirmFailed": "Não conseguimos confirmar este horário. Posso mostrar outros horários disponíveis?",
        "contactCreationFailed": "Houve um problema ao processar seus dados. Você pode tentar novamente em alguns minutos?",
        "minimumAdjustment": "Nota: Seu pedido foi ajustado para atender nosso valor mínimo de agendamento de ${minimum}.",
        "bookingLimitReached": "Você atingiu o número máximo de agendamentos para esta conversa. Por favor, inicie um novo chat para agendamentos adicionais.",
    },
    "es": {
        "systemUnavailable": "Lo sentimos, nuestro sistema de programación no está disponible en este momento. Por favor, contáctenos por teléfono.",
        "availabilityCheckFailed": "No pudimos verificar la disponibilidad. Por favor, inténtelo de nuevo.",
        "appointmentConfirmFailed": "No pudimos confirmar este horario. ¿Puedo mostrarle otros horarios disponibles?",
        "contactCreationFailed": "Hubo un problema al procesar su información. ¿Puede intentarlo de nuevo en unos minutos?",
        "minimumAdjustment": "Nota: Su pedido ha sido ajustado para cumplir con nuestro valor mínimo de reserva de ${minimum}.",
        "bookingLimitReached": "Ha alcanzado el número máximo de reservas para esta conversación. Por favor, inicie un nuevo chat para reservas adicionales.",
    },
}

INTAKE_QUESTIONS: dict[str, dict[str, str]] = {
    "en": {
        "zipcode": "What's your ZIP code?",
        "serviceType": "What service do you need?",
        "serviceDetails": "Any size, material, or special details I should know?",
        "date": "What day and time would you like to schedule?",
        "name": "What's your full name?",
        "phone": "What's the best phone number to reach you?",
        "address": "What's the full address?",
        "fallback": "What should we start with?",
    },
    "pt": {
        "zipcode": "Qual é o seu ZIP code?",
        "serviceType": "Qual serviço você precisa?",
        "serviceDetails": "Tem algum detalhe de tamanho, material ou observação?",
        "date": "Qual dia você gostaria de agendar?",
        "name": "Qual é o seu nome completo?",
        "phone": "Qual é o melhor telefone para contato?",
        "address": "Qual é o endereço completo?",
        "fallback": "Por onde você quer começar?",
    },
    "es": {
        "zipcode": "¿Cuál es su código ZIP?",
        "serviceType": "¿Qué servicio necesita?",
        "serviceDetails": "¿Hay detalles de tamaño, material o notas especiales?",
        "date": "¿Qué día le gustaría agendar?",
        "name": "¿Cuál es su nombre completo?",
        "phone": "¿Cuál es el mejor teléfono para contactarle?",
        "address": "¿Cuál es la dirección completa?",
        "fallback": "¿Por dónde empezamos?",
    },
}

# Fixed replies produced by the orchestrator itself rather than the model
DEFAULT_RESPONSE = "Sorry, I could not process that request."
MODEL_UNAVAILABLE = "Chat is unavailable right now. Please try again soon."
BOOKING_FAILED_FALLBACK = (
    "Sorry, there was a problem processing your booking. Please try again or contact us by phone."
)
BOOKING_MISSING_INFO = (
    "Before I can confirm your booking, I still need some information. Could you provide that?"
)
BOOKING_CONFIRMED = "Booking confirmed!"
BOOKING_PENDING_SYNC = "Your booking has been saved. You will receive a confirmation shortly."


def _lang_key(language: Optional[str]) -> str:
    normalized = (language or "").lower()
    if normalized.startswith("pt"):
        return "pt"
    if normalized.startswith("es"):
        return "es"
    return "en"


def get_error_message(key: str, language: Optional[str] = "en", **replacements: str) -> str:
    """Localized error copy; ``{name}`` placeholders are filled from keyword args."""
    table = ERROR_MESSAGES[_lang_key(language)]
    message = table.get(key) or ERROR_MESSAGES["en"][key]
    for placeholder, value in replacements.items():
        message = message.replace(f"{{{placeholder}}}", value)
    return message


def get_intake_question(objective_id: Optional[str], language: Optional[str] = "en") -> str:
    questions = INTAKE_QUESTIONS[_lang_key(language)]
    return questions.get(objective_id or "", questions["fallback"])


def booking_confirmation_reply(services: list[str], booking_date: str, start_time: str) -> str:
    summary = ", ".join(services) or "your service"
    when = f"{booking_date or 'your scheduled date'}"
    if start_time:
        when += f" at {start_time}"
    return f"You're all set! {summary} booked for {when}. You'll get a text confirmation."
