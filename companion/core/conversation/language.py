"""Per-message reply language detection."""

import re
from typing import Optional

from companion.config import settings
from .models import Language


SPANISH_TOKENS: tuple[str, ...] = (
    "hola", "gracias", "estoy", "estás", "necesito", "ayuda", "ansiedad",
    "ánimo", "mañana", "porque", "qué", "cómo", "sí", "tengo", "siento",
    "muy", "pero", "para",
)

_SPANISH_PATTERNS = [re.compile(rf"\b{re.escape(token)}\b") for token in SPANISH_TOKENS]

# Phrases asking for the Spanish-speaking companion
SPANISH_COMPANION_REQUEST = re.compile(
    r"\b(speak|talk|chat|hablar|habla)\b.{0,20}\b(spanish|español|espanol)\b"
    r"|\b(en\s+español|en\s+espanol)\b"
    r"|\b(talk|speak|chat)\s+(to|with)\s+m[oó]nica\b",
    re.IGNORECASE,
)


def detect_language(text: str, threshold: Optional[int] = None) -> Language:
    """
    Guess the reply language of one message.

    Counts distinct Spanish indicator tokens; at or above the threshold the
    reply is Spanish, otherwise English. Decided per message so a switch
    mid-conversation takes effect immediately.
    """
    if threshold is None:
        threshold = settings.language_switch_threshold
    lowered = text.lower()
    hits = sum(1 for pattern in _SPANISH_PATTERNS if pattern.search(lowered))
    return Language.ES if hits >= threshold else Language.EN


def wants_spanish_companion(text: str) -> bool:
    """Check if the message asks to continue in Spanish."""
    return bool(SPANISH_COMPANION_REQUEST.search(text))
