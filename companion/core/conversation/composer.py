"""
Response composer.

Turns an assessment into the reply text for the active language. Persona
only changes framing (welcome, introductions, generic replies), never the
coping content.
"""

import logging
from typing import Optional

from companion.core.analysis.keywords import (
    NEUTRAL_RESPONSES,
    OVERWHELM_RESPONSE,
    get_rule,
)
from companion.core.analysis.types import AnyAssessment, Category, FallbackAssessment
from .models import Language, Persona

logger = logging.getLogger(__name__)


WELCOME_MESSAGES: dict[Persona, dict[Language, str]] = {
    Persona.VANESSA: {
        Language.EN: (
            "Hi, I'm Vanessa, your anxiety support companion. I'm here to listen and help you "
            "work through whatever you're feeling. How are you feeling today?"
        ),
        Language.ES: (
            "Hola, soy Vanessa, tu compañera de apoyo para la ansiedad. Estoy aquí para escucharte "
            "y ayudarte con lo que sientas. ¿Cómo te sientes hoy?"
        ),
    },
    Persona.MONICA: {
        Language.EN: (
            "Hi, I'm Monica, your anxiety support companion. I'm here to offer clinically informed "
            "support. How are you feeling today?"
        ),
        Language.ES: (
            "¡Hola! Soy Mónica, tu compañera de apoyo para la ansiedad. Estoy aquí para brindarte "
            "apoyo clínico informado usando los enfoques terapéuticos más avanzados. ¿Cómo te sientes hoy?"
        ),
    },
}

GENERIC_REPLIES: dict[Persona, dict[Language, str]] = {
    Persona.VANESSA: {
        Language.EN: (
            "I'm having a little trouble right now, but I'm still here with you. "
            "Take a slow breath with me: in for 4, out for 6. What's on your mind?"
        ),
        Language.ES: (
            "Estoy teniendo un pequeño problema, pero sigo aquí contigo. "
            "Respira despacio conmigo: inhala en 4, exhala en 6. ¿Qué tienes en mente?"
        ),
    },
    Persona.MONICA: {
        Language.EN: (
            "Something went wrong on my side, but I'm still with you. "
            "Breathe slowly: in for 4, out for 6. Tell me what you're feeling."
        ),
        Language.ES: (
            "Algo falló de mi lado, pero sigo contigo. "
            "Respira despacio: inhala en 4, exhala en 6. Cuéntame cómo te sientes."
        ),
    },
}

STRATEGY_REPLY: dict[Language, str] = {
    Language.EN: "I'm here with you. Let's try this together: {strategy}.",
    Language.ES: "Estoy aquí contigo. Probemos esto juntos: {strategy}.",
}


class ResponseComposer:
    """
    Selects and localizes reply text.

    Order of preference:
    1. Fallback assessments: the category template in the target language
    2. A non-empty personalized response, used as-is
    3. A reply built from the first coping strategy
    4. The persona's generic supportive reply
    """

    def compose(self, assessment: AnyAssessment, language: Language, persona: Persona) -> str:
        """
        Compose the reply for an assessment.

        Args:
            assessment: Assessment of the user's message
            language: Reply language for this message
            persona: Conversation's companion persona

        Returns:
            Reply text
        """
        if isinstance(assessment, FallbackAssessment):
            localized = self._localize_fallback(assessment, language)
            if localized:
                return localized

        if assessment.personalized_response.strip():
            return assessment.personalized_response.strip()

        if assessment.coping_strategies:
            return STRATEGY_REPLY[language].format(strategy=assessment.coping_strategies[0])

        return self.generic_reply(language, persona)

    def welcome(self, persona: Persona, language: Language) -> str:
        """Opening message for a new conversation."""
        return WELCOME_MESSAGES[persona][language]

    def generic_reply(self, language: Language, persona: Persona) -> str:
        """Supportive reply used when the pipeline fails."""
        return GENERIC_REPLIES[persona][language]

    def _localize_fallback(self, assessment: FallbackAssessment, language: Language) -> Optional[str]:
        lang = language.value

        if assessment.category == Category.NEUTRAL:
            variants = NEUTRAL_RESPONSES[lang]
            return variants[assessment.variant % len(variants)]

        if assessment.category == Category.OVERWHELM:
            return OVERWHELM_RESPONSE[lang]

        rule = get_rule(assessment.category)
        if rule is None:
            logger.warning(f"No template for category {assessment.category.value}")
            return None
        return rule.response.get(lang)


# Singleton
_composer: Optional[ResponseComposer] = None


def get_composer() -> ResponseComposer:
    """Get singleton ResponseComposer."""
    global _composer
    if _composer is None:
        _composer = ResponseComposer()
    return _composer
