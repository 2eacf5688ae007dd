"""
Analysis orchestrator.

Remote model first, heuristic classifier on any failure. Always returns a
usable assessment.
"""

import logging
from typing import Optional, Sequence

from companion.config import settings
from .heuristic import HeuristicClassifier, get_heuristic_classifier
from .remote import RemoteAnalysisClient
from .types import AnyAssessment, FailureKind, RemoteAssessment, RemoteResult

logger = logging.getLogger(__name__)


# Placeholder replies the remote service emits when it has nothing real to say
GENERIC_RESPONSES = frozenset({
    "I'm here to support you through this.",
    "I'm here to support you through this difficult time. Let's work together to help you feel better.",
    "I'm here to support you through this difficult time. Let's focus on some coping strategies that can help you feel better.",
})


class AnalysisOrchestrator:
    """
    Produces one assessment per message.

    Flow:
    1. Call the remote analysis client
    2. On failure, or a generic / too-short personalized response,
       classify with the heuristic classifier
    3. Return the assessment; its variant carries the provenance
    """

    def __init__(
        self,
        remote_client: Optional[RemoteAnalysisClient] = None,
        classifier: Optional[HeuristicClassifier] = None,
        min_response_length: Optional[int] = None,
    ):
        self._remote = remote_client or RemoteAnalysisClient()
        self._classifier = classifier or get_heuristic_classifier()
        self._min_response_length = (
            min_response_length
            if min_response_length is not None
            else settings.min_personalized_response_length
        )

    async def analyze(self, text: str, recent_history: Sequence[str] = ()) -> AnyAssessment:
        """
        Assess a message. Never raises.

        Args:
            text: The user's message
            recent_history: Prior message texts, oldest first

        Returns:
            RemoteAssessment or FallbackAssessment
        """
        history = list(recent_history)

        try:
            result = await self._remote.call(text, history)
        except Exception as e:
            logger.exception(f"Remote analysis client raised: {e}")
            result = RemoteResult.fail(FailureKind.UNAVAILABLE, str(e))

        if result.ok:
            result = self._check_generic(result)

        if result.ok:
            logger.info(
                f"Analysis from remote: level={result.assessment.anxiety_level} "
                f"risk={result.assessment.crisis_risk.value}"
            )
            return result.assessment

        logger.info(
            f"Using fallback analysis ({result.failure.kind.value}) "
            f"for message: {text[:50]}"
        )
        return self._classifier.classify(text, history)

    def _check_generic(self, result: RemoteResult) -> RemoteResult:
        """Treat placeholder or too-short replies as a failure."""
        assessment: RemoteAssessment = result.assessment
        response = assessment.personalized_response.strip()

        if len(response) < self._min_response_length:
            logger.warning(f"Remote personalized response too short ({len(response)} chars)")
            return RemoteResult.fail(FailureKind.GENERIC, "personalized response too short")

        if response in GENERIC_RESPONSES:
            logger.warning("Remote returned a generic placeholder response")
            return RemoteResult.fail(FailureKind.GENERIC, "generic placeholder response")

        return result


# Singleton
_orchestrator: Optional[AnalysisOrchestrator] = None


def get_orchestrator() -> AnalysisOrchestrator:
    """Get singleton AnalysisOrchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = AnalysisOrchestrator()
    return _orchestrator


async def analyze(text: str, recent_history: Sequence[str] = ()) -> AnyAssessment:
    """Convenience function to assess a message."""
    return await get_orchestrator().analyze(text, recent_history)
