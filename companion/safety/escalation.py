"""
Escalation Gate

Decides whether the crisis-resources interrupt should be raised for the
latest user message. The gate only answers yes/no; what the interrupt
shows belongs to the caller.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from companion.config import settings
from companion.core.analysis.types import Assessment, CrisisRisk
from companion.safety.crisis_detector import CrisisDetector, get_detector

logger = logging.getLogger(__name__)


ESCALATING_RISKS = frozenset({CrisisRisk.HIGH, CrisisRisk.CRITICAL})


@dataclass(frozen=True)
class EscalationDecision:
    """Gate outcome with the rule that fired, for audit logging."""

    escalate: bool
    reason: Optional[str] = None  # "crisis_keyword" | "crisis_risk" | "recent_pattern"


class EscalationGate:
    """
    Stateless escalation decision.

    Escalates when any of:
    - the raw text contains explicit crisis language
    - the latest assessment's crisis risk is high or critical
    - the recent window holds enough high readings

    A single high reading is not enough on its own: keyword overlap makes
    one-off level-8 assessments common, a short pattern is not.
    """

    def __init__(
        self,
        detector: Optional[CrisisDetector] = None,
        min_high_count: Optional[int] = None,
    ):
        self._detector = detector or get_detector()
        self._min_high_count = (
            min_high_count if min_high_count is not None else settings.escalation_min_high_count
        )

    def evaluate(
        self,
        text: str,
        latest: Optional[Assessment],
        recent_high_count: int,
    ) -> EscalationDecision:
        """Evaluate the gate and report which rule fired."""
        if self._detector.is_crisis(text):
            return EscalationDecision(escalate=True, reason="crisis_keyword")

        if latest is not None and latest.crisis_risk in ESCALATING_RISKS:
            return EscalationDecision(escalate=True, reason="crisis_risk")

        if recent_high_count >= self._min_high_count:
            return EscalationDecision(escalate=True, reason="recent_pattern")

        return EscalationDecision(escalate=False)

    def should_escalate(
        self,
        text: str,
        latest: Optional[Assessment],
        recent_high_count: int,
    ) -> bool:
        """
        Decide whether to raise the crisis-resources interrupt.

        Args:
            text: Raw user message
            latest: Assessment of that message
            recent_high_count: High readings among the last window of assessments

        Returns:
            True if the interrupt should be raised
        """
        return self.evaluate(text, latest, recent_high_count).escalate
