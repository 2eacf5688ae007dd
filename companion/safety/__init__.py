"""
Safety Module

Crisis keyword detection and the escalation gate that decides when the
crisis-resources interrupt is raised.
"""

from companion.safety.crisis_detector import (
    CrisisType,
    CrisisDetectionResult,
    CrisisDetector,
    get_detector as get_crisis_detector,
)

from companion.safety.escalation import (
    EscalationDecision,
    EscalationGate,
)

__all__ = [
    # Crisis detection
    "CrisisType",
    "CrisisDetectionResult",
    "CrisisDetector",
    "get_crisis_detector",
    # Escalation
    "EscalationDecision",
    "EscalationGate",
]
