"""Anxiety analysis module."""

from .types import (
    Provenance,
    CrisisRisk,
    Category,
    FailureKind,
    Assessment,
    RemoteAssessment,
    FallbackAssessment,
    AnyAssessment,
    RemoteFailure,
    RemoteResult,
    derive_crisis_risk,
)
from .heuristic import (
    HeuristicClassifier,
    get_heuristic_classifier,
    classify,
)
from .remote import RemoteAnalysisClient
from .orchestrator import (
    AnalysisOrchestrator,
    get_orchestrator,
    analyze,
)

__all__ = [
    # Types
    "Provenance",
    "CrisisRisk",
    "Category",
    "FailureKind",
    "Assessment",
    "RemoteAssessment",
    "FallbackAssessment",
    "AnyAssessment",
    "RemoteFailure",
    "RemoteResult",
    "derive_crisis_risk",
    # Heuristic
    "HeuristicClassifier",
    "get_heuristic_classifier",
    "classify",
    # Remote
    "RemoteAnalysisClient",
    # Orchestrator
    "AnalysisOrchestrator",
    "get_orchestrator",
    "analyze",
]
