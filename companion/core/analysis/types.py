"""Assessment types produced by the analysis layer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Union


MIN_ANXIETY_LEVEL = 1
MAX_ANXIETY_LEVEL = 10


class Provenance(str, Enum):
    """Where an assessment came from."""

    REMOTE = "remote"
    FALLBACK = "fallback"


class CrisisRisk(str, Enum):
    """Derived crisis-risk tier."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


class Category(str, Enum):
    """Heuristic branch that produced a fallback assessment."""

    HALLUCINATION = "hallucination"
    PANIC = "panic"
    TRAUMA = "trauma"
    OBSESSIVE_COMPULSIVE = "obsessive_compulsive"
    VIOLENT_IDEATION = "violent_ideation"
    BETRAYAL_GRIEF = "betrayal_grief"
    GENERALIZED_WORRY = "generalized_worry"
    SADNESS = "sadness"
    ANXIETY = "anxiety"
    SLEEP = "sleep"
    OVERWHELM = "overwhelm"      # no branch matched, keyword load is heavy
    NEUTRAL = "neutral"          # no branch matched


class FailureKind(str, Enum):
    """Remote analysis failure taxonomy."""

    UNAVAILABLE = "remote_unavailable"  # transport, timeout, status, missing key
    MALFORMED = "remote_malformed"      # no JSON block, parse error, wrong shape
    GENERIC = "remote_generic"          # valid shape, placeholder content


def derive_crisis_risk(anxiety_level: int, crisis_keyword_hit: bool) -> CrisisRisk:
    """
    Map an anxiety level and crisis keyword hit to a risk tier.

    High and critical are only reachable with level >= 9 or a keyword hit,
    so a lone level-8 reading never escalates on tier alone.
    """
    if crisis_keyword_hit or anxiety_level >= 10:
        return CrisisRisk.CRITICAL
    if anxiety_level >= 9:
        return CrisisRisk.HIGH
    if anxiety_level >= 7:
        return CrisisRisk.MODERATE
    return CrisisRisk.LOW


@dataclass(frozen=True)
class Assessment:
    """
    Structured anxiety assessment of one message.

    Use the RemoteAssessment / FallbackAssessment variants; consumers match
    on the variant instead of probing a marker field.
    """

    anxiety_level: int
    triggers: tuple[str, ...]
    coping_strategies: tuple[str, ...]
    personalized_response: str
    crisis_risk: CrisisRisk
    cognitive_distortions: tuple[str, ...] = ()

    provenance: ClassVar[Provenance]

    def __post_init__(self) -> None:
        if not MIN_ANXIETY_LEVEL <= self.anxiety_level <= MAX_ANXIETY_LEVEL:
            raise ValueError(f"anxiety_level out of range: {self.anxiety_level}")

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses and storage."""
        return {
            "anxiety_level": self.anxiety_level,
            "triggers": list(self.triggers),
            "coping_strategies": list(self.coping_strategies),
            "personalized_response": self.personalized_response,
            "crisis_risk": self.crisis_risk.value,
            "cognitive_distortions": list(self.cognitive_distortions),
            "provenance": self.provenance.value,
        }


@dataclass(frozen=True)
class RemoteAssessment(Assessment):
    """Assessment returned by the remote model."""

    provenance: ClassVar[Provenance] = Provenance.REMOTE


@dataclass(frozen=True)
class FallbackAssessment(Assessment):
    """Assessment produced locally by the heuristic classifier."""

    category: Category = Category.NEUTRAL
    variant: int = 0  # template index for rotated replies

    provenance: ClassVar[Provenance] = Provenance.FALLBACK


AnyAssessment = Union[RemoteAssessment, FallbackAssessment]


@dataclass(frozen=True)
class RemoteFailure:
    """Why a remote analysis could not be used."""

    kind: FailureKind
    detail: str = ""


@dataclass(frozen=True)
class RemoteResult:
    """Success/failure outcome of one remote analysis call."""

    assessment: Optional[RemoteAssessment] = None
    failure: Optional[RemoteFailure] = None
    latency_ms: float = 0.0
    raw_response: Optional[str] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.assessment is not None and self.failure is None

    @classmethod
    def success(cls, assessment: RemoteAssessment, latency_ms: float = 0.0, raw_response: Optional[str] = None) -> "RemoteResult":
        return cls(assessment=assessment, latency_ms=latency_ms, raw_response=raw_response)

    @classmethod
    def fail(cls, kind: FailureKind, detail: str = "", raw_response: Optional[str] = None) -> "RemoteResult":
        return cls(failure=RemoteFailure(kind=kind, detail=detail), raw_response=raw_response)
