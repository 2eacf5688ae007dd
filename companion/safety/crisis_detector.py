"""
Crisis Keyword Detection

Detects explicit self-harm, suicide and harm-to-others language in a
message. A hit is enough on its own to raise the crisis-resources
interrupt, so patterns favour explicit phrasing over single words.

IMPORTANT: This is a supplementary safety layer, not a replacement
for professional crisis intervention services.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class CrisisType(str, Enum):
    """Types of crisis language that can be detected."""

    NONE = "none"
    SUICIDE = "suicide"
    SELF_HARM = "self_harm"
    HARM_TO_OTHERS = "harm_to_others"


@dataclass
class CrisisDetectionResult:
    """Result of crisis keyword detection."""

    is_crisis: bool
    crisis_type: CrisisType = CrisisType.NONE
    matched_patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "is_crisis": self.is_crisis,
            "crisis_type": self.crisis_type.value,
            "matched_patterns": self.matched_patterns,
        }


# ==================================
# Crisis Patterns Configuration
# ==================================

# Pattern structure: (regex_pattern, crisis_type)
# Order matters only for which type is reported first.

CRISIS_PATTERNS: list[tuple[str, CrisisType]] = [
    # ==========================================
    # SUICIDE
    # ==========================================
    (r"\bkill(ing)?\s+myself\b", CrisisType.SUICIDE),
    (r"\bsuicid(e|al)\b", CrisisType.SUICIDE),
    (r"\bend\s+(it\s+all|my\s+life)\b", CrisisType.SUICIDE),
    (r"\b(want|going|wanna)\s+(to\s+)?end\s+it\b", CrisisType.SUICIDE),
    (r"\b(want|going|wanna)\s+(to\s+)?die\b", CrisisType.SUICIDE),
    (r"\bnot\s+worth\s+living\b", CrisisType.SUICIDE),
    (r"\bwish\s+i\s+(was|were)\s+(dead|never\s+born)\b", CrisisType.SUICIDE),
    (r"\b(better\s+off|be\s+better)\s+without\s+me\b", CrisisType.SUICIDE),
    (r"\bdon'?t\s+want\s+to\s+(live|be\s+alive|exist|wake\s+up)\b", CrisisType.SUICIDE),

    # Spanish
    (r"\b(quiero\s+morir(me)?|matarme|suicidarme)\b", CrisisType.SUICIDE),

    # ==========================================
    # SELF-HARM
    # ==========================================
    (r"\bhurt(ing)?\s+myself\b", CrisisType.SELF_HARM),
    (r"\bself[- ]?harm(ing)?\b", CrisisType.SELF_HARM),
    (r"\bcut(ting)?\s+(myself|my\s+(wrist|wrists|arm|arms|leg|legs))\b", CrisisType.SELF_HARM),
    (r"\bburn(ing)?\s+myself\b", CrisisType.SELF_HARM),
    (r"\bhacerme\s+daño\b", CrisisType.SELF_HARM),

    # ==========================================
    # HARM TO OTHERS
    # ==========================================
    (r"\b(want|going|plan(ning)?)\s+to\s+(kill|hurt|harm|attack)\s+(someone|somebody|him|her|them|my|people)\b",
     CrisisType.HARM_TO_OTHERS),
    (r"\bthoughts?\s+of\s+(killing|harming|hurting)\s+(people|others|someone)\b",
     CrisisType.HARM_TO_OTHERS),
]


# Typographic apostrophes from mobile keyboards ("don’t")
_APOSTROPHES = str.maketrans({"’": "'", "‘": "'"})


class CrisisDetector:
    """
    Matches explicit crisis language.

    Every pattern is checked so the result lists all matches; the first
    matching pattern's type is reported as the crisis type.
    """

    def __init__(self, patterns: Optional[list[tuple[str, CrisisType]]] = None):
        self._compiled_patterns = [
            (re.compile(pattern, re.IGNORECASE), crisis_type)
            for pattern, crisis_type in (patterns or CRISIS_PATTERNS)
        ]

    def detect(self, text: str) -> CrisisDetectionResult:
        """
        Scan a message for crisis language.

        Args:
            text: Raw user message

        Returns:
            CrisisDetectionResult; is_crisis is False for blank text
        """
        if not text or not text.strip():
            return CrisisDetectionResult(is_crisis=False)

        normalized = text.translate(_APOSTROPHES)
        hits: list[tuple[CrisisType, str]] = []
        for pattern, crisis_type in self._compiled_patterns:
            match = pattern.search(normalized)
            if match:
                hits.append((crisis_type, match.group(0).lower()))

        if not hits:
            return CrisisDetectionResult(is_crisis=False)

        crisis_type = hits[0][0]
        logger.debug(f"Crisis language matched: {crisis_type.value} ({len(hits)} patterns)")
        return CrisisDetectionResult(
            is_crisis=True,
            crisis_type=crisis_type,
            matched_patterns=[f"{kind.value}:{phrase}" for kind, phrase in hits],
        )

    def is_crisis(self, text: str) -> bool:
        """True if any crisis pattern matches."""
        return self.detect(text).is_crisis


# Singleton
_detector_instance: Optional[CrisisDetector] = None


def get_detector() -> CrisisDetector:
    """Get singleton CrisisDetector."""
    global _detector_instance
    if _detector_instance is None:
        _detector_instance = CrisisDetector()
    return _detector_instance
