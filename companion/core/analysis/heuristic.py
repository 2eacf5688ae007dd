"""
Heuristic anxiety classifier.

Deterministic keyword rules used whenever the remote analysis is
unavailable. Same inputs always give the same assessment: the neutral
reply rotation is chosen from a hash of the text, never at random.
"""

import hashlib
import logging
import re
from typing import Iterable, Optional, Sequence

from companion.safety.crisis_detector import CrisisDetector, get_detector
from .keywords import (
    ANXIETY_KEYWORDS,
    CATEGORY_RULES,
    COGNITIVE_DISTORTIONS,
    NEUTRAL_COPING,
    NEUTRAL_RESPONSES,
    OVERWHELM_COPING,
    OVERWHELM_KEYWORDS,
    OVERWHELM_RESPONSE,
    OVERWHELM_TRIGGERS,
    TRIGGER_CATEGORIES,
    CategoryRule,
)
from .types import (
    MAX_ANXIETY_LEVEL,
    Category,
    FallbackAssessment,
    derive_crisis_risk,
)

logger = logging.getLogger(__name__)


BASE_LEVEL = 3
LEVEL_PER_KEYWORD = 2
OVERWHELM_LEVEL = 7
HISTORY_LOOKBACK = 3


def _compile(keywords: Iterable[str], plural: bool = False) -> re.Pattern:
    """Compile a whole-word alternation for a keyword list."""
    suffix = "s?" if plural else ""
    alternation = "|".join(re.escape(k) for k in sorted(set(keywords), key=len, reverse=True))
    return re.compile(rf"\b(?:{alternation}){suffix}\b")


def normalize(text: str) -> str:
    """Lower-case and unify apostrophes so "can’t" matches "can't"."""
    return text.lower().replace("’", "'").replace("‘", "'")


class HeuristicClassifier:
    """
    Rule-based anxiety classifier.

    Branches are evaluated in a fixed precedence and the first match wins:
    hallucination, panic, trauma, obsessive-compulsive, violent ideation,
    betrayal with low mood, generalized worry, sadness, anxiety, sleep.
    With no match the level comes from the anxiety keyword count.

    Usage:
        classifier = HeuristicClassifier()
        assessment = classifier.classify("I'm having a panic attack", [])
        assessment.anxiety_level  # 8
    """

    def __init__(self, detector: Optional[CrisisDetector] = None):
        self._detector = detector or get_detector()

        self._rules: list[tuple[CategoryRule, list[re.Pattern]]] = [
            (rule, [_compile(group) for group in rule.keyword_groups])
            for rule in CATEGORY_RULES
        ]
        self._anxiety_words = [(word, _compile([word])) for word in ANXIETY_KEYWORDS]
        self._overwhelm = _compile(OVERWHELM_KEYWORDS)
        self._triggers = [
            (label, _compile(keywords, plural=True))
            for label, keywords in TRIGGER_CATEGORIES.items()
        ]
        self._distortions = [
            (label, _compile(keywords))
            for label, keywords in COGNITIVE_DISTORTIONS.items()
        ]

    def classify(self, text: str, recent_history: Sequence[str] = ()) -> FallbackAssessment:
        """
        Classify a message.

        Args:
            text: The user's message
            recent_history: Prior message texts, oldest first

        Returns:
            FallbackAssessment for the message
        """
        lowered = normalize(text)
        crisis_hit = self._detector.is_crisis(text)
        keyword_level = self._keyword_level(lowered)

        rule = self._match_rule(lowered, crisis_hit)

        if rule is not None:
            level = max(keyword_level, rule.level) if rule.level_is_floor else rule.level
            if rule.category == Category.VIOLENT_IDEATION and crisis_hit:
                level = max(level, 9)
            category = rule.category
            triggers = rule.triggers
            coping = rule.coping["en"]
            response = rule.response["en"]
            variant = 0
        else:
            level = keyword_level
            if self._overwhelm.search(lowered):
                level = max(level, OVERWHELM_LEVEL)
            if self._history_is_anxious(recent_history):
                level += 1
            level = min(level, MAX_ANXIETY_LEVEL)

            if level > 6:
                category = Category.OVERWHELM
                triggers = OVERWHELM_TRIGGERS
                coping = OVERWHELM_COPING["en"]
                response = OVERWHELM_RESPONSE["en"]
                variant = 0
            else:
                category = Category.NEUTRAL
                variant = self._rotation_index(lowered, len(NEUTRAL_RESPONSES["en"]))
                triggers = ("Stress",) if self._count_anxiety_keywords(lowered) else ()
                coping = NEUTRAL_COPING["en"]
                response = NEUTRAL_RESPONSES["en"][variant]

        assessment = FallbackAssessment(
            anxiety_level=level,
            triggers=self._merge_triggers(triggers, self.detect_triggers(lowered)),
            coping_strategies=coping,
            personalized_response=response,
            crisis_risk=derive_crisis_risk(level, crisis_hit),
            cognitive_distortions=self.detect_cognitive_distortions(lowered),
            category=category,
            variant=variant,
        )

        logger.debug(
            f"Heuristic classification: category={category.value} "
            f"level={level} risk={assessment.crisis_risk.value}"
        )
        return assessment

    def detect_triggers(self, text: str) -> tuple[str, ...]:
        """Trigger categories mentioned in the text, in table order."""
        lowered = normalize(text)
        return tuple(label for label, pattern in self._triggers if pattern.search(lowered))

    def detect_cognitive_distortions(self, text: str) -> tuple[str, ...]:
        """Cognitive distortion labels suggested by the wording."""
        lowered = normalize(text)
        return tuple(label for label, pattern in self._distortions if pattern.search(lowered))

    def _match_rule(self, lowered: str, crisis_hit: bool) -> Optional[CategoryRule]:
        for rule, patterns in self._rules:
            # Explicit self-harm language counts as violent ideation
            if rule.category == Category.VIOLENT_IDEATION and crisis_hit:
                return rule
            if all(pattern.search(lowered) for pattern in patterns):
                return rule
        return None

    def _count_anxiety_keywords(self, lowered: str) -> int:
        return sum(1 for _, pattern in self._anxiety_words if pattern.search(lowered))

    def _keyword_level(self, lowered: str) -> int:
        hits = self._count_anxiety_keywords(lowered)
        return min(BASE_LEVEL + hits * LEVEL_PER_KEYWORD, MAX_ANXIETY_LEVEL)

    def _history_is_anxious(self, recent_history: Sequence[str]) -> bool:
        recent = list(recent_history)[-HISTORY_LOOKBACK:]
        anxious = sum(1 for entry in recent if self._count_anxiety_keywords(normalize(entry)))
        return anxious >= 2

    @staticmethod
    def _rotation_index(lowered: str, size: int) -> int:
        digest = hashlib.sha256(lowered.strip().encode("utf-8")).digest()
        return digest[0] % size

    @staticmethod
    def _merge_triggers(primary: Iterable[str], detected: Iterable[str]) -> tuple[str, ...]:
        merged: list[str] = []
        for trigger in (*primary, *detected):
            if trigger not in merged:
                merged.append(trigger)
        return tuple(merged)


# Singleton
_classifier: Optional[HeuristicClassifier] = None


def get_heuristic_classifier() -> HeuristicClassifier:
    """Get singleton HeuristicClassifier."""
    global _classifier
    if _classifier is None:
        _classifier = HeuristicClassifier()
    return _classifier


def classify(text: str, recent_history: Sequence[str] = ()) -> FallbackAssessment:
    """Convenience function to classify a message."""
    return get_heuristic_classifier().classify(text, recent_history)
