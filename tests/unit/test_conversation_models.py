"""Tests for conversation data models."""

import dataclasses

import pytest

from companion.core.analysis.types import CrisisRisk, FallbackAssessment, RemoteAssessment
from companion.core.conversation.models import (
    AssessmentAlreadyAttached,
    Conversation,
    RollingAssessmentWindow,
    Sender,
)


def assessment(level: int) -> FallbackAssessment:
    return FallbackAssessment(
        anxiety_level=level,
        triggers=(),
        coping_strategies=(),
        personalized_response="I'm listening.",
        crisis_risk=CrisisRisk.LOW if level < 7 else CrisisRisk.MODERATE,
    )


class TestConversation:
    """Test the append-only message list."""

    def test_append_assigns_sequence(self):
        conversation = Conversation()

        first = conversation.append(Sender.ASSISTANT, "Hi")
        second = conversation.append(Sender.USER, "Hello")

        assert (first.sequence, second.sequence) == (0, 1)
        assert second.conversation_id == conversation.id

    def test_messages_are_immutable(self):
        message = Conversation().append(Sender.USER, "Hello")

        with pytest.raises(dataclasses.FrozenInstanceError):
            message.text = "changed"

    def test_attach_assessment_once(self):
        conversation = Conversation()
        message = conversation.append(Sender.USER, "I feel tense")

        updated = conversation.attach_assessment(message.id, assessment(5))

        assert updated.assessment.anxiety_level == 5
        assert conversation.messages[0].assessment is not None
        with pytest.raises(AssessmentAlreadyAttached):
            conversation.attach_assessment(message.id, assessment(6))

    def test_assessment_only_on_user_messages(self):
        conversation = Conversation()
        reply = conversation.append(Sender.ASSISTANT, "Hi there")

        with pytest.raises(ValueError):
            conversation.attach_assessment(reply.id, assessment(3))

    def test_attach_unknown_message(self):
        with pytest.raises(KeyError):
            Conversation().attach_assessment("missing", assessment(3))

    def test_recent_texts(self):
        conversation = Conversation()
        for text in ["a", "b", "c", "d"]:
            conversation.append(Sender.USER, text)
        last = conversation.messages[-1]

        assert conversation.recent_texts(2) == ["c", "d"]
        assert conversation.recent_texts(2, before=last.id) == ["b", "c"]
        assert conversation.recent_texts(0) == []

    def test_to_dict(self):
        conversation = Conversation()
        message = conversation.append(Sender.USER, "hello")
        conversation.attach_assessment(message.id, assessment(3))

        data = conversation.to_dict()

        assert data["persona"] == "vanessa"
        assert data["messages"][0]["assessment"]["provenance"] == "fallback"


class TestRollingAssessmentWindow:
    """Test the derived window of recent assessments."""

    def test_keeps_last_five(self):
        window = RollingAssessmentWindow([assessment(level) for level in range(1, 9)], size=5)

        assert len(window) == 5
        assert [a.anxiety_level for a in window] == [4, 5, 6, 7, 8]

    def test_high_count(self):
        levels = [9, 8, 3, 3, 3, 3, 8]
        window = RollingAssessmentWindow([assessment(level) for level in levels], size=5)

        # 9 and the first 8 fall outside the last five
        assert window.high_count(8) == 1

    def test_from_conversation_mixes_variants(self):
        conversation = Conversation()
        for level in (8, 9):
            message = conversation.append(Sender.USER, "text")
            conversation.attach_assessment(
                message.id,
                RemoteAssessment(
                    anxiety_level=level,
                    triggers=(),
                    coping_strategies=(),
                    personalized_response="Let's slow down together.",
                    crisis_risk=CrisisRisk.MODERATE,
                ),
            )
            conversation.append(Sender.ASSISTANT, "reply")

        window = RollingAssessmentWindow.from_conversation(conversation)

        assert len(window) == 2
        assert window.high_count() == 2
