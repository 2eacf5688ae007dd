"""
Conversation data models.

Messages are append-only and immutable apart from the one-time attach of
an assessment to a user message.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from companion.core.analysis.types import AnyAssessment


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Sender(str, Enum):
    """Who produced a message."""

    USER = "user"
    ASSISTANT = "assistant"


class Persona(str, Enum):
    """Companion persona assigned to a conversation."""

    VANESSA = "vanessa"
    MONICA = "monica"


class Language(str, Enum):
    """Supported reply languages."""

    EN = "en"
    ES = "es"


class AssessmentAlreadyAttached(Exception):
    """Raised when a second assessment is attached to a message."""


@dataclass(frozen=True)
class Message:
    """One message in a conversation."""

    conversation_id: str
    sender: Sender
    text: str
    sequence: int
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    assessment: Optional[AnyAssessment] = None

    def with_assessment(self, assessment: AnyAssessment) -> "Message":
        """
        Return this message with an assessment attached.

        Raises:
            AssessmentAlreadyAttached: If one is already attached
            ValueError: If this is not a user message
        """
        if self.sender != Sender.USER:
            raise ValueError("Assessments attach to user messages only")
        if self.assessment is not None:
            raise AssessmentAlreadyAttached(self.id)
        return Message(
            conversation_id=self.conversation_id,
            sender=self.sender,
            text=self.text,
            sequence=self.sequence,
            id=self.id,
            created_at=self.created_at,
            assessment=assessment,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender": self.sender.value,
            "text": self.text,
            "sequence": self.sequence,
            "created_at": self.created_at.isoformat(),
            "assessment": self.assessment.to_dict() if self.assessment else None,
        }


@dataclass
class Conversation:
    """
    A conversation with one companion persona.

    The message list is append-only; list order is temporal order and is
    mirrored by each message's sequence number.
    """

    id: str = field(default_factory=lambda: str(uuid4()))
    persona: Persona = Persona.VANESSA
    language: Language = Language.EN
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def next_sequence(self) -> int:
        return self.messages[-1].sequence + 1 if self.messages else 0

    def append(self, sender: Sender, text: str) -> Message:
        """Create a message at the end of the conversation."""
        message = Message(
            conversation_id=self.id,
            sender=sender,
            text=text,
            sequence=self.next_sequence,
        )
        self.messages.append(message)
        return message

    def attach_assessment(self, message_id: str, assessment: AnyAssessment) -> Message:
        """Attach an assessment to a user message in place."""
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                updated = message.with_assessment(assessment)
                self.messages[index] = updated
                return updated
        raise KeyError(message_id)

    def recent_texts(self, limit: int, before: Optional[str] = None) -> list[str]:
        """
        Texts of the most recent messages, oldest first.

        Args:
            limit: Maximum number of texts
            before: Only consider messages preceding this message id
        """
        messages = self.messages
        if before is not None:
            for index, message in enumerate(messages):
                if message.id == before:
                    messages = messages[:index]
                    break
        return [m.text for m in messages[-limit:]] if limit > 0 else []

    def assessments(self) -> list[AnyAssessment]:
        """Attached assessments in temporal order."""
        return [m.assessment for m in self.messages if m.assessment is not None]

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "persona": self.persona.value,
            "language": self.language.value,
            "created_at": self.created_at.isoformat(),
            "messages": [m.to_dict() for m in self.messages],
        }


class RollingAssessmentWindow:
    """
    The most recent assessments of a conversation.

    Derived from the message list on demand; never persisted.
    """

    def __init__(self, assessments: list[AnyAssessment], size: int = 5):
        self._items = assessments[-size:] if size > 0 else []
        self.size = size

    @classmethod
    def from_conversation(cls, conversation: Conversation, size: int = 5) -> "RollingAssessmentWindow":
        return cls(conversation.assessments(), size=size)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def high_count(self, high_level: int = 8) -> int:
        """Number of assessments at or above high_level."""
        return sum(1 for a in self._items if a.anxiety_level >= high_level)
