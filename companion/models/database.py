"""
Database Models

SQLAlchemy ORM models for conversations, chat messages and anxiety
assessments.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON, DateTime, ForeignKey, Index, Integer, String, Text, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds a created_at timestamp column."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class ConversationRecord(Base, TimestampMixin):
    """
    Conversation model.

    One thread between a person and a companion persona. Never deleted by
    the core; archival is handled elsewhere.
    """

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ai_companion: Mapped[str] = mapped_column(String(20), default="vanessa", nullable=False)
    language: Mapped[str] = mapped_column(String(5), default="en", nullable=False)

    # Relationships
    messages: Mapped[List["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="conversation",
        order_by="ChatMessage.sequence",
    )

    def __repr__(self) -> str:
        return f"<ConversationRecord(id={self.id}, companion='{self.ai_companion}')>"


class ChatMessage(Base, TimestampMixin):
    """
    Chat message model.

    The sequence column is assigned locally when the message is created,
    so reload order is temporal even when writes land out of order.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("idx_message_conversation_sequence", "conversation_id", "sequence"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sender: Mapped[str] = mapped_column(String(20), nullable=False)

    # Relationships
    conversation: Mapped["ConversationRecord"] = relationship(
        "ConversationRecord",
        back_populates="messages"
    )
    assessment: Mapped[Optional["AnxietyAssessmentRecord"]] = relationship(
        "AnxietyAssessmentRecord",
        back_populates="message",
        uselist=False
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(id={self.id}, conversation_id={self.conversation_id}, "
            f"sequence={self.sequence}, sender='{self.sender}')>"
        )


class AnxietyAssessmentRecord(Base, TimestampMixin):
    """
    Anxiety assessment model.

    At most one per user message. analysis_source records whether the
    remote model or the heuristic classifier produced it.
    """

    __tablename__ = "anxiety_assessments"
    __table_args__ = (
        Index("idx_assessment_message", "message_id", unique=True),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("chat_messages.id", ondelete="CASCADE"),
        nullable=False
    )
    anxiety_level: Mapped[int] = mapped_column(Integer, nullable=False)
    analysis_source: Mapped[str] = mapped_column(String(20), nullable=False)
    crisis_risk: Mapped[str] = mapped_column(String(20), nullable=False)
    anxiety_triggers: Mapped[list] = mapped_column(JSON, default=list)
    coping_strategies: Mapped[list] = mapped_column(JSON, default=list)
    cognitive_distortions: Mapped[list] = mapped_column(JSON, default=list)
    personalized_response: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    variant: Mapped[int] = mapped_column(Integer, default=0)

    # Relationships
    message: Mapped["ChatMessage"] = relationship("ChatMessage", back_populates="assessment")

    def __repr__(self) -> str:
        return (
            f"<AnxietyAssessmentRecord(message_id={self.message_id}, "
            f"level={self.anxiety_level}, source='{self.analysis_source}')>"
        )
