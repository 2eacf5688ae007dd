"""
Message persistence.

The in-memory conversation is authoritative for the live session; stores
receive writes in the background and only matter on reload.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from companion.core.analysis.types import (
    AnyAssessment,
    Category,
    CrisisRisk,
    FallbackAssessment,
    Provenance,
    RemoteAssessment,
)
from companion.models.database import (
    AnxietyAssessmentRecord,
    ChatMessage,
    ConversationRecord,
)
from .models import AssessmentAlreadyAttached, Conversation, Language, Message, Persona, Sender

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """A storage write or read did not complete."""


class MessageStore(Protocol):
    """Storage collaborator for conversations."""

    async def create_conversation(self, conversation: Conversation) -> None:
        ...

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...

    async def update_conversation(self, conversation_id: str, persona: Persona, language: Language) -> None:
        ...

    async def create_message(
        self,
        conversation_id: str,
        text: str,
        sender: Sender,
        *,
        message_id: Optional[str] = None,
        sequence: int = 0,
        created_at: Optional[datetime] = None,
    ) -> Message:
        ...

    async def create_assessment(self, message_id: str, assessment: AnyAssessment) -> None:
        ...


# =============================================================================
# In-memory store
# =============================================================================

class InMemoryMessageStore:
    """Process-local store, used in development and tests."""

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}
        self._message_index: dict[str, str] = {}  # message id -> conversation id

    async def create_conversation(self, conversation: Conversation) -> None:
        self._conversations[conversation.id] = Conversation(
            id=conversation.id,
            persona=conversation.persona,
            language=conversation.language,
            created_at=conversation.created_at,
        )

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        stored = self._conversations.get(conversation_id)
        if stored is None:
            return None
        return Conversation(
            id=stored.id,
            persona=stored.persona,
            language=stored.language,
            messages=sorted(stored.messages, key=lambda m: m.sequence),
            created_at=stored.created_at,
        )

    async def update_conversation(self, conversation_id: str, persona: Persona, language: Language) -> None:
        stored = self._conversations.get(conversation_id)
        if stored is None:
            raise PersistenceError(f"Unknown conversation: {conversation_id}")
        stored.persona = persona
        stored.language = language

    async def create_message(
        self,
        conversation_id: str,
        text: str,
        sender: Sender,
        *,
        message_id: Optional[str] = None,
        sequence: int = 0,
        created_at: Optional[datetime] = None,
    ) -> Message:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise PersistenceError(f"Unknown conversation: {conversation_id}")

        kwargs = {}
        if message_id:
            kwargs["id"] = message_id
        if created_at:
            kwargs["created_at"] = created_at

        message = Message(
            conversation_id=conversation_id,
            sender=sender,
            text=text,
            sequence=sequence,
            **kwargs,
        )
        conversation.messages.append(message)
        self._message_index[message.id] = conversation_id
        return message

    async def create_assessment(self, message_id: str, assessment: AnyAssessment) -> None:
        conversation_id = self._message_index.get(message_id)
        if conversation_id is None:
            raise PersistenceError(f"Unknown message: {message_id}")
        try:
            self._conversations[conversation_id].attach_assessment(message_id, assessment)
        except (AssessmentAlreadyAttached, KeyError, ValueError) as e:
            raise PersistenceError(f"Cannot attach assessment to {message_id}: {e!r}") from e


# =============================================================================
# SQL store
# =============================================================================

def _assessment_to_record(message_id: str, assessment: AnyAssessment) -> AnxietyAssessmentRecord:
    record = AnxietyAssessmentRecord(
        message_id=message_id,
        anxiety_level=assessment.anxiety_level,
        analysis_source=assessment.provenance.value,
        crisis_risk=assessment.crisis_risk.value,
        anxiety_triggers=list(assessment.triggers),
        coping_strategies=list(assessment.coping_strategies),
        cognitive_distortions=list(assessment.cognitive_distortions),
        personalized_response=assessment.personalized_response,
    )
    if isinstance(assessment, FallbackAssessment):
        record.category = assessment.category.value
        record.variant = assessment.variant
    return record


def _record_to_assessment(record: AnxietyAssessmentRecord) -> AnyAssessment:
    fields = dict(
        anxiety_level=record.anxiety_level,
        triggers=tuple(record.anxiety_triggers or ()),
        coping_strategies=tuple(record.coping_strategies or ()),
        personalized_response=record.personalized_response or "",
        crisis_risk=CrisisRisk(record.crisis_risk),
        cognitive_distortions=tuple(record.cognitive_distortions or ()),
    )
    if record.analysis_source == Provenance.REMOTE.value:
        return RemoteAssessment(**fields)
    return FallbackAssessment(
        category=Category(record.category or Category.NEUTRAL.value),
        variant=record.variant or 0,
        **fields,
    )


def _record_to_message(record: ChatMessage) -> Message:
    return Message(
        id=record.id,
        conversation_id=record.conversation_id,
        sender=Sender(record.sender),
        text=record.content,
        sequence=record.sequence,
        created_at=record.created_at,
        assessment=_record_to_assessment(record.assessment) if record.assessment else None,
    )


class SqlMessageStore:
    """
    Async SQLAlchemy store.

    Uses tables conversations, chat_messages and anxiety_assessments.
    Database errors are re-raised as PersistenceError.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        if session_factory is None:
            from companion.infra.database import async_session_factory
            session_factory = async_session_factory
        self._session_factory = session_factory

    async def create_conversation(self, conversation: Conversation) -> None:
        record = ConversationRecord(
            id=conversation.id,
            ai_companion=conversation.persona.value,
            language=conversation.language.value,
            created_at=conversation.created_at,
        )
        await self._add(record)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        query = (
            select(ConversationRecord)
            .where(ConversationRecord.id == conversation_id)
            .options(
                selectinload(ConversationRecord.messages).selectinload(ChatMessage.assessment)
            )
        )
        try:
            async with self._session_factory() as session:
                record = (await session.execute(query)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load conversation {conversation_id}: {e}") from e

        if record is None:
            return None

        messages = sorted(
            (_record_to_message(m) for m in record.messages),
            key=lambda m: m.sequence,
        )
        return Conversation(
            id=record.id,
            persona=Persona(record.ai_companion),
            language=Language(record.language),
            messages=messages,
            created_at=record.created_at,
        )

    async def update_conversation(self, conversation_id: str, persona: Persona, language: Language) -> None:
        statement = (
            update(ConversationRecord)
            .where(ConversationRecord.id == conversation_id)
            .values(ai_companion=persona.value, language=language.value)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update conversation {conversation_id}: {e}") from e

        if result.rowcount == 0:
            raise PersistenceError(f"Unknown conversation: {conversation_id}")

    async def create_message(
        self,
        conversation_id: str,
        text: str,
        sender: Sender,
        *,
        message_id: Optional[str] = None,
        sequence: int = 0,
        created_at: Optional[datetime] = None,
    ) -> Message:
        message = Message(conversation_id=conversation_id, sender=sender, text=text, sequence=sequence)
        if message_id:
            message = replace(message, id=message_id)
        if created_at:
            message = replace(message, created_at=created_at)

        await self._add(ChatMessage(
            id=message.id,
            conversation_id=conversation_id,
            sequence=sequence,
            content=text,
            sender=sender.value,
            created_at=message.created_at,
        ))
        return message

    async def create_assessment(self, message_id: str, assessment: AnyAssessment) -> None:
        await self._add(_assessment_to_record(message_id, assessment))

    async def _add(self, record) -> None:
        try:
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to write {type(record).__name__}: {e}") from e


# =============================================================================
# Background writer
# =============================================================================

class PersistenceWriter:
    """
    Fire-and-forget writes.

    Each write runs as its own task; failures are logged and never reach the
    caller. Message and update writes wait for their conversation's write
    while it is outstanding or after it failed; an assessment write waits for
    its message write and is skipped if that one failed. Persona and
    language updates for one conversation are applied in issue order.
    """

    def __init__(self, store: MessageStore):
        self._store = store
        self._tasks: set[asyncio.Task] = set()
        self._conversation_writes: dict[str, asyncio.Task] = {}
        self._conversation_updates: dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def conversation(self, conversation: Conversation) -> asyncio.Task:
        task = self._spawn(self._write_conversation(conversation))
        self._conversation_writes[conversation.id] = task
        task.add_done_callback(
            lambda t: self._forget(self._conversation_writes, conversation.id, t, keep_failed=True)
        )
        return task

    def conversation_update(self, conversation: Conversation) -> asyncio.Task:
        """Persist the conversation's current persona and language."""
        previous = self._conversation_updates.get(conversation.id)
        task = self._spawn(self._write_update(
            previous, conversation.id, conversation.persona, conversation.language
        ))
        self._conversation_updates[conversation.id] = task
        task.add_done_callback(lambda t: self._forget(self._conversation_updates, conversation.id, t))
        return task

    def message(self, message: Message) -> asyncio.Task:
        return self._spawn(self._write_message(message))

    def assessment(self, message_write: asyncio.Task, message_id: str, assessment: AnyAssessment) -> asyncio.Task:
        return self._spawn(self._write_assessment(message_write, message_id, assessment))

    async def drain(self) -> None:
        """Wait for all outstanding writes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _write_conversation(self, conversation: Conversation) -> bool:
        try:
            await self._store.create_conversation(conversation)
            return True
        except Exception as e:
            logger.error(f"Failed to persist conversation {conversation.id}: {e}")
            return False

    async def _write_message(self, message: Message) -> bool:
        conversation_write = self._conversation_writes.get(message.conversation_id)
        if conversation_write is not None and not await conversation_write:
            logger.warning(f"Skipping message {message.id} for unsaved conversation")
            return False
        try:
            await self._store.create_message(
                message.conversation_id,
                message.text,
                message.sender,
                message_id=message.id,
                sequence=message.sequence,
                created_at=message.created_at,
            )
            return True
        except Exception as e:
            logger.error(f"Failed to persist message {message.id}: {e}")
            return False

    async def _write_assessment(self, message_write: asyncio.Task, message_id: str, assessment: AnyAssessment) -> bool:
        if not await message_write:
            logger.warning(f"Skipping assessment for unsaved message {message_id}")
            return False
        try:
            await self._store.create_assessment(message_id, assessment)
            return True
        except Exception as e:
            logger.error(f"Failed to persist assessment for message {message_id}: {e}")
            return False

    async def _write_update(
        self,
        previous: Optional[asyncio.Task],
        conversation_id: str,
        persona: Persona,
        language: Language,
    ) -> bool:
        if previous is not None:
            await asyncio.wait([previous])
        conversation_write = self._conversation_writes.get(conversation_id)
        if conversation_write is not None and not await conversation_write:
            logger.warning(f"Skipping update for unsaved conversation {conversation_id}")
            return False
        try:
            await self._store.update_conversation(conversation_id, persona, language)
            return True
        except Exception as e:
            logger.error(f"Failed to update conversation {conversation_id}: {e}")
            return False

    @staticmethod
    def _forget(
        writes: dict[str, asyncio.Task],
        conversation_id: str,
        task: asyncio.Task,
        keep_failed: bool = False,
    ) -> None:
        # A failed conversation write stays so later writes can skip
        if writes.get(conversation_id) is not task:
            return
        if keep_failed and (task.cancelled() or not task.result()):
            return
        del writes[conversation_id]
