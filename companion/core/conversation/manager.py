"""Owns live conversations and their pipelines."""

import logging
from typing import Optional

from companion.config import settings
from companion.core.analysis.orchestrator import AnalysisOrchestrator
from companion.safety.escalation import EscalationGate
from .composer import ResponseComposer, get_composer
from .models import Conversation, Language, Persona, Sender
from .pipeline import ConversationPipeline, SubmitReceipt, TurnListener
from .store import InMemoryMessageStore, MessageStore, PersistenceError, PersistenceWriter, SqlMessageStore

logger = logging.getLogger(__name__)


class ConversationNotFound(Exception):
    """Raised when a conversation id is neither live nor stored."""


PERSONA_LANGUAGE = {
    Persona.VANESSA: Language.EN,
    Persona.MONICA: Language.ES,
}


class ConversationManager:
    """
    Registry of one pipeline per conversation.

    Conversations are independent: each has its own pipeline and nothing
    mutable is shared between them.
    """

    def __init__(
        self,
        store: Optional[MessageStore] = None,
        orchestrator: Optional[AnalysisOrchestrator] = None,
        gate: Optional[EscalationGate] = None,
        composer: Optional[ResponseComposer] = None,
    ):
        self._store = store or InMemoryMessageStore()
        self._writer = PersistenceWriter(self._store)
        self._orchestrator = orchestrator
        self._gate = gate
        self._composer = composer or get_composer()
        self._pipelines: dict[str, ConversationPipeline] = {}
        self._listeners: list[TurnListener] = []

    @property
    def writer(self) -> PersistenceWriter:
        return self._writer

    @property
    def live_count(self) -> int:
        """Conversations with a pipeline in this process."""
        return len(self._pipelines)

    def add_listener(self, listener: TurnListener) -> None:
        """Register a turn listener on every current and future pipeline."""
        self._listeners.append(listener)
        for pipeline in self._pipelines.values():
            pipeline.add_listener(listener)

    async def create_conversation(self, persona: Optional[Persona] = None) -> Conversation:
        """
        Start a conversation with the persona's welcome message.

        Args:
            persona: Companion persona (defaults to settings.default_persona)

        Returns:
            The new Conversation
        """
        persona = persona or Persona(settings.default_persona)
        language = PERSONA_LANGUAGE[persona]
        conversation = Conversation(persona=persona, language=language)

        self._writer.conversation(conversation)
        welcome = conversation.append(Sender.ASSISTANT, self._composer.welcome(persona, language))
        self._writer.message(welcome)

        self._register(conversation)
        logger.info(f"Conversation created: {conversation.id} ({persona.value})")
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation:
        """
        Get a live conversation, reloading from the store if needed.

        Raises:
            ConversationNotFound: If the id is unknown
        """
        return (await self.get_pipeline(conversation_id)).conversation

    async def get_pipeline(self, conversation_id: str) -> ConversationPipeline:
        pipeline = self._pipelines.get(conversation_id)
        if pipeline is not None:
            return pipeline

        try:
            conversation = await self._store.get_conversation(conversation_id)
        except PersistenceError as e:
            logger.error(f"Failed to reload conversation {conversation_id}: {e}")
            conversation = None

        if conversation is None:
            raise ConversationNotFound(conversation_id)

        # Another caller may have reloaded it while we awaited the store
        if conversation_id in self._pipelines:
            return self._pipelines[conversation_id]

        logger.info(f"Conversation reloaded: {conversation_id} ({len(conversation.messages)} messages)")
        return self._register(conversation)

    async def send_message(self, conversation_id: str, text: str) -> SubmitReceipt:
        """Submit a user message to its conversation's pipeline."""
        pipeline = await self.get_pipeline(conversation_id)
        return pipeline.submit(text)

    async def resend_message(self, conversation_id: str, text: str) -> SubmitReceipt:
        """Submit text that supersedes the in-flight message."""
        pipeline = await self.get_pipeline(conversation_id)
        return pipeline.supersede(text)

    async def shutdown(self) -> None:
        """Stop every pipeline and flush pending writes."""
        for pipeline in self._pipelines.values():
            await pipeline.close()
        await self._writer.drain()

    def _register(self, conversation: Conversation) -> ConversationPipeline:
        pipeline = ConversationPipeline(
            conversation,
            orchestrator=self._orchestrator,
            gate=self._gate,
            composer=self._composer,
            writer=self._writer,
        )
        for listener in self._listeners:
            pipeline.add_listener(listener)
        self._pipelines[conversation.id] = pipeline
        return pipeline


def build_store() -> MessageStore:
    """Store selected by settings.persistence_backend."""
    if settings.persistence_backend == "sql":
        return SqlMessageStore()
    return InMemoryMessageStore()


# Singleton
_manager: Optional[ConversationManager] = None


def get_conversation_manager() -> ConversationManager:
    """Get singleton ConversationManager."""
    global _manager
    if _manager is None:
        _manager = ConversationManager(store=build_store())
    return _manager


def reset_conversation_manager() -> None:
    """Drop the singleton (tests and shutdown)."""
    global _manager
    _manager = None
