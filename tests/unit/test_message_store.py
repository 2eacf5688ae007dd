"""Tests for message stores and the background writer."""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.ext.asyncio import create_async_engine

from companion.core.analysis.heuristic import HeuristicClassifier
from companion.core.analysis.types import CrisisRisk, Provenance, RemoteAssessment
from companion.core.conversation.models import Conversation, Language, Persona, Sender
from companion.core.conversation.store import (
    InMemoryMessageStore,
    PersistenceError,
    PersistenceWriter,
    SqlMessageStore,
)
from companion.infra.database import build_session_factory, check_db_health, init_db


def remote_assessment() -> RemoteAssessment:
    return RemoteAssessment(
        anxiety_level=7,
        triggers=("work", "deadlines"),
        coping_strategies=("Box breathing", "List the next step"),
        personalized_response="Deadlines stack up quickly. Let's pick the one due first.",
        crisis_risk=CrisisRisk.MODERATE,
        cognitive_distortions=("Catastrophizing",),
    )


class TestInMemoryMessageStore:
    """Test the process-local store."""

    @pytest.fixture
    def store(self):
        return InMemoryMessageStore()

    @pytest.mark.asyncio
    async def test_reload_orders_by_sequence(self, store):
        conversation = Conversation(persona=Persona.MONICA, language=Language.ES)
        await store.create_conversation(conversation)

        # Writes can land out of order
        await store.create_message(conversation.id, "second", Sender.ASSISTANT, sequence=1)
        await store.create_message(conversation.id, "third", Sender.USER, sequence=2)
        await store.create_message(conversation.id, "first", Sender.USER, sequence=0)

        reloaded = await store.get_conversation(conversation.id)

        assert [m.text for m in reloaded.messages] == ["first", "second", "third"]
        assert reloaded.persona == Persona.MONICA

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, store):
        assert await store.get_conversation("missing") is None
        with pytest.raises(PersistenceError):
            await store.create_message("missing", "hello", Sender.USER)

    @pytest.mark.asyncio
    async def test_update_conversation(self, store):
        conversation = Conversation()
        await store.create_conversation(conversation)

        await store.update_conversation(conversation.id, Persona.MONICA, Language.ES)

        reloaded = await store.get_conversation(conversation.id)
        assert (reloaded.persona, reloaded.language) == (Persona.MONICA, Language.ES)
        with pytest.raises(PersistenceError):
            await store.update_conversation("missing", Persona.MONICA, Language.ES)

    @pytest.mark.asyncio
    async def test_assessment_attached_once(self, store):
        conversation = Conversation()
        await store.create_conversation(conversation)
        message = await store.create_message(conversation.id, "hi", Sender.USER)

        await store.create_assessment(message.id, remote_assessment())

        with pytest.raises(PersistenceError):
            await store.create_assessment(message.id, remote_assessment())
        with pytest.raises(PersistenceError):
            await store.create_assessment("missing", remote_assessment())


class TestSqlMessageStore:
    """Test the SQLAlchemy store against SQLite."""

    @pytest_asyncio.fixture
    async def store(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'companion.db'}")
        await init_db(bind=engine)
        yield SqlMessageStore(session_factory=build_session_factory(engine))
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        conversation = Conversation(persona=Persona.VANESSA, language=Language.EN)
        await store.create_conversation(conversation)

        await store.create_message(conversation.id, "Hi, I'm Vanessa.", Sender.ASSISTANT, sequence=0)
        user = await store.create_message(conversation.id, "work is a lot", Sender.USER, sequence=1)
        await store.create_assessment(user.id, remote_assessment())

        reloaded = await store.get_conversation(conversation.id)

        assert reloaded.id == conversation.id
        assert [m.sender for m in reloaded.messages] == [Sender.ASSISTANT, Sender.USER]
        assert reloaded.messages[0].assessment is None
        assert reloaded.messages[1].id == user.id
        assert reloaded.messages[1].assessment == remote_assessment()

    @pytest.mark.asyncio
    async def test_fallback_variant_survives_reload(self, store):
        conversation = Conversation()
        await store.create_conversation(conversation)
        assessment = HeuristicClassifier().classify("hello")
        message = await store.create_message(conversation.id, "hello", Sender.USER)

        await store.create_assessment(message.id, assessment)
        reloaded = await store.get_conversation(conversation.id)

        restored = reloaded.messages[0].assessment
        assert restored == assessment
        assert restored.provenance == Provenance.FALLBACK

    @pytest.mark.asyncio
    async def test_reload_orders_by_sequence(self, store):
        conversation = Conversation()
        await store.create_conversation(conversation)

        for sequence in (2, 0, 1):
            await store.create_message(conversation.id, f"m{sequence}", Sender.USER, sequence=sequence)

        reloaded = await store.get_conversation(conversation.id)

        assert [m.text for m in reloaded.messages] == ["m0", "m1", "m2"]

    @pytest.mark.asyncio
    async def test_missing_conversation(self, store):
        assert await store.get_conversation("missing") is None

    @pytest.mark.asyncio
    async def test_health_check(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'health.db'}")
        try:
            assert await check_db_health(engine) is True
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_update_conversation(self, store):
        conversation = Conversation(persona=Persona.VANESSA, language=Language.EN)
        await store.create_conversation(conversation)

        await store.update_conversation(conversation.id, Persona.MONICA, Language.ES)
        reloaded = await store.get_conversation(conversation.id)

        assert reloaded.persona == Persona.MONICA
        assert reloaded.language == Language.ES
        with pytest.raises(PersistenceError):
            await store.update_conversation("missing", Persona.MONICA, Language.ES)

    @pytest.mark.asyncio
    async def test_second_assessment_rejected(self, store):
        conversation = Conversation()
        await store.create_conversation(conversation)
        message = await store.create_message(conversation.id, "hi", Sender.USER)
        await store.create_assessment(message.id, remote_assessment())

        with pytest.raises(PersistenceError):
            await store.create_assessment(message.id, remote_assessment())


class TestPersistenceWriter:
    """Test background write ordering and error isolation."""

    @pytest.mark.asyncio
    async def test_writes_complete_in_dependency_order(self):
        store = InMemoryMessageStore()
        writer = PersistenceWriter(store)
        conversation = Conversation()
        message = conversation.append(Sender.USER, "I feel anxious")
        assessment = HeuristicClassifier().classify(message.text)

        writer.conversation(conversation)
        message_write = writer.message(message)
        writer.assessment(message_write, message.id, assessment)
        await writer.drain()

        reloaded = await store.get_conversation(conversation.id)
        assert reloaded.messages[0].assessment == assessment
        assert writer.pending == 0

    @pytest.mark.asyncio
    async def test_failed_message_skips_assessment(self):
        store = MagicMock()
        store.create_message = AsyncMock(side_effect=PersistenceError("db down"))
        store.create_assessment = AsyncMock()
        writer = PersistenceWriter(store)
        message = Conversation().append(Sender.USER, "hello")

        message_write = writer.message(message)
        writer.assessment(message_write, message.id, HeuristicClassifier().classify("hello"))
        await writer.drain()

        assert message_write.result() is False
        store.create_assessment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_conversation_skips_messages(self):
        store = MagicMock()
        store.create_conversation = AsyncMock(side_effect=RuntimeError("connection refused"))
        store.create_message = AsyncMock()
        writer = PersistenceWriter(store)
        conversation = Conversation()

        writer.conversation(conversation)
        writer.message(conversation.append(Sender.ASSISTANT, "Welcome"))
        await writer.drain()

        store.create_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_saved_conversation_is_forgotten(self):
        """Only failed conversation writes are remembered."""
        store = InMemoryMessageStore()
        writer = PersistenceWriter(store)
        saved = Conversation()

        writer.conversation(saved)
        await writer.drain()

        assert writer._conversation_writes == {}

        failing = MagicMock()
        failing.create_conversation = AsyncMock(side_effect=PersistenceError("db down"))
        writer = PersistenceWriter(failing)
        unsaved = Conversation()

        writer.conversation(unsaved)
        await writer.drain()

        assert list(writer._conversation_writes) == [unsaved.id]

    @pytest.mark.asyncio
    async def test_update_waits_for_conversation_write(self):
        store = InMemoryMessageStore()
        writer = PersistenceWriter(store)
        conversation = Conversation()

        writer.conversation(conversation)
        conversation.persona = Persona.MONICA
        conversation.language = Language.ES
        update = writer.conversation_update(conversation)
        await writer.drain()

        assert update.result() is True
        assert writer._conversation_updates == {}
        reloaded = await store.get_conversation(conversation.id)
        assert reloaded.persona == Persona.MONICA
