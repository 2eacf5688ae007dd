"""Tests for the per-conversation pipeline."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from companion.core.analysis.heuristic import HeuristicClassifier
from companion.core.analysis.keywords import NEUTRAL_RESPONSES, get_rule
from companion.core.analysis.orchestrator import AnalysisOrchestrator
from companion.core.analysis.types import Category, FailureKind, Provenance, RemoteResult
from companion.core.conversation.composer import ResponseComposer
from companion.core.conversation.models import Conversation, Language, Persona, Sender
from companion.core.conversation.pipeline import ConversationPipeline, PipelineState, SubmitOutcome
from companion.core.conversation.store import InMemoryMessageStore, PersistenceError, PersistenceWriter


class ScriptedOrchestrator:
    """Answers with the heuristic classifier; selected texts wait until released."""

    def __init__(self):
        self.classifier = HeuristicClassifier()
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    def hold(self, text: str) -> asyncio.Event:
        self.gates[text] = asyncio.Event()
        return self.gates[text]

    async def analyze(self, text, recent_history=()):
        self.calls.append(text)
        if text in self.gates:
            await self.gates[text].wait()
        else:
            await asyncio.sleep(0.01)
        return self.classifier.classify(text, recent_history)


class RecordingStore(InMemoryMessageStore):
    """In-memory store that remembers the language of every update."""

    def __init__(self):
        super().__init__()
        self.updates: list[Language] = []

    async def update_conversation(self, conversation_id, persona, language):
        self.updates.append(language)
        await super().update_conversation(conversation_id, persona, language)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestConversationPipeline:
    """Test ordering, admission and error containment."""

    @pytest.fixture
    def orchestrator(self):
        return ScriptedOrchestrator()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def conversation(self):
        return Conversation(persona=Persona.VANESSA, language=Language.EN)

    @pytest.fixture
    def pipeline(self, conversation, orchestrator, clock):
        return ConversationPipeline(
            conversation,
            orchestrator=orchestrator,
            debounce_seconds=1.5,
            clock=clock,
        )

    # ==================================
    # Ordering and admission
    # ==================================

    @pytest.mark.asyncio
    async def test_rapid_messages_processed_in_order(self, pipeline, orchestrator, conversation):
        """A, B, C submitted back to back are handled and stored as A, B, C."""
        receipts = [pipeline.submit(text) for text in ("A message", "B message", "C message")]

        assert [r.outcome for r in receipts] == [
            SubmitOutcome.STARTED,
            SubmitOutcome.QUEUED,
            SubmitOutcome.QUEUED,
        ]
        assert pipeline.state == PipelineState.PROCESSING

        await pipeline.wait_idle()

        assert orchestrator.calls == ["A message", "B message", "C message"]
        user_texts = [m.text for m in conversation.messages if m.sender == Sender.USER]
        assert user_texts == ["A message", "B message", "C message"]
        senders = [m.sender for m in conversation.messages]
        assert senders == [Sender.USER, Sender.ASSISTANT] * 3
        sequences = [m.sequence for m in conversation.messages]
        assert sequences == sorted(sequences)
        assert pipeline.state == PipelineState.IDLE

    @pytest.mark.asyncio
    async def test_receipts_resolve_to_their_own_turn(self, pipeline):
        first = pipeline.submit("I feel anxious")
        second = pipeline.submit("I have insomnia")

        first_turn = await first.wait()
        second_turn = await second.wait()

        assert first_turn.user_message.text == "I feel anxious"
        assert second_turn.user_message.text == "I have insomnia"
        assert second_turn.assessment.category == Category.SLEEP

    @pytest.mark.asyncio
    async def test_message_history_excludes_current(self, conversation, clock):
        orchestrator = MagicMock()
        orchestrator.analyze = AsyncMock(side_effect=lambda text, history: HeuristicClassifier().classify(text, history))
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, clock=clock)

        await pipeline.submit("first").wait()
        await pipeline.submit("second").wait()

        history = orchestrator.analyze.call_args_list[1].args[1]
        assert history[0] == "first"
        assert "second" not in history

    @pytest.mark.asyncio
    async def test_blank_text_rejected(self, pipeline):
        with pytest.raises(ValueError):
            pipeline.submit("   ")

    # ==================================
    # Duplicate suppression
    # ==================================

    @pytest.mark.asyncio
    async def test_identical_text_within_window_appended_once(self, pipeline, conversation, clock):
        first = pipeline.submit("I can't sleep")
        clock.now += 0.5
        second = pipeline.submit("I can't sleep")

        assert first.outcome == SubmitOutcome.STARTED
        assert second.outcome == SubmitOutcome.DUPLICATE
        assert second.accepted is False
        assert await second.wait() is None

        await pipeline.wait_idle()

        matching = [m for m in conversation.messages if m.text == "I can't sleep"]
        assert len(matching) == 1

    @pytest.mark.asyncio
    async def test_identical_text_after_window_accepted(self, pipeline, conversation, clock):
        await pipeline.submit("still here").wait()
        clock.now += 5

        receipt = pipeline.submit("still here")
        await pipeline.wait_idle()

        assert receipt.outcome == SubmitOutcome.STARTED
        assert len([m for m in conversation.messages if m.text == "still here"]) == 2

    @pytest.mark.asyncio
    async def test_in_flight_text_dropped_even_after_window(self, pipeline, orchestrator, clock):
        release = orchestrator.hold("wait for me")
        pipeline.submit("wait for me")
        await asyncio.sleep(0)

        clock.now += 10
        duplicate = pipeline.submit("wait for me")

        assert duplicate.outcome == SubmitOutcome.DUPLICATE
        release.set()
        await pipeline.wait_idle()

    @pytest.mark.asyncio
    async def test_different_text_not_suppressed(self, pipeline, conversation):
        pipeline.submit("hello")
        receipt = pipeline.submit("hello there")
        await pipeline.wait_idle()

        assert receipt.outcome == SubmitOutcome.QUEUED
        assert len([m for m in conversation.messages if m.sender == Sender.USER]) == 2

    # ==================================
    # Supersession
    # ==================================

    @pytest.mark.asyncio
    async def test_superseded_result_is_discarded(self, pipeline, orchestrator, conversation):
        """An edit/resend drops the in-flight analysis when it arrives."""
        release = orchestrator.hold("I feel anxous")
        original = pipeline.submit("I feel anxous")
        await asyncio.sleep(0)

        edited = pipeline.supersede("I feel anxious")
        assert edited.outcome == SubmitOutcome.QUEUED

        release.set()
        original_turn = await original.wait()
        edited_turn = await edited.wait()

        assert original_turn.superseded is True
        assert original_turn.reply is None
        assert conversation.messages[0].assessment is None
        assert edited_turn.superseded is False
        assert edited_turn.assessment.category == Category.ANXIETY
        assert [m.text for m in conversation.messages][:2] == ["I feel anxous", "I feel anxious"]
        assert len(conversation.messages) == 3

    @pytest.mark.asyncio
    async def test_supersede_runs_before_backlog(self, pipeline, orchestrator):
        release = orchestrator.hold("first")
        pipeline.submit("first")
        await asyncio.sleep(0)
        pipeline.submit("queued")
        pipeline.supersede("replacement")

        release.set()
        await pipeline.wait_idle()

        assert orchestrator.calls == ["first", "replacement", "queued"]

    # ==================================
    # Failure containment
    # ==================================

    @pytest.mark.asyncio
    async def test_always_failing_remote(self, conversation, clock):
        """A dead remote yields fallback assessments and never raises."""
        remote = MagicMock()
        remote.call = AsyncMock(return_value=RemoteResult.fail(FailureKind.UNAVAILABLE, "down"))
        orchestrator = AnalysisOrchestrator(remote_client=remote, classifier=HeuristicClassifier())
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, clock=clock)

        receipts = [pipeline.submit(text) for text in ("hello", "I feel anxious", "hearing voices")]
        turns = [await r.wait() for r in receipts]

        assert all(t.assessment.provenance == Provenance.FALLBACK for t in turns)
        assert all(t.reply is not None and not t.failed for t in turns)

    @pytest.mark.asyncio
    async def test_orchestrator_exception_gives_generic_reply(self, conversation, clock):
        orchestrator = MagicMock()
        orchestrator.analyze = AsyncMock(side_effect=RuntimeError("boom"))
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, clock=clock)

        turn = await pipeline.submit("hello").wait()

        assert turn.failed is True
        assert turn.reply.text == ResponseComposer().generic_reply(Language.EN, Persona.VANESSA)
        assert pipeline.state == PipelineState.IDLE

    @pytest.mark.asyncio
    async def test_composer_exception_gives_generic_reply(self, conversation, orchestrator, clock):
        composer = MagicMock()
        composer.compose.side_effect = RuntimeError("template missing")
        composer.generic_reply.return_value = "I'm still here with you."
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, composer=composer, clock=clock)

        turn = await pipeline.submit("Hola, estoy muy cansada").wait()

        assert turn.failed is True
        assert turn.reply.text == "I'm still here with you."
        composer.generic_reply.assert_called_once_with(Language.ES, Persona.VANESSA)

    @pytest.mark.asyncio
    async def test_reply_failure_keeps_escalation(self, conversation, orchestrator, clock):
        """Only the reply is replaced; the crisis signal and assessment survive."""
        composer = MagicMock()
        composer.compose.side_effect = RuntimeError("template missing")
        composer.generic_reply.return_value = "I'm still here with you."
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, composer=composer, clock=clock)

        turn = await pipeline.submit("I want to kill myself").wait()

        assert turn.failed is True
        assert turn.escalate is True
        assert turn.escalation_reason == "crisis_keyword"
        assert turn.assessment is not None
        assert turn.reply.text == "I'm still here with you."

    @pytest.mark.asyncio
    async def test_analysis_failure_still_checks_crisis_language(self, conversation, clock):
        orchestrator = MagicMock()
        orchestrator.analyze = AsyncMock(side_effect=RuntimeError("boom"))
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, clock=clock)

        crisis = await pipeline.submit("I want to kill myself").wait()
        ordinary = await pipeline.submit("hello").wait()

        assert crisis.failed is True
        assert crisis.escalate is True
        assert crisis.assessment is None
        assert ordinary.escalate is False

    @pytest.mark.asyncio
    async def test_pipeline_recovers_after_failure(self, conversation, clock):
        classifier = HeuristicClassifier()
        orchestrator = MagicMock()
        orchestrator.analyze = AsyncMock(side_effect=[RuntimeError("boom"), classifier.classify("I feel anxious")])
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, clock=clock)

        failed = pipeline.submit("hello")
        ok = pipeline.submit("I feel anxious")

        assert (await failed.wait()).failed is True
        assert (await ok.wait()).failed is False

    # ==================================
    # Escalation
    # ==================================

    @pytest.mark.asyncio
    async def test_single_panic_does_not_escalate(self, pipeline):
        turn = await pipeline.submit("I'm having a panic attack").wait()

        assert turn.assessment.anxiety_level == 8
        assert turn.escalate is False

    @pytest.mark.asyncio
    async def test_repeated_high_readings_escalate(self, pipeline):
        first = await pipeline.submit("I'm having a panic attack").wait()
        second = await pipeline.submit("Another panic attack, my heart is racing").wait()

        assert first.escalate is False
        assert second.escalate is True
        assert second.escalation_reason == "recent_pattern"

    @pytest.mark.asyncio
    async def test_crisis_keyword_escalates(self, pipeline):
        turn = await pipeline.submit("I don't want to live anymore").wait()

        assert turn.escalate is True
        assert turn.escalation_reason == "crisis_keyword"

    # ==================================
    # Language and persona
    # ==================================

    @pytest.mark.asyncio
    async def test_language_follows_each_message(self, pipeline, conversation):
        spanish = await pipeline.submit("Hola, estoy muy nervioso").wait()
        assert spanish.language == Language.ES
        assert spanish.reply.text in NEUTRAL_RESPONSES["es"]
        assert conversation.language == Language.ES

        english = await pipeline.submit("I feel anxious").wait()
        assert english.language == Language.EN
        assert english.reply.text == get_rule(Category.ANXIETY).response["en"]
        assert conversation.language == Language.EN

    @pytest.mark.asyncio
    async def test_spanish_request_switches_to_monica(self, pipeline, conversation, orchestrator):
        turn = await pipeline.submit("Can we speak in Spanish?").wait()

        assert conversation.persona == Persona.MONICA
        assert conversation.language == Language.ES
        assert turn.assessment is None
        assert turn.reply.text == ResponseComposer().welcome(Persona.MONICA, Language.ES)
        assert orchestrator.calls == []

    # ==================================
    # Persistence
    # ==================================

    @pytest.mark.asyncio
    async def test_persistence_failure_is_swallowed(self, conversation, orchestrator, clock):
        store = MagicMock()
        store.create_message = AsyncMock(side_effect=PersistenceError("db down"))
        store.create_assessment = AsyncMock()
        writer = PersistenceWriter(store)
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, writer=writer, clock=clock)

        turn = await pipeline.submit("I feel anxious").wait()
        await writer.drain()

        assert turn.reply is not None
        assert len(conversation.messages) == 2
        assert store.create_message.await_count == 2
        store.create_assessment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_messages_persisted_in_order(self, conversation, orchestrator, clock):
        store = InMemoryMessageStore()
        writer = PersistenceWriter(store)
        writer.conversation(conversation)
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, writer=writer, clock=clock)

        pipeline.submit("I feel anxious")
        pipeline.submit("I have insomnia")
        await pipeline.wait_idle()
        await writer.drain()

        reloaded = await store.get_conversation(conversation.id)
        assert [m.id for m in reloaded.messages] == [m.id for m in conversation.messages]
        assert reloaded.messages[0].assessment == conversation.messages[0].assessment
        assert reloaded.messages[1].assessment is None

    @pytest.mark.asyncio
    async def test_persona_switch_is_persisted(self, conversation, orchestrator, clock):
        store = InMemoryMessageStore()
        writer = PersistenceWriter(store)
        writer.conversation(conversation)
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, writer=writer, clock=clock)

        await pipeline.submit("can we talk in spanish please").wait()
        await writer.drain()

        reloaded = await store.get_conversation(conversation.id)
        assert reloaded.persona == Persona.MONICA
        assert reloaded.language == Language.ES

    @pytest.mark.asyncio
    async def test_language_changes_persisted_in_order(self, conversation, orchestrator, clock):
        store = RecordingStore()
        writer = PersistenceWriter(store)
        writer.conversation(conversation)
        pipeline = ConversationPipeline(conversation, orchestrator=orchestrator, writer=writer, clock=clock)

        pipeline.submit("Hola, estoy muy nervioso")
        pipeline.submit("I feel anxious")
        await pipeline.wait_idle()
        await writer.drain()

        reloaded = await store.get_conversation(conversation.id)
        assert reloaded.persona == Persona.VANESSA
        assert reloaded.language == Language.EN
        assert store.updates == [Language.ES, Language.EN]

    # ==================================
    # Listeners and lifecycle
    # ==================================

    @pytest.mark.asyncio
    async def test_listeners_receive_turns(self, pipeline):
        seen = []

        def broken(result):
            raise RuntimeError("listener bug")

        pipeline.add_listener(broken)
        pipeline.add_listener(seen.append)

        await pipeline.submit("I feel anxious").wait()

        assert len(seen) == 1
        assert seen[0].user_message.text == "I feel anxious"

    @pytest.mark.asyncio
    async def test_conversations_are_independent(self, orchestrator, clock):
        slow = ConversationPipeline(Conversation(), orchestrator=orchestrator, clock=clock)
        fast = ConversationPipeline(Conversation(), orchestrator=orchestrator, clock=clock)
        release = orchestrator.hold("slow message")

        slow.submit("slow message")
        turn = await fast.submit("fast message").wait()

        assert turn.reply is not None
        assert slow.state == PipelineState.PROCESSING

        release.set()
        await slow.wait_idle()

    @pytest.mark.asyncio
    async def test_close_cancels_queued_turns(self, pipeline, orchestrator):
        orchestrator.hold("blocked")
        running = pipeline.submit("blocked")
        queued = pipeline.submit("waiting")
        await asyncio.sleep(0)

        await pipeline.close()

        assert running.result.cancelled()
        assert queued.result.cancelled()
        assert pipeline.state == PipelineState.IDLE
