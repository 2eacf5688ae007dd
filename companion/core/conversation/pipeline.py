"""
Conversation pipeline.

Serializes message handling for one conversation. A single drain task owns
the Idle -> Processing -> Idle cycle; submissions made while processing wait
in a FIFO backlog. The backlog is the only admission state.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from companion.config import settings
from companion.core.analysis.orchestrator import AnalysisOrchestrator, get_orchestrator
from companion.core.analysis.types import AnyAssessment
from companion.safety.escalation import EscalationDecision, EscalationGate
from .composer import ResponseComposer, get_composer
from .language import detect_language, wants_spanish_companion
from .models import Conversation, Language, Message, Persona, RollingAssessmentWindow, Sender
from .store import PersistenceWriter

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Per-conversation processing state."""

    IDLE = "idle"
    PROCESSING = "processing"


class SubmitOutcome(str, Enum):
    """Admission decision for a submitted message."""

    STARTED = "started"      # pipeline was idle, processing began
    QUEUED = "queued"        # added to the backlog
    DUPLICATE = "duplicate"  # dropped


@dataclass
class TurnResult:
    """Everything one processed message produced."""

    user_message: Message
    reply: Optional[Message] = None
    assessment: Optional[AnyAssessment] = None
    language: Language = Language.EN
    escalate: bool = False
    escalation_reason: Optional[str] = None
    superseded: bool = False
    failed: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "user_message": self.user_message.to_dict(),
            "reply": self.reply.to_dict() if self.reply else None,
            "assessment": self.assessment.to_dict() if self.assessment else None,
            "provenance": self.assessment.provenance.value if self.assessment else None,
            "language": self.language.value,
            "escalate": self.escalate,
            "escalation_reason": self.escalation_reason,
            "superseded": self.superseded,
            "failed": self.failed,
        }


@dataclass
class SubmitReceipt:
    """Returned immediately by submit(); await wait() for the turn."""

    outcome: SubmitOutcome
    token: Optional[int] = None
    result: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def accepted(self) -> bool:
        return self.outcome != SubmitOutcome.DUPLICATE

    async def wait(self) -> Optional[TurnResult]:
        """Wait for the turn; None for dropped duplicates."""
        if self.result is None:
            return None
        return await self.result


@dataclass
class _Pending:
    text: str
    token: int
    future: asyncio.Future


TurnListener = Callable[[TurnResult], None]


class ConversationPipeline:
    """
    Message pipeline for a single conversation.

    Per message:
    1. Append the user message (persisted in the background)
    2. Analyze with remote-then-fallback orchestration
    3. Drop the result if a newer request superseded it
    4. Attach the assessment and evaluate the escalation gate
    5. Compose and append the reply in the message's language

    Any unexpected failure in steps 2-5 is replaced by the persona's
    generic supportive reply. submit() never raises for processing errors.
    """

    def __init__(
        self,
        conversation: Conversation,
        orchestrator: Optional[AnalysisOrchestrator] = None,
        gate: Optional[EscalationGate] = None,
        composer: Optional[ResponseComposer] = None,
        writer: Optional[PersistenceWriter] = None,
        debounce_seconds: Optional[float] = None,
        history_window: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.conversation = conversation
        self._orchestrator = orchestrator or get_orchestrator()
        self._gate = gate or EscalationGate()
        self._composer = composer or get_composer()
        self._writer = writer
        self._debounce = (
            debounce_seconds if debounce_seconds is not None else settings.duplicate_debounce_seconds
        )
        self._history_window = history_window or settings.history_window
        self._clock = clock

        self._state = PipelineState.IDLE
        self._backlog: deque[_Pending] = deque()
        self._in_flight: Optional[_Pending] = None
        self._last_submission: Optional[tuple[str, float]] = None
        self._tokens = itertools.count(1)
        self._active_token = 0
        self._drain_task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._listeners: list[TurnListener] = []

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def backlog_size(self) -> int:
        return len(self._backlog)

    def add_listener(self, listener: TurnListener) -> None:
        """Register a callback that receives every TurnResult."""
        self._listeners.append(listener)

    # =========================================================================
    # Admission
    # =========================================================================

    def submit(self, text: str) -> SubmitReceipt:
        """
        Admit a message.

        Returns immediately. Identical text that is in flight, or that was
        the immediately preceding submission inside the debounce window,
        is dropped.

        Raises:
            ValueError: If the text is blank
        """
        if not text or not text.strip():
            raise ValueError("Message text is empty")

        now = self._clock()
        if self._is_duplicate(text, now):
            logger.info(f"Duplicate dropped for {self.conversation.id}: {text[:50]}...")
            return SubmitReceipt(outcome=SubmitOutcome.DUPLICATE)

        self._last_submission = (text, now)
        pending = self._new_pending(text)
        self._backlog.append(pending)
        return self._admit(pending)

    def supersede(self, text: str) -> SubmitReceipt:
        """
        Edit/resend: process text next and discard the in-flight result.

        The in-flight analysis keeps running, but its result is dropped on
        arrival because its request token is no longer the active one.
        """
        if not text or not text.strip():
            raise ValueError("Message text is empty")

        self._last_submission = (text, self._clock())
        pending = self._new_pending(text)
        self._active_token = pending.token
        self._backlog.appendleft(pending)
        logger.info(f"Superseding request in {self.conversation.id} with token {pending.token}")
        return self._admit(pending)

    def _is_duplicate(self, text: str, now: float) -> bool:
        if self._in_flight is not None and self._in_flight.text == text:
            return True
        if self._last_submission is not None:
            last_text, last_at = self._last_submission
            if last_text == text and now - last_at < self._debounce:
                return True
        return False

    def _new_pending(self, text: str) -> _Pending:
        future = asyncio.get_running_loop().create_future()
        return _Pending(text=text, token=next(self._tokens), future=future)

    def _admit(self, pending: _Pending) -> SubmitReceipt:
        if self._state == PipelineState.PROCESSING:
            outcome = SubmitOutcome.QUEUED
        else:
            outcome = SubmitOutcome.STARTED
            self._state = PipelineState.PROCESSING
            self._idle.clear()
            self._drain_task = asyncio.create_task(self._drain())
        return SubmitReceipt(outcome=outcome, token=pending.token, result=pending.future)

    # =========================================================================
    # Drain loop
    # =========================================================================

    async def wait_idle(self) -> None:
        """Wait until the backlog is empty and nothing is in flight."""
        await self._idle.wait()

    async def close(self) -> None:
        """Stop processing and cancel queued turns."""
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        while self._backlog:
            self._backlog.popleft().future.cancel()

    async def _drain(self) -> None:
        try:
            while self._backlog:
                pending = self._backlog.popleft()
                self._in_flight = pending
                self._active_token = pending.token

                result = await self._run_turn(pending)

                if not pending.future.done():
                    pending.future.set_result(result)
                self._notify(result)
                self._in_flight = None
        finally:
            if self._in_flight is not None:
                self._in_flight.future.cancel()
                self._in_flight = None
            self._state = PipelineState.IDLE
            self._idle.set()

    async def _run_turn(self, pending: _Pending) -> TurnResult:
        conversation = self.conversation
        user_message = conversation.append(Sender.USER, pending.text)
        message_write = self._persist(user_message)
        language = detect_language(pending.text)
        assessment: Optional[AnyAssessment] = None
        decision: Optional[EscalationDecision] = None

        try:
            if wants_spanish_companion(pending.text) and conversation.persona != Persona.MONICA:
                return self._switch_to_spanish(user_message)

            history = conversation.recent_texts(self._history_window, before=user_message.id)
            assessment = await self._orchestrator.analyze(pending.text, history)

            if pending.token != self._active_token:
                logger.info(
                    f"Discarding superseded analysis in {conversation.id} (token {pending.token})"
                )
                return TurnResult(user_message=user_message, language=language, superseded=True)

            user_message = conversation.attach_assessment(user_message.id, assessment)
            if message_write is not None:
                self._writer.assessment(message_write, user_message.id, assessment)

            window = RollingAssessmentWindow.from_conversation(
                conversation, settings.escalation_window_size
            )
            decision = self._gate.evaluate(
                pending.text,
                assessment,
                window.high_count(settings.escalation_high_level),
            )
            if decision.escalate:
                logger.warning(
                    f"Escalation raised in {conversation.id}: reason={decision.reason} "
                    f"level={assessment.anxiety_level} risk={assessment.crisis_risk.value}"
                )

            if conversation.language != language:
                conversation.language = language
                self._persist_conversation()
            reply_text = self._composer.compose(assessment, language, conversation.persona)
            reply = self._append_reply(reply_text)

            return TurnResult(
                user_message=user_message,
                reply=reply,
                assessment=assessment,
                language=language,
                escalate=decision.escalate,
                escalation_reason=decision.reason,
            )

        except Exception as e:
            logger.exception(f"Pipeline failure in {conversation.id}: {e}")
            if decision is None:
                # Crisis keywords still escalate when analysis never finished
                decision = self._gate.evaluate(pending.text, None, 0)
            if decision.escalate:
                logger.warning(f"Escalation raised in {conversation.id}: reason={decision.reason}")
            reply = self._append_reply(self._composer.generic_reply(language, conversation.persona))
            return TurnResult(
                user_message=user_message,
                reply=reply,
                assessment=assessment,
                language=language,
                escalate=decision.escalate,
                escalation_reason=decision.reason,
                failed=True,
            )

    def _switch_to_spanish(self, user_message: Message) -> TurnResult:
        conversation = self.conversation
        conversation.persona = Persona.MONICA
        conversation.language = Language.ES
        self._persist_conversation()
        logger.info(f"Conversation {conversation.id} switched to monica/es")

        # Explicit crisis language still raises the interrupt
        decision = self._gate.evaluate(user_message.text, None, 0)
        reply = self._append_reply(self._composer.welcome(Persona.MONICA, Language.ES))
        return TurnResult(
            user_message=user_message,
            reply=reply,
            language=Language.ES,
            escalate=decision.escalate,
            escalation_reason=decision.reason,
        )

    def _append_reply(self, text: str) -> Message:
        reply = self.conversation.append(Sender.ASSISTANT, text)
        self._persist(reply)
        return reply

    def _persist(self, message: Message) -> Optional[asyncio.Task]:
        if self._writer is None:
            return None
        return self._writer.message(message)

    def _persist_conversation(self) -> None:
        if self._writer is not None:
            self._writer.conversation_update(self.conversation)

    def _notify(self, result: TurnResult) -> None:
        for listener in self._listeners:
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Turn listener failed: {e}")
