"""
Remote anxiety analysis using Claude.

Sends a strictly-shaped JSON request to the model and validates the reply.
Every failure is returned as a RemoteResult, never raised.
"""

import json
import logging
import time
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from companion.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from companion.safety.crisis_detector import CrisisDetector, get_detector
from .types import FailureKind, RemoteAssessment, RemoteResult, derive_crisis_risk

logger = logging.getLogger(__name__)


HISTORY_IN_PROMPT = 3


ANALYSIS_PROMPT = """You are a trained crisis intervention AI companion. A user is reaching out with: "{message}"

{history}
{crisis_alert}

CRITICAL INSTRUCTIONS:
- Keep the personalized response to 2-3 sentences
- Be specific and action-oriented: give one clear action they can do NOW
- Start with an immediate grounding or breathing action when distress is high
- Mention the 988 crisis line if the user may be unsafe
- Reply in the same language the user wrote in

Response rules:
- Maximum 50 words for crisis, 75 for non-crisis
- No long explanations or multiple questions
- Direct, calm, instructive tone

Respond ONLY with valid JSON:
{{
  "anxietyLevel": <integer from 1-10>,
  "triggers": ["max 3 triggers"],
  "copingStrategies": ["max 4 brief, actionable strategies"],
  "personalizedResponse": "BRIEF 2-3 sentence response. Direct action first. Crisis line if needed."
}}"""


CRISIS_ALERT = (
    "CRISIS ALERT: The message contains explicit self-harm or harm-to-others language. "
    "Prioritize immediate safety and include the 988 crisis line."
)


class RemoteAnalysisPayload(BaseModel):
    """Expected shape of the remote model's JSON reply."""

    model_config = ConfigDict(strict=True, extra="ignore", populate_by_name=True)

    anxiety_level: int = Field(alias="anxietyLevel", ge=1, le=10)
    triggers: list[str]
    coping_strategies: list[str] = Field(alias="copingStrategies")
    personalized_response: str = Field(alias="personalizedResponse")


def extract_json_block(text: str) -> Optional[dict]:
    """
    Return the first well-formed JSON object embedded in text.

    Handles markdown fences and prose around the object by trying each
    opening brace in turn.
    """
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        if isinstance(value, dict):
            return value
        index = text.find("{", index + 1)
    return None


class RemoteAnalysisClient:
    """
    Calls the remote model for an anxiety assessment.

    Failure conditions (all returned, never raised):
    - no API key, transport error, timeout, non-success status -> UNAVAILABLE
    - no JSON block, parse error, wrong shape -> MALFORMED
    """

    def __init__(
        self,
        claude_client: Optional[ClaudeClient] = None,
        detector: Optional[CrisisDetector] = None,
    ):
        """Initialize remote client.

        Args:
            claude_client: Optional Claude client (for testing)
            detector: Crisis detector used for prompt alerts and risk tier
        """
        self._client = claude_client
        self._detector = detector or get_detector()

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    def build_prompt(self, message: str, recent_history: Sequence[str]) -> str:
        """Build the analysis prompt for a message and its recent history."""
        history = ""
        if recent_history:
            recent = " | ".join(recent_history[-HISTORY_IN_PROMPT:])
            history = f"Previous messages showing escalation: {recent}"

        crisis_alert = CRISIS_ALERT if self._detector.is_crisis(message) else ""

        return ANALYSIS_PROMPT.format(
            message=message,
            history=history,
            crisis_alert=crisis_alert,
        )

    async def call(self, message: str, recent_history: Sequence[str] = ()) -> RemoteResult:
        """
        Request a remote assessment.

        Args:
            message: The user's message
            recent_history: Prior message texts, oldest first

        Returns:
            RemoteResult with an assessment or a failure
        """
        start_time = time.time()

        try:
            client = await self._get_client()
        except ValueError as e:
            logger.warning(f"Remote analysis unavailable: {e}")
            return RemoteResult.fail(FailureKind.UNAVAILABLE, str(e))

        prompt = self.build_prompt(message, list(recent_history))

        try:
            response = await client.generate(prompt=prompt)
        except ClaudeClientError as e:
            logger.warning(f"Remote analysis failed: {e}")
            return RemoteResult.fail(FailureKind.UNAVAILABLE, str(e))
        except Exception as e:
            logger.exception(f"Unexpected remote analysis error: {e}")
            return RemoteResult.fail(FailureKind.UNAVAILABLE, str(e))

        result = self.parse_response(message, response.content)
        if result.ok:
            latency_ms = (time.time() - start_time) * 1000
            logger.debug(f"Remote analysis succeeded in {latency_ms:.0f}ms")
            return RemoteResult.success(result.assessment, latency_ms=latency_ms, raw_response=response.content)
        return result

    def parse_response(self, message: str, raw: str) -> RemoteResult:
        """Parse and validate the model's raw reply."""
        data = extract_json_block(raw or "")
        if data is None:
            logger.warning(f"No JSON found in remote response: {(raw or '')[:200]}")
            return RemoteResult.fail(FailureKind.MALFORMED, "no JSON object in response", raw_response=raw)

        try:
            payload = RemoteAnalysisPayload.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Remote response has wrong shape: {e.error_count()} errors")
            return RemoteResult.fail(FailureKind.MALFORMED, str(e), raw_response=raw)

        assessment = RemoteAssessment(
            anxiety_level=payload.anxiety_level,
            triggers=tuple(payload.triggers),
            coping_strategies=tuple(payload.coping_strategies),
            personalized_response=payload.personalized_response.strip(),
            crisis_risk=derive_crisis_risk(payload.anxiety_level, self._detector.is_crisis(message)),
        )
        return RemoteResult.success(assessment, raw_response=raw)
