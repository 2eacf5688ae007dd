"""
Conversation API Endpoints.

Create conversations, read them back, and send messages through the
per-conversation pipeline.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from companion.core.conversation import (
    ConversationManager,
    Persona,
    SubmitOutcome,
    get_conversation_manager,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


class CreateConversationRequest(BaseModel):
    """New conversation request."""

    persona: Optional[Persona] = Field(
        default=None,
        description="Companion persona; the configured default when omitted",
        examples=["vanessa"],
    )


class SendMessageRequest(BaseModel):
    """User message request."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="User's message",
        examples=["I can't stop worrying about work tomorrow"],
    )
    resend: bool = Field(
        default=False,
        description="Edit/resend: supersede the message currently being processed",
    )


class SendMessageResponse(BaseModel):
    """Outcome of one submitted message."""

    conversation_id: str
    outcome: SubmitOutcome = Field(
        ...,
        description="started, queued, or duplicate (dropped)",
    )
    reply: Optional[str] = Field(default=None, description="Companion reply text")
    provenance: Optional[str] = Field(default=None, description="remote or fallback")
    escalate: bool = Field(
        default=False,
        description="True when the crisis-resources interrupt should be shown",
    )
    turn: Optional[dict] = Field(default=None, description="Full turn details")


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Start a conversation",
    description="Create a conversation; it opens with the persona's welcome message.",
)
async def create_conversation(
    request: CreateConversationRequest,
    manager: ConversationManager = Depends(get_conversation_manager),
) -> dict:
    """Create a conversation."""
    conversation = await manager.create_conversation(request.persona)
    return conversation.to_dict()


@router.get(
    "/{conversation_id}",
    response_model=dict,
    summary="Get a conversation",
    description="Messages are returned in temporal order with attached assessments.",
    responses={
        200: {"description": "Conversation"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
    },
)
async def get_conversation(
    conversation_id: str,
    manager: ConversationManager = Depends(get_conversation_manager),
) -> dict:
    """Get a conversation with its messages. Unknown ids map to 404."""
    conversation = await manager.get_conversation(conversation_id)
    return conversation.to_dict()


@router.post(
    "/{conversation_id}/messages",
    response_model=SendMessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a message",
    description=(
        "Submit a message and wait for its turn. Messages sent while another "
        "is processing are queued; identical rapid resubmissions are dropped."
    ),
    responses={
        200: {"description": "Turn processed or duplicate dropped"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
    },
)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    manager: ConversationManager = Depends(get_conversation_manager),
) -> SendMessageResponse:
    """
    Process a user message.

    The pipeline never fails a turn: remote analysis problems fall back to
    the heuristic classifier and unexpected errors produce a generic
    supportive reply.
    """
    try:
        if request.resend:
            receipt = await manager.resend_message(conversation_id, request.message)
        else:
            receipt = await manager.send_message(conversation_id, request.message)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    turn = await receipt.wait()
    if turn is None:
        return SendMessageResponse(conversation_id=conversation_id, outcome=receipt.outcome)

    return SendMessageResponse(
        conversation_id=conversation_id,
        outcome=receipt.outcome,
        reply=turn.reply.text if turn.reply else None,
        provenance=turn.assessment.provenance.value if turn.assessment else None,
        escalate=turn.escalate,
        turn=turn.to_dict(),
    )
