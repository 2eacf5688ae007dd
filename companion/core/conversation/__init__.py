"""
Conversation layer: data model, per-message language detection, reply
composition, persistence and the per-conversation pipeline.
"""

from .models import (
    AssessmentAlreadyAttached,
    Conversation,
    Language,
    Message,
    Persona,
    RollingAssessmentWindow,
    Sender,
)
from .language import detect_language, wants_spanish_companion
from .composer import ResponseComposer, get_composer
from .store import (
    InMemoryMessageStore,
    MessageStore,
    PersistenceError,
    PersistenceWriter,
    SqlMessageStore,
)
from .pipeline import (
    ConversationPipeline,
    PipelineState,
    SubmitOutcome,
    SubmitReceipt,
    TurnResult,
)
from .manager import (
    ConversationManager,
    ConversationNotFound,
    get_conversation_manager,
    reset_conversation_manager,
)

__all__ = [
    # Models
    "AssessmentAlreadyAttached",
    "Conversation",
    "Language",
    "Message",
    "Persona",
    "RollingAssessmentWindow",
    "Sender",
    # Language
    "detect_language",
    "wants_spanish_companion",
    # Composer
    "ResponseComposer",
    "get_composer",
    # Persistence
    "InMemoryMessageStore",
    "MessageStore",
    "PersistenceError",
    "PersistenceWriter",
    "SqlMessageStore",
    # Pipeline
    "ConversationPipeline",
    "PipelineState",
    "SubmitOutcome",
    "SubmitReceipt",
    "TurnResult",
    # Manager
    "ConversationManager",
    "ConversationNotFound",
    "get_conversation_manager",
    "reset_conversation_manager",
]
