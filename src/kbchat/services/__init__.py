"""Service layer orchestrations for kbchat."""

from .chat import ChatService, ContextBuilder, ContextBuilderConfig
from .generation import (
    FALLBACK_ANSWER,
    CompletionBackend,
    GenerationConfig,
    OpenAICompletionBackend,
    TemplateGenerator,
    build_completion_backend,
)
from .intent import Intent, IntentCatalog, IntentClassifier, pick_response

__all__ = [
    "FALLBACK_ANSWER",
    "ChatService",
    "CompletionBackend",
    "ContextBuilder",
    "ContextBuilderConfig",
    "GenerationConfig",
    "Intent",
    "IntentCatalog",
    "IntentClassifier",
    "OpenAICompletionBackend",
    "TemplateGenerator",
    "build_completion_backend",
    "pick_response",
]
