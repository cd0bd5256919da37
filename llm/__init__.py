from llm.base import ChatProvider, ChatResponse, ConversationTurn, Role, SamplingParams, TokenUsage
from llm.registry import ChatProviderRegistry, build_chat_registry

__all__ = [
    "ChatProvider",
    "ChatProviderRegistry",
    "ChatResponse",
    "ConversationTurn",
    "Role",
    "SamplingParams",
    "TokenUsage",
    "build_chat_registry",
]
