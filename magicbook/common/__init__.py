"""
Common utilities shared across magicbook modules.
"""

from .config import GatewayConfig, PersistenceConfig, PipelineConfig
from .llm import ChatResult, CompletionCallable, call_chat_completion, complete_with_model_fallback

__all__ = [
    "ChatResult",
    "CompletionCallable",
    "GatewayConfig",
    "PersistenceConfig",
    "PipelineConfig",
    "call_chat_completion",
    "complete_with_model_fallback",
]
