"""Service layer orchestrations for ctxrag."""

from .chat import ChatEvent, ChatService, PromptBuilder, PromptBuilderConfig
from .context import ContextAgent, ContextAgentConfig, OllamaContextAgent, TemplateContextAgent
from .generation import ChatModel, GenerationConfig, OllamaChatModel, TemplateChatModel, build_ollama_client
from .stream import StreamDecoder, decode_stream

__all__ = [
    "ChatEvent",
    "ChatModel",
    "ChatService",
    "ContextAgent",
    "ContextAgentConfig",
    "GenerationConfig",
    "OllamaChatModel",
    "OllamaContextAgent",
    "PromptBuilder",
    "PromptBuilderConfig",
    "StreamDecoder",
    "TemplateChatModel",
    "TemplateContextAgent",
    "build_ollama_client",
    "decode_stream",
]
