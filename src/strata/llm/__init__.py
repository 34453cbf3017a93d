"""LLM client interfaces and provider implementations."""

from strata.config import SummarizerConfig
from strata.exceptions import ConfigurationError
from strata.llm.backends import ChatBackend, ChatResponse, Message
from strata.llm.providers import AnthropicBackend, OllamaBackend, OpenAIBackend


def create_chat_backend(config: SummarizerConfig | None = None) -> ChatBackend:
    cfg = config or SummarizerConfig()
    kwargs = {
        "api_key": cfg.api_key or None,
        "model": cfg.model,
        "timeout": cfg.timeout,
        "temperature": cfg.temperature,
        "max_tokens": cfg.max_tokens,
    }
    p = (cfg.provider or "openai").strip().lower()
    if p in {"openai", "deepseek", "default"}:
        return OpenAIBackend(base_url=cfg.base_url, **kwargs)
    if p == "anthropic":
        return AnthropicBackend(**kwargs)
    if p in {"ollama", "local"}:
        return OllamaBackend(**kwargs)
    raise ConfigurationError(f"Unsupported summarizer provider: {cfg.provider}")


__all__ = [
    "ChatBackend",
    "OpenAIBackend",
    "AnthropicBackend",
    "OllamaBackend",
    "Message",
    "ChatResponse",
    "create_chat_backend",
]
