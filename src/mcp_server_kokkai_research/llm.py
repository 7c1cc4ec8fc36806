"""Chat model factories for planning, extraction and streaming synthesis."""

from typing import TYPE_CHECKING

from browser_use import ChatAnthropic, ChatGoogle, ChatGroq, ChatOllama, ChatOpenAI

# These are available via direct import but not in __all__
from browser_use.llm.cerebras.chat import ChatCerebras
from browser_use.llm.openrouter.chat import ChatOpenRouter
from openai import AsyncOpenAI

from .config import NO_KEY_PROVIDERS, STANDARD_ENV_VAR_NAMES, AppSettings
from .exceptions import LLMProviderError

if TYPE_CHECKING:
    from browser_use.llm.base import BaseChatModel


def get_llm(
    provider: str,
    model: str,
    api_key: str | None = None,
    base_url: str | None = None,
) -> "BaseChatModel":
    """Create a chat model instance using browser-use native providers.

    Supported providers: openai, anthropic, google, groq, cerebras,
    ollama (no API key required) and openrouter.

    Args:
        provider: LLM provider name
        model: Model name/identifier
        api_key: API key for the provider (not required for ollama)
        base_url: Custom base URL for OpenAI-compatible APIs

    Returns:
        Configured BaseChatModel instance

    Raises:
        LLMProviderError: If provider is unsupported or API key is missing
    """
    requires_api_key = provider not in NO_KEY_PROVIDERS and not base_url
    if requires_api_key and not api_key:
        standard_var = STANDARD_ENV_VAR_NAMES.get(provider, "API key")
        raise LLMProviderError(f"API key required for provider '{provider}'. Set {standard_var} or KOKKAI_LLM_API_KEY environment variable.")

    try:
        match provider:
            case "openai":
                return ChatOpenAI(model=model, api_key=api_key, base_url=base_url)

            case "anthropic":
                return ChatAnthropic(model=model, api_key=api_key)

            case "google":
                return ChatGoogle(model=model, api_key=api_key)

            case "groq":
                return ChatGroq(model=model, api_key=api_key)

            case "cerebras":
                return ChatCerebras(model=model, api_key=api_key)

            case "ollama":
                return ChatOllama(model=model, host=base_url)

            case "openrouter":
                return ChatOpenRouter(model=model, api_key=api_key)

            case _:
                raise LLMProviderError(f"Unsupported provider: {provider}")

    except LLMProviderError:
        raise
    except Exception as e:
        raise LLMProviderError(f"Failed to initialize {provider} LLM: {e}") from e


def get_llm_from_settings(app_settings: AppSettings) -> "BaseChatModel":
    """Build the planning/extraction chat model from application settings."""
    return get_llm(
        provider=app_settings.llm.provider,
        model=app_settings.llm.model_name,
        api_key=app_settings.llm.get_api_key_for_provider(),
        base_url=app_settings.llm.base_url,
    )


def get_streaming_client(app_settings: AppSettings) -> AsyncOpenAI:
    """Create the OpenAI-compatible async client used for streaming synthesis.

    Raises:
        LLMProviderError: If no API key is configured for the synthesis endpoint
    """
    api_key = app_settings.synthesis.get_api_key()
    if not api_key:
        raise LLMProviderError("API key required for synthesis. Set CEREBRAS_API_KEY or KOKKAI_SYNTHESIS_API_KEY environment variable.")
    return AsyncOpenAI(api_key=api_key, base_url=app_settings.synthesis.base_url)
