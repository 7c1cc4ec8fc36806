"""Configuration management using Pydantic settings with optional file persistence."""

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Paths ---

APP_NAME = "mcp-server-kokkai-research"


def get_config_dir() -> Path:
    """Get the configuration directory (e.g. ~/.config/mcp-server-kokkai-research)."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / ".config")).expanduser()
    else:
        base = Path("~/.config").expanduser()

    path = base / APP_NAME
    path.mkdir(parents=True, exist_ok=True)
    return path


CONFIG_FILE = get_config_dir() / "config.json"


def load_config_file() -> dict[str, Any]:
    """Load settings from the JSON config file if it exists."""
    if not CONFIG_FILE.exists():
        return {}

    try:
        text = CONFIG_FILE.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        return json.loads(text)
    except (OSError, json.JSONDecodeError):
        return {}


def save_config_file(config_data: dict[str, Any]) -> None:
    """Save settings to the JSON config file."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(config_data, indent=2), encoding="utf-8")


# Standard environment variable names for API keys.
# A list means several common names exist; first match wins.
STANDARD_ENV_VAR_NAMES: dict[str, str | list[str]] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
    "groq": "GROQ_API_KEY",
    "cerebras": "CEREBRAS_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

# Providers that don't require an API key
NO_KEY_PROVIDERS = frozenset({"ollama"})

ProviderType = Literal[
    "openai",
    "anthropic",
    "google",
    "groq",
    "cerebras",
    "ollama",
    "openrouter",
]


def _resolve_standard_key(provider: str) -> Optional[str]:
    standard_vars = STANDARD_ENV_VAR_NAMES.get(provider)
    if not standard_vars:
        return None
    if isinstance(standard_vars, str):
        standard_vars = [standard_vars]
    for var_name in standard_vars:
        key = os.environ.get(var_name)
        if key:
            return key
    return None


class LLMSettings(BaseSettings):
    """Chat model used for query planning and attachment extraction."""

    model_config = SettingsConfigDict(env_prefix="KOKKAI_LLM_")

    provider: ProviderType = Field(default="openai")
    model_name: str = Field(default="gpt-4o-mini")
    api_key: Optional[SecretStr] = Field(default=None, description="Generic API key override (highest priority)")
    base_url: Optional[str] = Field(default=None, description="Custom base URL for OpenAI-compatible APIs")

    def get_api_key_for_provider(self) -> Optional[str]:
        """Resolve API key with priority: generic > standard > prefixed.

        Priority order:
        1. KOKKAI_LLM_API_KEY (generic override, applies to any provider)
        2. <PROVIDER>_API_KEY (standard name, e.g., OPENAI_API_KEY, GEMINI_API_KEY)
        3. KOKKAI_LLM_<PROVIDER>_API_KEY

        Returns:
            The resolved API key or None if not found.
        """
        if self.api_key:
            return self.api_key.get_secret_value()

        standard = _resolve_standard_key(self.provider)
        if standard:
            return standard

        return os.environ.get(f"KOKKAI_LLM_{self.provider.upper()}_API_KEY")

    def requires_api_key(self) -> bool:
        """Check if the current provider requires an API key."""
        return self.provider not in NO_KEY_PROVIDERS


class SynthesisSettings(BaseSettings):
    """Streaming section synthesis against an OpenAI-compatible endpoint."""

    model_config = SettingsConfigDict(env_prefix="KOKKAI_SYNTHESIS_")

    base_url: Optional[str] = Field(default="https://api.cerebras.ai/v1", description="OpenAI-compatible base URL")
    model_name: str = Field(default="gpt-oss-120b")
    api_key: Optional[SecretStr] = Field(default=None)
    max_tokens: int = Field(default=8000)
    temperature: float = Field(default=0.2)

    def get_api_key(self) -> Optional[str]:
        """Return the synthesis key, falling back to CEREBRAS_API_KEY."""
        if self.api_key:
            return self.api_key.get_secret_value()
        return _resolve_standard_key("cerebras")


class ProviderSettings(BaseSettings):
    """Search provider endpoints."""

    model_config = SettingsConfigDict(env_prefix="KOKKAI_PROVIDERS_")

    kokkai_rag_url: str = Field(default="http://localhost:8001/v1/search", description="Kokkai minutes vector search endpoint")
    gov_meeting_rag_url: Optional[str] = Field(default=None, description="Government council minutes search endpoint")
    timeout_seconds: float = Field(default=30.0, description="Per-request timeout for search providers")
    openai_web_api_key: Optional[SecretStr] = Field(default=None, description="Enables the openai-web provider (falls back to OPENAI_API_KEY)")
    openai_web_model: str = Field(default="gpt-4o-mini", description="Model used for web search")
    openai_web_timeout_seconds: float = Field(default=120.0)

    def get_openai_web_api_key(self) -> Optional[str]:
        """Return the web search key, falling back to OPENAI_API_KEY."""
        if self.openai_web_api_key:
            return self.openai_web_api_key.get_secret_value()
        return _resolve_standard_key("openai")


class ResearchSettings(BaseSettings):
    """Deep research pipeline behavior."""

    model_config = SettingsConfigDict(env_prefix="KOKKAI_RESEARCH_")

    default_limit: int = Field(default=20, description="Result limit when the request does not set one")
    fallback_to_raw_query: bool = Field(default=True, description="Use the raw query when the planner returns no subqueries")
    min_attachment_relevance: float = Field(default=0.5, description="Drop attachment snippets scored below this")


TransportType = Literal["stdio", "streamable-http", "sse"]


class ServerSettings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(env_prefix="KOKKAI_SERVER_")

    logging_level: str = Field(default="INFO")
    transport: TransportType = Field(default="streamable-http", description="MCP transport: stdio, streamable-http, or sse")
    host: str = Field(default="127.0.0.1", description="Host for HTTP transports")
    port: int = Field(default=8484, description="Port for HTTP transports")
    results_dir: Optional[str] = Field(default=None, description="Directory to save rendered reports")


class AppSettings(BaseSettings):
    """Root application settings.

    Priority: Environment Variables > Config File > Defaults
    """

    model_config = SettingsConfigDict(env_prefix="KOKKAI_", extra="ignore")

    llm: LLMSettings = Field(default_factory=LLMSettings)
    synthesis: SynthesisSettings = Field(default_factory=SynthesisSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    research: ResearchSettings = Field(default_factory=ResearchSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    def save(self) -> Path:
        """Save current configuration to file (excluding secrets)."""
        data = self.model_dump(mode="json", exclude_none=True)
        for section in ("llm", "synthesis"):
            if section in data:
                data[section].pop("api_key", None)
        save_config_file(data)
        return CONFIG_FILE

    def get_results_dir(self) -> Path | None:
        """Get the results directory, creating it if configured."""
        if not self.server.results_dir:
            return None
        path = Path(self.server.results_dir).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        return path


def _load_settings() -> AppSettings:
    """Load settings with file config as base, env vars overlay."""
    file_data = load_config_file()
    return AppSettings(**file_data)


settings = _load_settings()
