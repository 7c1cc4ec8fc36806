"""Tests for configuration and API key resolution."""

import os

import pytest

from mcp_server_kokkai_research.config import (
    NO_KEY_PROVIDERS,
    STANDARD_ENV_VAR_NAMES,
    AppSettings,
    LLMSettings,
    ProviderSettings,
    ResearchSettings,
    ServerSettings,
    SynthesisSettings,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove key and prefixed env vars so defaults are visible."""
    for var in list(os.environ.keys()):
        if "API_KEY" in var or var.startswith("KOKKAI_"):
            monkeypatch.delenv(var, raising=False)


class TestStandardEnvVarNames:
    """Test that standard env var names are correctly defined."""

    def test_all_providers_have_standard_names(self):
        assert set(STANDARD_ENV_VAR_NAMES.keys()) == {"openai", "anthropic", "google", "groq", "cerebras", "openrouter"}

    def test_standard_names_format(self):
        """Standard names should follow PROVIDER_API_KEY format."""
        for provider, env_vars in STANDARD_ENV_VAR_NAMES.items():
            vars_to_check = env_vars if isinstance(env_vars, list) else [env_vars]
            for env_var in vars_to_check:
                assert env_var.endswith("_API_KEY"), f"{provider} env var {env_var} should end with _API_KEY"
                assert env_var.isupper()

    def test_ollama_no_key(self):
        assert "ollama" in NO_KEY_PROVIDERS


class TestApiKeyResolution:
    """Test API key resolution priority logic."""

    def test_generic_override_takes_priority(self, monkeypatch):
        monkeypatch.setenv("KOKKAI_LLM_API_KEY", "generic-key")
        monkeypatch.setenv("OPENAI_API_KEY", "standard-key")
        monkeypatch.setenv("KOKKAI_LLM_OPENAI_API_KEY", "prefixed-key")

        assert LLMSettings().get_api_key_for_provider() == "generic-key"

    def test_standard_name_over_prefixed(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "standard-key")
        monkeypatch.setenv("KOKKAI_LLM_OPENAI_API_KEY", "prefixed-key")

        assert LLMSettings().get_api_key_for_provider() == "standard-key"

    def test_prefixed_fallback(self, monkeypatch):
        monkeypatch.setenv("KOKKAI_LLM_OPENAI_API_KEY", "prefixed-key")

        assert LLMSettings().get_api_key_for_provider() == "prefixed-key"

    def test_google_accepts_either_name(self, monkeypatch):
        monkeypatch.setenv("KOKKAI_LLM_PROVIDER", "google")
        monkeypatch.setenv("GOOGLE_API_KEY", "google-key")

        assert LLMSettings().get_api_key_for_provider() == "google-key"

    def test_ollama_no_key_required(self, monkeypatch):
        monkeypatch.setenv("KOKKAI_LLM_PROVIDER", "ollama")

        settings = LLMSettings()
        assert settings.get_api_key_for_provider() is None
        assert not settings.requires_api_key()

    def test_no_key_returns_none(self):
        settings = LLMSettings()
        assert settings.get_api_key_for_provider() is None
        assert settings.requires_api_key()

    def test_synthesis_key_falls_back_to_cerebras(self, monkeypatch):
        monkeypatch.setenv("CEREBRAS_API_KEY", "csk-test")
        assert SynthesisSettings().get_api_key() == "csk-test"

    def test_synthesis_explicit_key_wins(self, monkeypatch):
        monkeypatch.setenv("CEREBRAS_API_KEY", "csk-test")
        monkeypatch.setenv("KOKKAI_SYNTHESIS_API_KEY", "explicit")
        assert SynthesisSettings().get_api_key() == "explicit"


class TestDefaults:
    """Default values for each settings group."""

    def test_llm_defaults(self):
        settings = LLMSettings()
        assert settings.provider == "openai"
        assert settings.base_url is None

    def test_synthesis_defaults(self):
        settings = SynthesisSettings()
        assert settings.max_tokens == 8000
        assert settings.temperature == 0.2

    def test_research_defaults(self):
        settings = ResearchSettings()
        assert settings.default_limit == 20
        assert settings.fallback_to_raw_query is True
        assert settings.min_attachment_relevance == 0.5

    def test_provider_defaults(self):
        settings = ProviderSettings()
        assert settings.kokkai_rag_url
        assert settings.gov_meeting_rag_url is None

    def test_server_defaults(self):
        settings = ServerSettings()
        assert settings.transport == "streamable-http"
        assert settings.results_dir is None


class TestEnvOverrides:
    """Environment variables override defaults per group prefix."""

    def test_research_prefix(self, monkeypatch):
        monkeypatch.setenv("KOKKAI_RESEARCH_DEFAULT_LIMIT", "50")
        monkeypatch.setenv("KOKKAI_RESEARCH_FALLBACK_TO_RAW_QUERY", "false")

        settings = ResearchSettings()
        assert settings.default_limit == 50
        assert settings.fallback_to_raw_query is False

    def test_provider_prefix(self, monkeypatch):
        monkeypatch.setenv("KOKKAI_PROVIDERS_GOV_MEETING_RAG_URL", "http://gov.example/search")
        assert ProviderSettings().gov_meeting_rag_url == "http://gov.example/search"

    def test_invalid_transport_rejected(self, monkeypatch):
        monkeypatch.setenv("KOKKAI_SERVER_TRANSPORT", "carrier-pigeon")
        with pytest.raises(ValueError):
            ServerSettings()


class TestAppSettings:
    """Root settings helpers."""

    def test_results_dir_none_when_unset(self):
        assert AppSettings().get_results_dir() is None

    def test_results_dir_created(self, tmp_path):
        target = tmp_path / "reports"
        settings = AppSettings(server=ServerSettings(results_dir=str(target)))

        assert settings.get_results_dir() == target
        assert target.is_dir()

    def test_save_strips_secrets(self, monkeypatch, tmp_path):
        import mcp_server_kokkai_research.config as config_module

        config_file = tmp_path / "config.json"
        monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)
        settings = AppSettings(
            llm=LLMSettings(api_key="secret-llm"),
            synthesis=SynthesisSettings(api_key="secret-synth"),
        )

        settings.save()

        text = config_file.read_text(encoding="utf-8")
        assert "secret-llm" not in text
        assert "secret-synth" not in text
        assert '"model_name"' in text
