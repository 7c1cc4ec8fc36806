"""Tests for chat model and streaming client factories."""

from unittest.mock import MagicMock, patch

import pytest

from mcp_server_kokkai_research.config import AppSettings, LLMSettings, SynthesisSettings
from mcp_server_kokkai_research.exceptions import LLMProviderError
from mcp_server_kokkai_research.llm import get_llm, get_llm_from_settings, get_streaming_client


class TestGetLLM:
    """Test the get_llm factory function."""

    def test_openai_provider(self):
        with patch("mcp_server_kokkai_research.llm.ChatOpenAI") as mock:
            mock.return_value = MagicMock()
            get_llm("openai", "gpt-4o-mini", api_key="test-key")
            mock.assert_called_once_with(model="gpt-4o-mini", api_key="test-key", base_url=None)

    def test_openai_with_base_url(self):
        with patch("mcp_server_kokkai_research.llm.ChatOpenAI") as mock:
            mock.return_value = MagicMock()
            get_llm("openai", "gpt-4o-mini", api_key="test-key", base_url="http://localhost:8000")
            mock.assert_called_once_with(model="gpt-4o-mini", api_key="test-key", base_url="http://localhost:8000")

    def test_anthropic_provider(self):
        with patch("mcp_server_kokkai_research.llm.ChatAnthropic") as mock:
            mock.return_value = MagicMock()
            get_llm("anthropic", "claude-3-5-haiku", api_key="test-key")
            mock.assert_called_once_with(model="claude-3-5-haiku", api_key="test-key")

    def test_google_provider(self):
        with patch("mcp_server_kokkai_research.llm.ChatGoogle") as mock:
            mock.return_value = MagicMock()
            get_llm("google", "gemini-2.0-flash", api_key="test-key")
            mock.assert_called_once_with(model="gemini-2.0-flash", api_key="test-key")

    def test_cerebras_provider(self):
        with patch("mcp_server_kokkai_research.llm.ChatCerebras") as mock:
            mock.return_value = MagicMock()
            get_llm("cerebras", "gpt-oss-120b", api_key="test-key")
            mock.assert_called_once_with(model="gpt-oss-120b", api_key="test-key")

    def test_ollama_no_key_required(self):
        with patch("mcp_server_kokkai_research.llm.ChatOllama") as mock:
            mock.return_value = MagicMock()
            get_llm("ollama", "llama3", base_url="http://localhost:11434")
            mock.assert_called_once_with(model="llama3", host="http://localhost:11434")


class TestErrorHandling:
    """Test error handling in get_llm."""

    def test_missing_api_key_error_names_env_var(self):
        with pytest.raises(LLMProviderError, match="OPENAI_API_KEY"):
            get_llm("openai", "gpt-4o-mini")

    def test_unsupported_provider_error(self):
        with pytest.raises(LLMProviderError, match="Unsupported provider"):
            get_llm("invalid_provider", "model", api_key="key")

    def test_constructor_failure_wrapped(self):
        with patch("mcp_server_kokkai_research.llm.ChatOpenAI", side_effect=RuntimeError("boom")):
            with pytest.raises(LLMProviderError, match="Failed to initialize openai LLM: boom"):
                get_llm("openai", "gpt-4o-mini", api_key="key")


class TestFromSettings:
    """Factories driven by AppSettings."""

    def test_llm_from_settings(self):
        settings = AppSettings(llm=LLMSettings(provider="anthropic", model_name="claude-3-5-haiku", api_key="k"))
        with patch("mcp_server_kokkai_research.llm.ChatAnthropic") as mock:
            mock.return_value = MagicMock()
            get_llm_from_settings(settings)
            mock.assert_called_once_with(model="claude-3-5-haiku", api_key="k")

    def test_streaming_client_requires_key(self, monkeypatch):
        monkeypatch.delenv("CEREBRAS_API_KEY", raising=False)
        monkeypatch.delenv("KOKKAI_SYNTHESIS_API_KEY", raising=False)
        with pytest.raises(LLMProviderError, match="synthesis"):
            get_streaming_client(AppSettings(synthesis=SynthesisSettings()))

    def test_streaming_client_uses_base_url(self):
        settings = AppSettings(synthesis=SynthesisSettings(api_key="k", base_url="http://llm.local/v1"))
        with patch("mcp_server_kokkai_research.llm.AsyncOpenAI") as mock:
            get_streaming_client(settings)
            mock.assert_called_once_with(api_key="k", base_url="http://llm.local/v1")
