"""MCP server for deep research over Diet (Kokkai) proceedings."""

from .config import settings
from .exceptions import KokkaiResearchError, LLMProviderError, PlanningError, SearchProviderError, SynthesisError
from .llm import get_llm
from .research.pipeline import ResearchPipeline

__all__ = [
    "settings",
    "get_llm",
    "ResearchPipeline",
    "KokkaiResearchError",
    "LLMProviderError",
    "PlanningError",
    "SearchProviderError",
    "SynthesisError",
]
