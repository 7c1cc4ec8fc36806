"""Custom exceptions for the Kokkai deep research server."""


class KokkaiResearchError(Exception):
    """Base exception for Kokkai deep research errors."""

    pass


class LLMProviderError(KokkaiResearchError):
    """Raised when LLM provider configuration is invalid."""

    pass


class PlanningError(KokkaiResearchError):
    """Raised when a query plan cannot be produced."""

    pass


class SearchProviderError(KokkaiResearchError):
    """Raised when a search provider call fails."""

    pass


class AttachmentExtractionError(KokkaiResearchError):
    """Raised when section extraction from an uploaded attachment fails."""

    pass


class SynthesisError(KokkaiResearchError):
    """Raised when the synthesis stream or its final parse fails.

    ``phase`` is ``"stream"`` for errors raised while consuming the model
    output and ``"parse"`` for errors turning the accumulated text into sections.
    """

    def __init__(self, message: str, phase: str = "stream"):
        super().__init__(f"stream/synthesis processing failed ({phase}): {message}")
        self.phase = phase
