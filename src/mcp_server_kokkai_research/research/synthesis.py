"""Streaming section synthesis: forward model output as it arrives, then parse it."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Protocol

from openai import AsyncOpenAI
from pydantic import ValidationError

from ..exceptions import SynthesisError
from .events import ProgressChannel, SynthesisChunk
from .models import DeepResearchSections, EvidenceRecord
from .prompts import SYNTHESIS_SYSTEM_PROMPT, get_synthesis_prompt

logger = logging.getLogger(__name__)


class SynthesisStream(Protocol):
    def stream(self, query: str, as_of_date: str | None, evidences: list[EvidenceRecord]) -> AsyncIterator[str]: ...


class OpenAIStreamingSynthesizer:
    """Streams section JSON from an OpenAI-compatible chat completions endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str, max_tokens: int = 8000, temperature: float = 0.2):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def stream(self, query: str, as_of_date: str | None, evidences: list[EvidenceRecord]) -> AsyncIterator[str]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYNTHESIS_SYSTEM_PROMPT},
                {"role": "user", "content": get_synthesis_prompt(query, as_of_date, evidences)},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            stream=True,
        )
        async for chunk in response:
            if not chunk.choices:
                continue
            text = chunk.choices[0].delta.content
            if text:
                yield text


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if the model added one."""
    stripped = text.strip()
    if "```json" in stripped:
        return stripped.split("```json", 1)[1].split("```", 1)[0].strip()
    if stripped.startswith("```"):
        return stripped.split("```", 2)[1].strip()
    return stripped


def parse_sections(text: str) -> DeepResearchSections:
    """Parse accumulated synthesis output into sections.

    Raises:
        SynthesisError: With ``phase="parse"`` when the text is empty or not valid section JSON
    """
    payload = strip_code_fence(text)
    if not payload:
        raise SynthesisError("Empty synthesis response", phase="parse")
    try:
        return DeepResearchSections.model_validate(json.loads(payload))
    except (json.JSONDecodeError, ValidationError) as e:
        snippet = payload[:400].replace("\n", " ")
        raise SynthesisError(f"Failed to parse JSON: {e}; snippet={snippet!r}", phase="parse") from e


class SynthesisStreamCoordinator:
    """Consumes the synthesis stream, forwards chunks and returns parsed sections."""

    def __init__(self, synthesizer: SynthesisStream):
        self.synthesizer = synthesizer

    async def synthesize(
        self,
        query: str,
        as_of_date: str | None,
        evidences: list[EvidenceRecord],
        channel: ProgressChannel | None = None,
    ) -> DeepResearchSections:
        buffer: list[str] = []
        chunks = 0
        try:
            async for text in self.synthesizer.stream(query, as_of_date, evidences):
                buffer.append(text)
                chunks += 1
                if channel is not None:
                    await self._forward(channel, text)
        except SynthesisError:
            raise
        except Exception as e:
            logger.error(f"Synthesis stream failed after {chunks} chunks: {e}")
            raise SynthesisError(f"{type(e).__name__}: {e}", phase="stream") from e

        output = "".join(buffer)
        logger.info(f"Synthesis stream finished: {chunks} chunks, {len(output)} chars")
        return parse_sections(output)

    @staticmethod
    async def _forward(channel: ProgressChannel, text: str) -> None:
        try:
            await channel.emit(SynthesisChunk(text=text))
        except Exception as e:
            logger.warning(f"Failed to forward synthesis chunk: {e}")
