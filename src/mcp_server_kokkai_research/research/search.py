"""Search providers and the per-section concurrent search orchestrator."""

import asyncio
import json
import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx
from openai import AsyncOpenAI, OpenAIError

from ..config import ProviderSettings
from ..exceptions import SearchProviderError
from .evidence import SectionHits, document_key, merge_section_documents
from .models import DocumentResult, DocumentSource, SectionKey
from .prompts import get_web_search_prompt
from .sections import GOV_MEETING_RAG, KOKKAI_DB, OPENAI_WEB, SECTION_KEYWORD_HINTS

logger = logging.getLogger(__name__)

DEFAULT_SECTION_LIMIT = 10


@dataclass
class ProviderQuery:
    """What a provider is asked for."""

    query: str
    limit: int


@runtime_checkable
class SearchProvider(Protocol):
    id: str

    async def search(self, query: ProviderQuery) -> list[DocumentResult]: ...


class HttpRagProvider:
    """Provider backed by a JSON search endpoint.

    POSTs ``{"query", "limit"}`` and expects ``{"results": [DocumentResult, ...]}``.
    """

    def __init__(
        self,
        provider_id: str,
        endpoint: str,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.id = provider_id
        self.endpoint = endpoint
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._transport = transport

    async def search(self, query: ProviderQuery) -> list[DocumentResult]:
        payload = {"query": query.query, "limit": query.limit}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=payload, headers=self.headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise SearchProviderError(f"{self.id}: HTTP {e.response.status_code}, Details: {e.response.text[:200]}") from e
        except httpx.HTTPError as e:
            raise SearchProviderError(f"{self.id}: {type(e).__name__}: {e}") from e

        return [self._to_document(raw) for raw in data.get("results") or []]

    def _to_document(self, raw: dict[str, Any]) -> DocumentResult:
        raw = dict(raw)
        if not raw.get("source"):
            raw["source"] = {"providerId": self.id, "type": self.id}
        raw["id"] = str(raw.get("id", ""))
        return DocumentResult.model_validate(raw)

    def __repr__(self) -> str:
        return f"HttpRagProvider(id={self.id!r}, endpoint={self.endpoint!r})"


class OpenAIWebProvider:
    """Web search through the OpenAI Responses API ``web_search_preview`` tool.

    The model is asked to answer with ``{"results": [...]}`` JSON only. Output
    that does not parse yields no documents.
    """

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini", provider_id: str = OPENAI_WEB):
        self.id = provider_id
        self.client = client
        self.model = model

    async def search(self, query: ProviderQuery) -> list[DocumentResult]:
        limit = query.limit or DEFAULT_SECTION_LIMIT
        try:
            response = await self.client.responses.create(
                model=self.model,
                tools=[{"type": "web_search_preview"}],
                max_output_tokens=16000,
                input=get_web_search_prompt(query.query, limit),
            )
        except OpenAIError as e:
            raise SearchProviderError(f"{self.id}: {type(e).__name__}: {e}") from e

        raw = (response.output_text or "").strip()
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"{self.id}: non-JSON response ignored ({raw[:80]!r})")
            return []
        items = parsed.get("results") if isinstance(parsed, dict) else None
        if not isinstance(items, list):
            return []
        return [self._to_document(item, i, query.query) for i, item in enumerate(items) if isinstance(item, dict)]

    def _to_document(self, item: dict[str, Any], index: int, subquery: str) -> DocumentResult:
        def text(key: str) -> str | None:
            value = item.get(key)
            return value if isinstance(value, str) else None

        score = item.get("score")
        return DocumentResult(
            id=str(item.get("id") or f"{self.id}:{index}"),
            title=text("title"),
            url=text("url"),
            date=text("date"),
            content=text("content") or "",
            score=score if isinstance(score, (int, float)) and not isinstance(score, bool) else None,
            source=DocumentSource(provider_id=self.id, type=self.id),
            extras={"subquery": subquery},
        )

    def __repr__(self) -> str:
        return f"OpenAIWebProvider(model={self.model!r})"


class ProviderRegistry:
    """Looks up search providers by id."""

    def __init__(self, providers: list[SearchProvider] | None = None):
        self._providers: list[SearchProvider] = list(providers or [])

    @classmethod
    def from_settings(cls, provider_settings: ProviderSettings) -> "ProviderRegistry":
        providers: list[SearchProvider] = [
            HttpRagProvider(KOKKAI_DB, provider_settings.kokkai_rag_url, timeout=provider_settings.timeout_seconds),
        ]
        openai_key = provider_settings.get_openai_web_api_key()
        if openai_key:
            client = AsyncOpenAI(api_key=openai_key, timeout=provider_settings.openai_web_timeout_seconds)
            providers.append(OpenAIWebProvider(client, model=provider_settings.openai_web_model))
        else:
            logger.info(f"No OpenAI API key configured, {OPENAI_WEB} provider disabled")
        if provider_settings.gov_meeting_rag_url:
            providers.append(HttpRagProvider(GOV_MEETING_RAG, provider_settings.gov_meeting_rag_url, timeout=provider_settings.timeout_seconds))
        return cls(providers)

    def all(self) -> list[SearchProvider]:
        return list(self._providers)

    def by_ids(self, ids: list[str] | None) -> list[SearchProvider]:
        """Return the requested providers in registry order; all of them when ``ids`` is empty."""
        if not ids:
            return self.all()
        wanted = set(ids)
        return [p for p in self._providers if p.id in wanted]


class MultiSourceSearch:
    """Queries several providers concurrently and merges their results.

    A provider that fails contributes nothing; the others still count.
    """

    async def search_across(self, providers: list[SearchProvider], query: ProviderQuery) -> list[DocumentResult]:
        async def _one(provider: SearchProvider) -> list[DocumentResult]:
            try:
                return await provider.search(query)
            except Exception as e:
                logger.error(f"Provider {provider.id} failed: {e}")
                return []

        batches = await asyncio.gather(*(_one(p) for p in providers))
        return [doc for batch in batches for doc in batch]


@dataclass
class SectionSearchResult:
    documents: list[DocumentResult]
    section_hits: SectionHits
    iterations: int


def build_section_query(section_key: SectionKey, subqueries: list[str], keyword_hints: Mapping[SectionKey, list[str]] = SECTION_KEYWORD_HINTS) -> str:
    """Combine all subqueries into one query of unique words plus section hints.

    ``build_section_query(TIMELINE, ["防衛費 財源", "防衛費 審議"])``
    gives ``"防衛費 財源 審議 年表 タイムライン 経緯"``.
    """
    words: dict[str, None] = {}
    for subquery in subqueries:
        for word in subquery.split():
            words[word] = None
    for hint in keyword_hints.get(section_key, []):
        words[hint] = None
    return " ".join(words)


def section_limit(limit: int) -> int:
    """Per-section result limit; sections over-fetch since duplicates are removed later."""
    if not isinstance(limit, (int, float)) or not math.isfinite(limit) or limit <= 0:
        return DEFAULT_SECTION_LIMIT
    return max(DEFAULT_SECTION_LIMIT, math.floor(limit * 0.7))


class SectionSearchOrchestrator:
    """Runs one concurrent search per report section."""

    def __init__(self, multi_source: MultiSourceSearch | None = None, keyword_hints: Mapping[SectionKey, list[str]] | None = None):
        self.multi_source = multi_source or MultiSourceSearch()
        self.keyword_hints = keyword_hints if keyword_hints is not None else SECTION_KEYWORD_HINTS

    async def run(
        self,
        subqueries: list[str],
        providers: list[SearchProvider],
        allow_by_section: Mapping[SectionKey, list[str]],
        targets: Mapping[SectionKey, int],
        limit: int,
        on_section_complete: Callable[[], None] | None = None,
        keyword_hints: Mapping[SectionKey, list[str]] | None = None,
    ) -> SectionSearchResult:
        """Search every section concurrently and merge the results.

        ``on_section_complete`` is called synchronously once per section as
        soon as that section finishes, in completion order. Sections without
        an allowed, available provider finish immediately with no documents.
        Errors other than individual provider failures propagate unchanged;
        the remaining section searches are cancelled first.
        """
        section_keys = list(allow_by_section.keys())
        per_section_limit = section_limit(limit)
        hints = keyword_hints if keyword_hints is not None else self.keyword_hints

        async def _search_section(section_key: SectionKey) -> tuple[SectionKey, list[DocumentResult]]:
            allowed = set(allow_by_section.get(section_key) or [])
            section_providers = [p for p in providers if p.id in allowed]
            docs: list[DocumentResult] = []
            if section_providers:
                query = build_section_query(section_key, subqueries, hints)
                provider_query = ProviderQuery(query=query, limit=per_section_limit)
                docs = _dedupe_within_section(await self.multi_source.search_across(section_providers, provider_query))
                logger.info(f"[{section_key.value}] +{len(docs)} providers={','.join(p.id for p in section_providers)} query={query}")
            else:
                logger.debug(f"[{section_key.value}] skipped, no allowed provider available")
            if on_section_complete is not None:
                on_section_complete()
            return section_key, docs

        logger.info(f"Starting parallel search for {len(section_keys)} sections")
        tasks = [asyncio.create_task(_search_section(key)) for key in section_keys]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        documents: list[DocumentResult] = []
        section_hits: SectionHits = {}
        for section_key, docs in results:
            merge_section_documents(documents, section_hits, section_key, docs)

        current, missing = compute_coverage(section_keys, targets, section_hits)
        unmet = {key: count for key, count in missing.items() if count}
        logger.info(f"Section coverage={current} unmet={unmet}")

        return SectionSearchResult(documents=documents, section_hits=section_hits, iterations=1)


def _dedupe_within_section(docs: list[DocumentResult]) -> list[DocumentResult]:
    seen: set[str] = set()
    unique = []
    for doc in docs:
        key = document_key(doc)
        if key not in seen:
            seen.add(key)
            unique.append(doc)
    return unique


def compute_coverage(
    section_keys: list[SectionKey],
    targets: Mapping[SectionKey, int],
    section_hits: SectionHits,
) -> tuple[dict[str, int], dict[str, int]]:
    """Count unique documents per section and how far each is from its target."""
    current = {key.value: 0 for key in section_keys}
    for hints in section_hits.values():
        for key in hints:
            current[key.value] = current.get(key.value, 0) + 1
    missing = {}
    for key in section_keys:
        target = targets.get(key, 0)
        if target > 0:
            missing[key.value] = max(0, target - current[key.value])
    return current, missing
