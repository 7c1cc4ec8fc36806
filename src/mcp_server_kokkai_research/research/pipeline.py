"""Streaming deep research pipeline with step tracking and progress events."""

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from ..config import AppSettings
from ..exceptions import AttachmentExtractionError, PlanningError
from ..llm import get_llm_from_settings, get_streaming_client
from .attachments import AttachmentExtractor, LLMAttachmentExtractor, extract_attachments, merge_attachment_results
from .events import Complete, ErrorEvent, ProgressChannel, ProgressSink, ProgressUpdate, SectionProgress
from .evidence import build_evidences
from .markdown import render_empty_result, render_markdown
from .models import DeepResearchResponse, DeepResearchSections, QueryPlan, ResearchMetadata, ResearchRequest, SectionKey
from .planner import QueryPlanner
from .search import ProviderRegistry, SearchProvider, SectionSearchOrchestrator, SectionSearchResult
from .sections import DEFAULT_SECTION_CONFIG, SectionConfig
from .synthesis import OpenAIStreamingSynthesizer, SynthesisStream, SynthesisStreamCoordinator

logger = logging.getLogger(__name__)


class Step(str, Enum):
    """Pipeline steps; the value is the name reported to clients."""

    QUERY_PLANNING = "クエリプランニング"
    SECTION_SEARCH = "セクション別検索"
    ATTACHMENT_EXTRACTION = "添付ファイル抽出"
    EVIDENCE_BUILD = "証拠レコード構築"
    SECTION_SYNTHESIS = "セクション統合"


UNKNOWN_STEP_NAME = "不明なステップ"


def plan_steps(has_attachments: bool) -> list[Step]:
    """Steps for a run, in order. Attachment extraction only runs when files were uploaded."""
    steps = [Step.QUERY_PLANNING, Step.SECTION_SEARCH]
    if has_attachments:
        steps.append(Step.ATTACHMENT_EXTRACTION)
    steps += [Step.EVIDENCE_BUILD, Step.SECTION_SYNTHESIS]
    return steps


class StepTracker:
    """Remembers the step in progress so failures can be reported against it."""

    def __init__(self, has_attachments: bool):
        self.steps = plan_steps(has_attachments)
        self.total = len(self.steps)
        self.number = 0
        self.name = UNKNOWN_STEP_NAME
        self.failed = False

    def enter(self, step: Step) -> int:
        self.number = self.steps.index(step) + 1
        self.name = step.value
        return self.number

    def progress(self, message: str | None = None, section_progress: SectionProgress | None = None) -> ProgressUpdate:
        return ProgressUpdate(
            step=self.number,
            total_steps=self.total,
            step_name=self.name,
            message=message,
            section_progress=section_progress,
        )

    def error(self, message: str) -> ErrorEvent:
        self.failed = True
        return ErrorEvent(step=self.number, step_name=self.name, message=message)


class QueryPlanning(Protocol):
    async def create_query_plan(self, question: str) -> QueryPlan: ...


class ProviderLookup(Protocol):
    def by_ids(self, ids: list[str] | None) -> list[SearchProvider]: ...


class SectionSearch(Protocol):
    async def run(
        self,
        subqueries: list[str],
        providers: list[SearchProvider],
        allow_by_section: Mapping[SectionKey, list[str]],
        targets: Mapping[SectionKey, int],
        limit: int,
        on_section_complete: Callable[[], None] | None = None,
        keyword_hints: Mapping[SectionKey, list[str]] | None = None,
    ) -> SectionSearchResult: ...


@dataclass
class ResearchServices:
    """Collaborators the pipeline delegates to."""

    planner: QueryPlanning
    registry: ProviderLookup
    orchestrator: SectionSearch
    synthesizer: SynthesisStream
    extractor: AttachmentExtractor | None = None
    section_config: SectionConfig = field(default_factory=lambda: DEFAULT_SECTION_CONFIG)


def create_services(app_settings: AppSettings) -> ResearchServices:
    """Wire the default collaborators from settings."""
    llm = get_llm_from_settings(app_settings)
    synthesizer = OpenAIStreamingSynthesizer(
        client=get_streaming_client(app_settings),
        model=app_settings.synthesis.model_name,
        max_tokens=app_settings.synthesis.max_tokens,
        temperature=app_settings.synthesis.temperature,
    )
    return ResearchServices(
        planner=QueryPlanner(llm),
        registry=ProviderRegistry.from_settings(app_settings.providers),
        orchestrator=SectionSearchOrchestrator(),
        synthesizer=synthesizer,
        extractor=LLMAttachmentExtractor(llm, min_relevance=app_settings.research.min_attachment_relevance),
    )


@dataclass
class ResearchOutcome:
    markdown: str
    response: DeepResearchResponse


class ResearchPipeline:
    """Runs planning, section search, attachment extraction, evidence build and synthesis.

    Every stage boundary is announced with a ``progress`` event. A run ends
    with exactly one ``complete`` or ``error`` event; on failure the error
    event carries the step that was in progress and the original exception
    is re-raised.
    """

    def __init__(self, services: ResearchServices, default_limit: int = 20, fallback_to_raw_query: bool = True):
        self.services = services
        self.default_limit = default_limit
        self.fallback_to_raw_query = fallback_to_raw_query
        self.coordinator = SynthesisStreamCoordinator(services.synthesizer)

    @classmethod
    def from_settings(cls, app_settings: AppSettings) -> "ResearchPipeline":
        return cls(
            create_services(app_settings),
            default_limit=app_settings.research.default_limit,
            fallback_to_raw_query=app_settings.research.fallback_to_raw_query,
        )

    async def run(self, request: ResearchRequest, sink: ProgressSink | None = None) -> ResearchOutcome:
        channel = ProgressChannel(sink)
        try:
            return await self._run(request, channel)
        finally:
            await channel.aclose()

    def _subqueries(self, plan: QueryPlan, query: str) -> list[str]:
        if plan.subqueries:
            return list(plan.subqueries)
        if not self.fallback_to_raw_query:
            raise PlanningError("Query planner returned no subqueries")
        logger.info("Planner returned no subqueries, using the raw query")
        return [query]

    async def _run(self, request: ResearchRequest, channel: ProgressChannel) -> ResearchOutcome:
        services = self.services
        config = services.section_config
        tracker = StepTracker(request.has_attachments)
        started = time.perf_counter()

        try:
            # Step: query planning
            tracker.enter(Step.QUERY_PLANNING)
            await channel.emit(tracker.progress(message="クエリを分析しています..."))
            plan = await services.planner.create_query_plan(request.query)
            subqueries = self._subqueries(plan, request.query)

            # Step: section search
            tracker.enter(Step.SECTION_SEARCH)
            section_total = len(config.section_keys)
            section_completed = 0
            await channel.emit(tracker.progress(section_progress=SectionProgress(completed=0, total=section_total)))

            providers = services.registry.by_ids(request.providers or [])
            limit = request.limit or self.default_limit

            def on_section_complete() -> None:
                # Called synchronously by the orchestrator; delivery is not awaited
                nonlocal section_completed
                if tracker.failed:
                    return
                section_completed += 1
                channel.emit_nowait(tracker.progress(section_progress=SectionProgress(completed=section_completed, total=section_total)))

            search = await services.orchestrator.run(
                subqueries=subqueries,
                providers=providers,
                allow_by_section=config.allowed_providers,
                targets=config.targets,
                limit=limit,
                on_section_complete=on_section_complete,
                keyword_hints=config.keyword_hints,
            )
            documents = list(search.documents)
            section_hits = {key: set(sections) for key, sections in search.section_hits.items()}

            # Step: attachment extraction
            if request.has_attachments:
                tracker.enter(Step.ATTACHMENT_EXTRACTION)
                await channel.emit(tracker.progress(message=f"{len(request.attachments)}個のファイルを処理中..."))
                if services.extractor is None:
                    raise AttachmentExtractionError("No attachment extractor configured")
                results = await extract_attachments(services.extractor, request.attachments, request.query, subqueries)
                added = merge_attachment_results(documents, section_hits, results)
                logger.info(f"Merged {added} attachment documents from {len(request.attachments)} files")

            # Step: evidence build
            tracker.enter(Step.EVIDENCE_BUILD)
            await channel.emit(tracker.progress(message="ドキュメントを整理しています..."))
            evidences = build_evidences(documents, section_hits)

            # Step: section synthesis
            tracker.enter(Step.SECTION_SYNTHESIS)
            await channel.emit(tracker.progress(message="AIが回答を生成しています..."))
            metadata = ResearchMetadata(
                used_providers=[p.id for p in providers],
                iterations=search.iterations,
                total_results=len(documents),
            )

            if not evidences:
                logger.info("No evidences found, skipping synthesis")
                markdown = render_empty_result(request.query)
                metadata.processing_time = round(time.perf_counter() - started, 3)
                response = DeepResearchResponse(query=request.query, as_of_date=request.as_of_date, sections=DeepResearchSections(), metadata=metadata)
                await channel.emit(Complete(data=markdown))
                return ResearchOutcome(markdown=markdown, response=response)

            sections = await self.coordinator.synthesize(request.query, request.as_of_date, evidences, channel)

            metadata.processing_time = round(time.perf_counter() - started, 3)
            response = DeepResearchResponse(
                query=request.query,
                as_of_date=request.as_of_date,
                sections=sections,
                evidences=evidences,
                metadata=metadata,
            )
            markdown = render_markdown(response)
            logger.info(f"Sending complete event (markdown length: {len(markdown)}, evidences: {len(evidences)})")
            await channel.emit(Complete(data=markdown, result=response))
            return ResearchOutcome(markdown=markdown, response=response)

        except asyncio.CancelledError:
            logger.info(f"Research cancelled during step {tracker.number} ({tracker.name})")
            await channel.emit(tracker.error("cancelled"))
            raise
        except Exception as e:
            logger.error(f"Research failed during step {tracker.number} ({tracker.name}): {e}")
            await channel.emit(tracker.error(str(e) or type(e).__name__))
            raise
