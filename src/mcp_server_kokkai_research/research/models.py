"""Data models for deep research runs."""

import base64
import binascii
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models exchanged with clients; serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SectionKey(str, Enum):
    """The nine report sections, in report order."""

    PURPOSE_OVERVIEW = "purpose_overview"
    CURRENT_STATUS = "current_status"
    TIMELINE = "timeline"
    KEY_POINTS = "key_points"
    BACKGROUND = "background"
    MAIN_ISSUES = "main_issues"
    REASONS_FOR_AMENDMENT = "reasons_for_amendment"
    IMPACT_ANALYSIS = "impact_analysis"
    PAST_DEBATES_SUMMARY = "past_debates_summary"


SECTION_ORDER: tuple[SectionKey, ...] = tuple(SectionKey)


class Attachment(WireModel):
    """An uploaded file; ``content`` is base64 encoded."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    content: str
    mime_type: str = "application/pdf"

    def content_bytes(self) -> bytes:
        """Decode the base64 payload."""
        try:
            return base64.b64decode(self.content, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Attachment '{self.name}' is not valid base64: {e}") from e


class ResearchRequest(WireModel):
    """A validated research request. Immutable once accepted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    query: str
    providers: list[str] | None = None
    limit: int | None = Field(default=None, ge=1, le=100)
    attachments: list[Attachment] = Field(default_factory=list, alias="files")
    as_of_date: str | None = None

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query cannot be empty after trimming")
        return value

    @field_validator("providers")
    @classmethod
    def _providers_not_empty(cls, value: list[str] | None) -> list[str] | None:
        if value is not None and len(value) == 0:
            raise ValueError("providers must contain at least one item if specified")
        return value

    @property
    def has_attachments(self) -> bool:
        return len(self.attachments) > 0


class PlanEntities(BaseModel):
    """Entities the planner recognized in the question."""

    speakers: list[str] = Field(default_factory=list)
    parties: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    meetings: list[str] = Field(default_factory=list)
    positions: list[str] = Field(default_factory=list)
    date_range: dict[str, str] | None = None


class QueryPlan(BaseModel):
    """Output of the query planner."""

    original_question: str
    subqueries: list[str] = Field(default_factory=list)
    entities: PlanEntities = Field(default_factory=PlanEntities)
    enabled_strategies: list[str] = Field(default_factory=lambda: ["vector"])
    confidence: float = 0.5
    estimated_complexity: int = 2


class DocumentSource(WireModel):
    """Which provider produced a document."""

    provider_id: str
    type: str


class DocumentResult(WireModel):
    """One unit of retrieved evidence. Lives only for the run that produced it."""

    id: str
    title: str | None = None
    content: str = ""
    url: str | None = None
    date: str | None = None
    author: str | None = None
    score: float | None = None
    source: DocumentSource
    extras: dict[str, Any] | None = None


class EvidenceRecord(WireModel):
    """A deduplicated, numbered citation unit (``e1``, ``e2``, ...)."""

    id: str
    source: DocumentSource
    url: str | None = None
    date: str | None = None
    title: str | None = None
    excerpt: str | None = None
    score: float | None = None
    extras: dict[str, Any] | None = None
    section_hints: list[SectionKey] | None = None


class SectionSummary(WireModel):
    """Synthesized text for one section plus the evidence ids it cites."""

    title: str | None = None
    summary: str = ""
    citations: list[str] = Field(default_factory=list)


class DeepResearchSections(WireModel):
    """Per-section synthesis output, one optional entry per SectionKey."""

    model_config = ConfigDict(alias_generator=None, populate_by_name=True, extra="ignore")

    purpose_overview: SectionSummary | None = None
    current_status: SectionSummary | None = None
    timeline: SectionSummary | None = None
    key_points: SectionSummary | None = None
    background: SectionSummary | None = None
    main_issues: SectionSummary | None = None
    reasons_for_amendment: SectionSummary | None = None
    impact_analysis: SectionSummary | None = None
    past_debates_summary: SectionSummary | None = None

    def items(self) -> list[tuple[SectionKey, SectionSummary]]:
        """Present sections in report order."""
        present = []
        for key in SECTION_ORDER:
            section = getattr(self, key.value)
            if section is not None:
                present.append((key, section))
        return present


class ResearchMetadata(WireModel):
    """Run metadata reported with the final artifact."""

    used_providers: list[str] = Field(default_factory=list)
    iterations: int = 1
    total_results: int = 0
    processing_time: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    version: str = "v1"


class DeepResearchResponse(WireModel):
    """The assembled final artifact of a research run."""

    query: str
    as_of_date: str | None = None
    sections: DeepResearchSections
    evidences: list[EvidenceRecord] = Field(default_factory=list)
    metadata: ResearchMetadata = Field(default_factory=ResearchMetadata)
