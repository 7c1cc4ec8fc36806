"""Per-section search configuration: allowed providers, targets, query hints."""

from dataclasses import dataclass, field

from .models import SECTION_ORDER, SectionKey

KOKKAI_DB = "kokkai-db"
GOV_MEETING_RAG = "gov-meeting-rag"
OPENAI_WEB = "openai-web"
PDF_EXTRACT = "pdf-extract"

# Which providers each section may query
SECTION_ALLOWED_PROVIDERS: dict[SectionKey, list[str]] = {
    SectionKey.PURPOSE_OVERVIEW: [OPENAI_WEB],
    SectionKey.CURRENT_STATUS: [KOKKAI_DB, OPENAI_WEB, GOV_MEETING_RAG],
    SectionKey.TIMELINE: [KOKKAI_DB, OPENAI_WEB],
    SectionKey.KEY_POINTS: [OPENAI_WEB],
    SectionKey.BACKGROUND: [OPENAI_WEB, KOKKAI_DB],
    SectionKey.MAIN_ISSUES: [OPENAI_WEB, KOKKAI_DB, GOV_MEETING_RAG],
    # Synthesized from evidence gathered for the other sections
    SectionKey.REASONS_FOR_AMENDMENT: [],
    SectionKey.IMPACT_ANALYSIS: [KOKKAI_DB, OPENAI_WEB, GOV_MEETING_RAG],
    SectionKey.PAST_DEBATES_SUMMARY: [KOKKAI_DB],
}

# Minimum number of sources each section should end up with
SECTION_TARGET_COUNTS: dict[SectionKey, int] = {
    SectionKey.PURPOSE_OVERVIEW: 2,
    SectionKey.CURRENT_STATUS: 1,
    SectionKey.TIMELINE: 3,
    SectionKey.KEY_POINTS: 3,
    SectionKey.BACKGROUND: 2,
    SectionKey.MAIN_ISSUES: 3,
    SectionKey.REASONS_FOR_AMENDMENT: 0,
    SectionKey.IMPACT_ANALYSIS: 2,
    SectionKey.PAST_DEBATES_SUMMARY: 3,
}

# Keywords appended to the combined subqueries when searching for a section
SECTION_KEYWORD_HINTS: dict[SectionKey, list[str]] = {
    SectionKey.PURPOSE_OVERVIEW: ["概要", "目的", "趣旨"],
    SectionKey.CURRENT_STATUS: ["現状", "進捗", "最新"],
    SectionKey.TIMELINE: ["年表", "タイムライン", "経緯"],
    SectionKey.KEY_POINTS: ["要点", "ポイント"],
    SectionKey.BACKGROUND: ["背景", "狙い", "経緯"],
    SectionKey.MAIN_ISSUES: ["論点", "課題", "争点"],
    SectionKey.REASONS_FOR_AMENDMENT: [],
    SectionKey.IMPACT_ANALYSIS: ["影響", "効果"],
    SectionKey.PAST_DEBATES_SUMMARY: ["国会議事録", "質疑応答"],
}

SECTION_TITLES: dict[SectionKey, str] = {
    SectionKey.PURPOSE_OVERVIEW: "目的・概要",
    SectionKey.CURRENT_STATUS: "現状",
    SectionKey.TIMELINE: "経緯",
    SectionKey.KEY_POINTS: "要点",
    SectionKey.BACKGROUND: "背景",
    SectionKey.MAIN_ISSUES: "主要な論点",
    SectionKey.REASONS_FOR_AMENDMENT: "改正の理由",
    SectionKey.IMPACT_ANALYSIS: "影響分析",
    SectionKey.PAST_DEBATES_SUMMARY: "過去の議論",
}


@dataclass(frozen=True)
class SectionConfig:
    """Swappable per-section configuration handed to the search orchestrator."""

    allowed_providers: dict[SectionKey, list[str]] = field(default_factory=lambda: dict(SECTION_ALLOWED_PROVIDERS))
    targets: dict[SectionKey, int] = field(default_factory=lambda: dict(SECTION_TARGET_COUNTS))
    keyword_hints: dict[SectionKey, list[str]] = field(default_factory=lambda: dict(SECTION_KEYWORD_HINTS))

    @property
    def section_keys(self) -> tuple[SectionKey, ...]:
        return SECTION_ORDER


DEFAULT_SECTION_CONFIG = SectionConfig()
