"""Deep research over legislative proceedings with streaming progress."""

from .events import Complete, ErrorEvent, ProgressChannel, ProgressEvent, ProgressUpdate, SectionProgress, SynthesisChunk
from .models import DeepResearchResponse, DeepResearchSections, EvidenceRecord, ResearchRequest, SectionKey
from .pipeline import ResearchOutcome, ResearchPipeline, ResearchServices, Step, StepTracker

__all__ = [
    "Complete",
    "DeepResearchResponse",
    "DeepResearchSections",
    "ErrorEvent",
    "EvidenceRecord",
    "ProgressChannel",
    "ProgressEvent",
    "ProgressUpdate",
    "ResearchOutcome",
    "ResearchPipeline",
    "ResearchRequest",
    "ResearchServices",
    "SectionKey",
    "SectionProgress",
    "Step",
    "StepTracker",
    "SynthesisChunk",
]
