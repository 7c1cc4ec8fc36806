"""Section extraction from uploaded attachments (PDF or plain text)."""

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from anyio import to_thread
from browser_use.llm.messages import SystemMessage, UserMessage
from pydantic import BaseModel, Field
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..exceptions import AttachmentExtractionError
from .evidence import SectionHits, merge_section_documents
from .models import SECTION_ORDER, Attachment, DocumentResult, DocumentSource, SectionKey
from .prompts import EXTRACTION_SYSTEM_PROMPT, get_extraction_prompt
from .sections import PDF_EXTRACT

if TYPE_CHECKING:
    from browser_use.llm.base import BaseChatModel

logger = logging.getLogger(__name__)

MIN_RELEVANCE = 0.5
MAX_PAGE_CHARS = 6000


@dataclass
class SectionDocuments:
    """Documents an attachment contributed to one section."""

    section_key: SectionKey
    documents: list[DocumentResult]


class AttachmentExtractor(Protocol):
    async def extract_by_sections(self, query: str, file_name: str, file_bytes: bytes, mime_type: str) -> list[SectionDocuments]: ...


class ExtractedSnippet(BaseModel):
    page_number: int = 0
    content: str
    relevance: float = Field(ge=0, le=1)
    keywords: list[str] = Field(default_factory=list)


class SectionSnippets(BaseModel):
    sections: list[ExtractedSnippet] = Field(default_factory=list)


class ExtractionOutput(BaseModel):
    """Structured output requested from the extraction model, one entry per section."""

    purpose_overview: SectionSnippets | None = None
    current_status: SectionSnippets | None = None
    timeline: SectionSnippets | None = None
    key_points: SectionSnippets | None = None
    background: SectionSnippets | None = None
    main_issues: SectionSnippets | None = None
    reasons_for_amendment: SectionSnippets | None = None
    impact_analysis: SectionSnippets | None = None
    past_debates_summary: SectionSnippets | None = None


def read_pages(file_bytes: bytes, mime_type: str) -> list[str]:
    """Return page texts; non-PDF text attachments are a single page."""
    if mime_type == "application/pdf":
        try:
            reader = PdfReader(io.BytesIO(file_bytes))
            return [(page.extract_text() or "")[:MAX_PAGE_CHARS] for page in reader.pages]
        except PdfReadError as e:
            raise AttachmentExtractionError(f"Could not read PDF: {e}") from e
    if mime_type.startswith("text/"):
        return [file_bytes.decode("utf-8", errors="replace")[:MAX_PAGE_CHARS]]
    raise AttachmentExtractionError(f"Unsupported attachment type: {mime_type}")


def convert_to_section_results(output: ExtractionOutput, file_name: str, min_relevance: float = MIN_RELEVANCE) -> list[SectionDocuments]:
    """Turn model output into documents, dropping snippets below ``min_relevance``."""
    display_name = file_name or "アップロードされたPDF"
    results: list[SectionDocuments] = []

    for section_key in SECTION_ORDER:
        content = getattr(output, section_key.value)
        if content is None or not content.sections:
            continue

        docs = []
        for index, item in enumerate(content.sections):
            if item.relevance < min_relevance:
                continue
            page = item.page_number
            docs.append(
                DocumentResult(
                    id=f"pdf-{section_key.value}-p{page}-{index}",
                    title=f"{display_name} - ページ {page}",
                    url=f"{display_name}#page{page}",
                    content=item.content,
                    score=item.relevance,
                    source=DocumentSource(provider_id=PDF_EXTRACT, type=PDF_EXTRACT),
                    extras={
                        "page_number": page,
                        "keywords": item.keywords,
                        "section_key": section_key.value,
                        "relevance": item.relevance,
                    },
                )
            )
        if docs:
            results.append(SectionDocuments(section_key=section_key, documents=docs))

    total = sum(len(r.documents) for r in results)
    logger.info(f"Extraction complete for {display_name}: {total} documents across {len(results)} sections")
    return results


class LLMAttachmentExtractor:
    """Extracts per-section snippets from an attachment with a chat model."""

    def __init__(self, llm: "BaseChatModel", min_relevance: float = MIN_RELEVANCE):
        self.llm = llm
        self.min_relevance = min_relevance

    async def extract_by_sections(self, query: str, file_name: str, file_bytes: bytes, mime_type: str) -> list[SectionDocuments]:
        logger.info(f"Extracting sections from {file_name} ({mime_type}, {len(file_bytes)} bytes)")
        pages = await to_thread.run_sync(read_pages, file_bytes, mime_type)
        if not any(p.strip() for p in pages):
            logger.warning(f"No extractable text in {file_name}")
            return []

        messages = [
            SystemMessage(content=EXTRACTION_SYSTEM_PROMPT),
            UserMessage(content=get_extraction_prompt(query, pages)),
        ]
        try:
            response = await self.llm.ainvoke(messages, output_format=ExtractionOutput)
        except Exception as e:
            raise AttachmentExtractionError(f"Failed to extract sections from {file_name}: {e}") from e

        return convert_to_section_results(response.completion, file_name, self.min_relevance)


async def extract_attachments(
    extractor: AttachmentExtractor,
    attachments: list[Attachment],
    query: str,
    subqueries: list[str],
) -> list[SectionDocuments]:
    """Run the extractor on every attachment concurrently.

    Results are flattened in attachment order. The first extractor
    failure propagates.
    """
    combined_query = " ".join([query, *subqueries])
    decoded = [(a.name, a.content_bytes(), a.mime_type) for a in attachments]
    per_attachment = await asyncio.gather(
        *(
            extractor.extract_by_sections(query=combined_query, file_name=name, file_bytes=data, mime_type=mime_type)
            for name, data, mime_type in decoded
        )
    )
    return [section for sections in per_attachment for section in sections]


def merge_attachment_results(pool: list[DocumentResult], section_hits: SectionHits, results: list[SectionDocuments]) -> int:
    """Merge extracted documents into the running pool; returns how many were added."""
    added = 0
    for result in results:
        merge_section_documents(pool, section_hits, result.section_key, result.documents)
        added += len(result.documents)
    return added
