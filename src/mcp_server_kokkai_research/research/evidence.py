"""Evidence building: deduplicate the document pool and number it e1..eN."""

import logging
from collections.abc import Iterable

from .models import SECTION_ORDER, DocumentResult, EvidenceRecord, SectionKey

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 400

SectionHits = dict[str, set[SectionKey]]


def document_key(doc: DocumentResult) -> str:
    """Canonical dedup key: the URL when present, else ``provider_id:id``."""
    if doc.url:
        return doc.url
    return f"{doc.source.provider_id}:{doc.id}"


def merge_section_documents(
    pool: list[DocumentResult],
    section_hits: SectionHits,
    section_key: SectionKey,
    documents: Iterable[DocumentResult],
) -> None:
    """Append documents to the pool and record which section surfaced them."""
    for doc in documents:
        pool.append(doc)
        section_hits.setdefault(document_key(doc), set()).add(section_key)


def to_evidence_record(doc: DocumentResult, evidence_id: str) -> EvidenceRecord:
    return EvidenceRecord(
        id=evidence_id,
        source=doc.source,
        url=doc.url,
        date=doc.date,
        title=doc.title,
        excerpt=doc.content[:EXCERPT_LENGTH] if doc.content else None,
        score=doc.score,
        extras=doc.extras,
    )


def build_evidences(documents: list[DocumentResult], section_hits: SectionHits) -> list[EvidenceRecord]:
    """Build numbered evidence records from the merged document pool.

    Documents are visited in arrival order; the first document for each
    dedup key gets the next id and later duplicates are dropped untouched.
    Section hints are attached in report order and omitted when empty.
    """
    seen: set[str] = set()
    evidences: list[EvidenceRecord] = []

    for doc in documents:
        key = document_key(doc)
        if key in seen:
            continue
        seen.add(key)

        record = to_evidence_record(doc, f"e{len(evidences) + 1}")
        hints = section_hits.get(key)
        if hints:
            record.section_hints = [section for section in SECTION_ORDER if section in hints]
        evidences.append(record)

    logger.info(f"Built {len(evidences)} evidences from {len(documents)} documents")
    return evidences
