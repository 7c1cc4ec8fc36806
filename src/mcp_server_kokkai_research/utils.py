"""Utilities for file persistence."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def save_research_result(
    content: str,
    results_dir: Path,
    prefix: str = "research",
    metadata: dict[str, Any] | None = None,
) -> Path:
    """Save a research report to the results directory.

    Args:
        content: Markdown report.
        results_dir: Existing directory to write into.
        prefix: Filename prefix, usually derived from the query.
        metadata: Optional metadata saved alongside in a .json file.

    Returns:
        Path to the saved markdown file.
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    safe_prefix = re.sub(r"[^\w\-]", "_", prefix)[:30]
    base = f"{timestamp}_{safe_prefix}"
    file_path = results_dir / f"{base}.md"
    if file_path.exists():
        for i in range(1, 10_000):
            candidate = results_dir / f"{base}_{i}.md"
            if not candidate.exists():
                file_path = candidate
                break
        else:
            raise RuntimeError("Failed to allocate a unique result filename after 10,000 attempts")

    file_path.write_text(content, encoding="utf-8")

    if metadata:
        meta = {"timestamp": datetime.now().isoformat(), "file": file_path.name, **metadata}
        file_path.with_suffix(".json").write_text(json.dumps(meta, indent=2, ensure_ascii=False), encoding="utf-8")

    logger.info(f"Saved result to {file_path}")
    return file_path
