"""Render research results as markdown with footnote citations."""

from .models import DeepResearchResponse
from .sections import SECTION_TITLES

EMPTY_RESULT_HINTS = (
    "- 検索キーワードを変更する",
    "- より一般的な用語を使用する",
    "- 検索対象を増やす",
)


def render_empty_result(query: str) -> str:
    """Markdown returned when no evidence was found."""
    lines = [
        f"# {query}",
        "",
        "## 検索結果",
        "",
        "検索条件に一致する情報が見つかりませんでした。",
        "",
        "以下の点をお試しください：",
        *EMPTY_RESULT_HINTS,
    ]
    return "\n".join(lines)


def render_markdown(response: DeepResearchResponse) -> str:
    """Render a response; citations become ``[^n]`` footnotes numbered by first use.

    Only evidences that have a URL can be footnoted; other citation ids are dropped.
    """
    evidence_by_id = {e.id: e for e in response.evidences}
    footnotes: dict[str, int] = {}

    for _, section in response.sections.items():
        for cid in section.citations:
            evidence = evidence_by_id.get(cid)
            if cid not in footnotes and evidence is not None and evidence.url:
                footnotes[cid] = len(footnotes) + 1

    def _marks(citations: list[str]) -> str:
        return "".join(f"[^{footnotes[cid]}]" for cid in citations if cid in footnotes)

    lines = [f"# {response.query}", ""]
    if response.as_of_date:
        lines += [f"*{response.as_of_date}時点の情報*", ""]

    for key, section in response.sections.items():
        lines += [f"## {section.title or SECTION_TITLES[key]}", "", f"{section.summary}{_marks(section.citations)}", ""]

    if footnotes:
        lines += ["---", ""]
        for cid, number in footnotes.items():
            evidence = evidence_by_id[cid]
            lines.append(f"[^{number}]: [{evidence.title or '参照元'}]({evidence.url})")

    return "\n".join(lines)
