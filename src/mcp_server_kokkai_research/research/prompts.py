"""LLM prompts for planning, attachment extraction and section synthesis."""

from .models import SECTION_ORDER, EvidenceRecord
from .sections import SECTION_TITLES

PLANNING_SYSTEM_PROMPT = """あなたは国会議事録検索システムのプランナーです。与えられた質問を分析して、効果的な検索計画を作成してください。

## ルール
1. subqueriesは質問を効果的に分解したもの（1-3個）
2. entitiesは国会議事録検索に有効な情報のみ抽出（speakers, parties, topics, meetings, positions, date_range）
3. enabled_strategiesは["vector", "structured", "statistical"]から選択
4. confidenceは解析の信頼度(0-1)
5. estimated_complexityは処理の複雑さ(1-5)

## 例
質問「岸田総理の防衛費についての発言」
→ speakers: ["岸田文雄", "内閣総理大臣"]
→ topics: ["防衛費", "防衛予算", "防衛関係費", "国防費"]
→ subqueries: ["岸田総理 防衛費", "内閣総理大臣 防衛予算"]"""


def get_planning_prompt(question: str) -> str:
    """Generate the planning prompt for a user question."""
    return f'質問: "{question}"'


def get_web_search_prompt(query: str, limit: int) -> str:
    """Instructions for a web-search model call that must answer with result JSON only."""
    return f"""以下のクエリについてウェブを包括的に検索してください: "{query}"

指示:
1. 異なる観点をカバーする最も関連性が高く多様な結果を見つける
2. 利用可能な場合は最新情報を含める
3. 信頼できる情報源（政府、ニュース、学術機関）を優先する
4. 情報源の多様性を確保 - 同一ドメインからの複数の結果を避ける

以下の形式の有効なJSONのみを返してください:
{{"results":[{{"id":string,"title":string,"url":string,"date"?:string,"content":string,"score":number}}]}}

最大{limit}件の高品質でユニークな結果を返してください。"""


EXTRACTION_SYSTEM_PROMPT = (
    "あなたは政策リサーチ用のアシスタントです。"
    "アップロードされた日本語文書から、指定されたセクションに関連するテキスト断片を抽出してください。"
    "各セクションは目的に基づいて関連度の高い段落を最大3件抽出し、"
    "ページ番号・要約テキスト・関連キーワード・関連度スコア(0-1)を含めてください。"
)


def get_extraction_prompt(query: str, pages: list[str]) -> str:
    """Generate the per-attachment extraction prompt from page texts."""
    section_lines = "\n".join(f"- {key.value}: {SECTION_TITLES[key]}" for key in SECTION_ORDER)
    page_text = "\n\n".join(f"[ページ {i + 1}]\n{text}" for i, text in enumerate(pages))
    return f"""ユーザーのリサーチクエリに基づき、文書から関連テキストを抽出してください。
各セクションでは、関連度が0.5未満の内容は除外してください。
抽出対象セクション:
{section_lines}
検索クエリ: "{query}"

## 文書
{page_text}"""


SYNTHESIS_SYSTEM_PROMPT = (
    "あなたは政策ドキュメントの編集者です。"
    "与えられた証拠（evidences）のみを根拠として、日本語で指定のセクションJSONを生成してください。"
    "出力は必ず有効なJSONのみで、余計な文言やコードフェンスは不要です。\n\n"
    "要件:\n"
    "- 各セクションは title, summary, citations を持つ。\n"
    "- citations には根拠とした evidence の id（例: e1）のみを含める。\n"
    "- 事実に確信が持てない場合は曖昧表現を避け、記載しないか「不明」とする。"
)


def format_evidence_line(evidence: EvidenceRecord) -> str:
    parts = [
        f"id:{evidence.id}",
        f"url:{evidence.url}" if evidence.url else None,
        f"date:{evidence.date}" if evidence.date else None,
        f"title:{evidence.title}" if evidence.title else None,
        f"excerpt:{evidence.excerpt}" if evidence.excerpt else None,
        f"provider:{evidence.source.provider_id}",
        f"sections:{','.join(s.value for s in evidence.section_hints)}" if evidence.section_hints else None,
    ]
    return "- " + " | ".join(p for p in parts if p)


def get_synthesis_prompt(query: str, as_of_date: str | None, evidences: list[EvidenceRecord]) -> str:
    """Generate the synthesis prompt listing every evidence and the expected JSON shape."""
    evidence_lines = "\n".join(format_evidence_line(e) for e in evidences)
    as_of_line = f"対象時点: {as_of_date}\n" if as_of_date else ""
    skeleton = ",\n".join(f'  "{key.value}": {{"title":"{SECTION_TITLES[key]}","summary":"...","citations":["eX"]}}' for key in SECTION_ORDER)
    return f"""質問: {query}
{as_of_line}
利用可能な証拠 (evidences):
{evidence_lines}

出力は必ず次のJSONオブジェクトのみ：
{{
{skeleton}
}}"""
