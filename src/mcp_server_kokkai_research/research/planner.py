"""Query planning: turn a research question into subqueries and entities."""

import logging
from typing import TYPE_CHECKING

from browser_use.llm.messages import SystemMessage, UserMessage
from pydantic import BaseModel, Field

from ..exceptions import PlanningError
from .models import PlanEntities, QueryPlan
from .prompts import PLANNING_SYSTEM_PROMPT, get_planning_prompt

if TYPE_CHECKING:
    from browser_use.llm.base import BaseChatModel

logger = logging.getLogger(__name__)


class PlannerOutput(BaseModel):
    """Structured output requested from the planning model."""

    subqueries: list[str] = Field(default_factory=list)
    entities: PlanEntities = Field(default_factory=PlanEntities)
    enabled_strategies: list[str] = Field(default_factory=lambda: ["vector"])
    confidence: float = 0.5
    estimated_complexity: int = 2


class QueryPlanner:
    """Plans a research query with a chat model."""

    def __init__(self, llm: "BaseChatModel"):
        self.llm = llm

    async def create_query_plan(self, question: str) -> QueryPlan:
        messages = [
            SystemMessage(content=PLANNING_SYSTEM_PROMPT),
            UserMessage(content=get_planning_prompt(question)),
        ]
        try:
            response = await self.llm.ainvoke(messages, output_format=PlannerOutput)
        except Exception as e:
            raise PlanningError(f"Query planning failed: {e}") from e

        output: PlannerOutput = response.completion
        subqueries = [q.strip() for q in output.subqueries if q and q.strip()]
        plan = QueryPlan(
            original_question=question,
            subqueries=subqueries,
            entities=output.entities,
            enabled_strategies=output.enabled_strategies or ["vector"],
            confidence=output.confidence,
            estimated_complexity=output.estimated_complexity,
        )

        logger.info(
            f"Query plan created: subqueries={len(plan.subqueries)} speakers={len(plan.entities.speakers)} "
            f"topics={len(plan.entities.topics)} strategies={','.join(plan.enabled_strategies)} confidence={plan.confidence:.2f}"
        )
        return plan
