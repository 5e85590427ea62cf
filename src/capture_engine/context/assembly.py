"""Context assembly under a character budget.

gather() resolves the task type's budget, loads every source concurrently,
and concatenates the non-empty ones in fixed priority order under a final
hard cap. A source that raises or times out contributes nothing.
"""

import asyncio
from typing import Optional, Sequence

from ..config import get_settings
from ..log import get_logger
from ..mlops.tracing import tracer
from ..schemas.retrieval import AssembledContext, SourceContext
from .budget import BudgetTable, DEFAULT_BUDGET_TABLE
from .compress import truncate_text
from .sources import ContextRequest, ContextSource

logger = get_logger("context")


class ContextAssembler:
    def __init__(
        self,
        sources: Sequence[ContextSource],
        budget_table: BudgetTable = DEFAULT_BUDGET_TABLE,
        source_timeout: Optional[float] = None,
    ):
        # Order of `sources` is the priority order of the rendered context
        self.sources = list(sources)
        self.budget_table = budget_table
        self.source_timeout = source_timeout if source_timeout is not None else get_settings().SOURCE_TIMEOUT_SECONDS

    async def _load(self, source: ContextSource, request: ContextRequest, budget: int) -> SourceContext:
        try:
            if self.source_timeout:
                result = await asyncio.wait_for(source.load(request, budget), timeout=self.source_timeout)
            else:
                result = await source.load(request, budget)
        except asyncio.TimeoutError:
            logger.warning(f"Context source {source.name} timed out after {self.source_timeout}s")
            return SourceContext(name=source.name, error="timeout")
        except Exception as e:
            logger.warning(f"Failed to load {source.name} context: {e}")
            return SourceContext(name=source.name, error=f"{type(e).__name__}: {e}")
        # A loader must not hand back more than it was given
        if len(result.text) > budget:
            result = result.model_copy(update={"text": truncate_text(result.text, budget)})
        return result

    async def gather(self, request: ContextRequest, budget_table: Optional[BudgetTable] = None) -> AssembledContext:
        table = budget_table or self.budget_table
        budget = table.resolve(request.task_type)

        logger.info(
            f"Gathering context: org={request.org_id}, project={request.project_id or 'none'}, "
            f"opportunity={request.opportunity_id or 'none'}, task_type={request.task_type or 'default'}, "
            f"budget={budget.model_dump()}"
        )

        with tracer.span("context.assemble", span_type="RETRIEVER", attributes={"task_type": request.task_type or "default"}):
            results = await asyncio.gather(*(
                self._load(source, request, budget.for_source(source.name)) for source in self.sources
            ))

            blocks = [
                f"--- {source.title} ---\n({source.hint})\n{result.text}"
                for source, result in zip(self.sources, results)
                if result.text.strip()
            ]
            text = truncate_text("\n\n".join(blocks), budget.total)

            sizes = {r.name: len(r.text) for r in results}
            tracer.trace_context(request.task_type, sizes, len(text), budget.total)

        logger.info(
            "Context gathered: "
            + ", ".join(f"{name}={size}" for name, size in sizes.items())
            + f" chars (total={len(text)}, budget={budget.total})"
        )
        return AssembledContext(text=text, task_type=request.task_type, total_budget=budget.total, sources=list(results))
