"""Character budgets for context assembly.

A ContextBudget splits a total character cap across the four context sources.
Budgets are looked up by task type in an immutable BudgetTable that callers
pass in explicitly, so a test (or a tenant) can supply its own table.

Default allocation (chars):
    Executive Brief   ->  8,000  (structured, already compressed)
    Knowledge Base    ->  8,000  (top relevant chunks only)
    Past Performance  ->  6,000  (top projects, compressed)
    Content Library   ->  4,000  (top snippets only)
    Total             -> 26,000  (~6,500 tokens)
"""

from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..config import load_budget_overrides
from ..log import get_logger

logger = get_logger("context")

TOTAL_CONTEXT_BUDGET = 26_000


class ContextBudget(BaseModel):
    model_config = ConfigDict(frozen=True)

    exec_brief: int = Field(..., ge=0)
    knowledge_base: int = Field(..., ge=0)
    past_performance: int = Field(..., ge=0)
    content_library: int = Field(..., ge=0)
    total: int = Field(TOTAL_CONTEXT_BUDGET, gt=0)

    @model_validator(mode="after")
    def check_total(self) -> "ContextBudget":
        allocated = self.exec_brief + self.knowledge_base + self.past_performance + self.content_library
        if allocated > self.total:
            raise ValueError(f"Per-source budgets ({allocated}) exceed the total cap ({self.total})")
        return self

    def for_source(self, name: str) -> int:
        return getattr(self, name)


DEFAULT_BUDGET = ContextBudget(exec_brief=8_000, knowledge_base=8_000, past_performance=6_000, content_library=4_000)


def _budget(exec_brief: int, knowledge_base: int, past_performance: int, content_library: int) -> ContextBudget:
    return ContextBudget(
        exec_brief=exec_brief,
        knowledge_base=knowledge_base,
        past_performance=past_performance,
        content_library=content_library,
    )


class BudgetTable:
    """Read-only task-type -> ContextBudget lookup with a balanced default."""

    def __init__(self, budgets: Mapping[str, ContextBudget], default: ContextBudget = DEFAULT_BUDGET):
        self._budgets = MappingProxyType({k.upper(): v for k, v in budgets.items()})
        self.default = default

    def resolve(self, task_type: Optional[str]) -> ContextBudget:
        if not task_type:
            return self.default
        return self._budgets.get(task_type.upper(), self.default)

    def __contains__(self, task_type: str) -> bool:
        return task_type.upper() in self._budgets

    def __len__(self) -> int:
        return len(self._budgets)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], base: Optional["BudgetTable"] = None) -> "BudgetTable":
        """
        Build a table from plain data (e.g. YAML). A `default` key replaces the
        default budget; every other key is a task type. Entries of `base` that
        `raw` does not mention are kept.
        """
        budgets: Dict[str, ContextBudget] = dict(base._budgets) if base else {}
        default = base.default if base else DEFAULT_BUDGET
        for key, value in (raw or {}).items():
            budget = ContextBudget(**value)
            if key.lower() == "default":
                default = budget
            else:
                budgets[key.upper()] = budget
        return cls(budgets, default=default)


# Document-type overrides shift budget toward the most relevant sources.
DEFAULT_BUDGET_TABLE = BudgetTable({
    "PAST_PERFORMANCE": _budget(6_000, 4_000, 12_000, 4_000),
    "TEAM_QUALIFICATIONS": _budget(6_000, 12_000, 4_000, 4_000),
    "TECHNICAL_PROPOSAL": _budget(7_000, 10_000, 6_000, 3_000),
    "MANAGEMENT_PROPOSAL": _budget(7_000, 10_000, 6_000, 3_000),
    "MANAGEMENT_APPROACH": _budget(7_000, 10_000, 6_000, 3_000),
    "EXECUTIVE_SUMMARY": _budget(10_000, 6_000, 6_000, 4_000),
    "UNDERSTANDING_OF_REQUIREMENTS": _budget(10_000, 8_000, 4_000, 4_000),
    "RISK_MANAGEMENT": _budget(10_000, 6_000, 6_000, 4_000),
    "COST_PROPOSAL": _budget(10_000, 8_000, 4_000, 4_000),
    "PRICE_VOLUME": _budget(10_000, 8_000, 4_000, 4_000),
    "COMPLIANCE_MATRIX": _budget(10_000, 6_000, 4_000, 6_000),
})


def load_budget_table(path: Optional[str] = None) -> BudgetTable:
    """Built-in table, overlaid with the YAML file named by CONTEXT_BUDGETS_PATH if any."""
    overrides = load_budget_overrides(path)
    if not overrides:
        return DEFAULT_BUDGET_TABLE
    logger.info(f"Loaded {len(overrides)} context budget override(s)")
    return BudgetTable.from_dict(overrides, base=DEFAULT_BUDGET_TABLE)
