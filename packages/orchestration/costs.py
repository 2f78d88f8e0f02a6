"""Token usage and cost accounting per model tier, with an optional budget."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# USD per 1M tokens
MODEL_COSTS: Dict[str, Dict[str, float]] = {
    "flash-lite": {"input": 0.075, "output": 0.30},
    "flash": {"input": 0.10, "output": 0.40},
    "pro": {"input": 1.25, "output": 5.00},
}

WARNING_THRESHOLDS = (0.5, 0.8, 0.95)
WARNING_LEVELS = ("info", "warning", "critical")


@dataclass
class UsageRecord:
    input_tokens: int
    output_tokens: int
    model: str
    phase: Optional[str] = None
    operation: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def cost(self) -> float:
        return estimate_cost(self.input_tokens, self.output_tokens, self.model)


@dataclass
class BudgetWarning:
    level: str
    message: str
    current_cost: float
    budget: float
    percentage: float


@dataclass
class CostStatistics:
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost: float = 0.0
    cost_by_model: Dict[str, Dict[str, float]] = field(default_factory=dict)
    cost_by_phase: Dict[str, Dict[str, float]] = field(default_factory=dict)
    operation_count: int = 0

    @property
    def average_cost_per_operation(self) -> float:
        return self.total_cost / self.operation_count if self.operation_count else 0.0


def estimate_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    try:
        rates = MODEL_COSTS[model]
    except KeyError:
        raise ValueError(f"Unknown model tier: {model}") from None
    return input_tokens / 1_000_000 * rates["input"] + output_tokens / 1_000_000 * rates["output"]


def format_cost(cost: float) -> str:
    return f"${cost:.4f}"


def format_tokens(tokens: int) -> str:
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.2f}M"
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}K"
    return str(tokens)


class CostTracker:
    def __init__(
        self,
        budget: Optional[float] = None,
        on_warning: Optional[Callable[[BudgetWarning], None]] = None,
    ):
        self.budget = budget
        self.on_warning = on_warning
        self._history: List[UsageRecord] = []
        # Index into WARNING_THRESHOLDS of the next warning to emit.
        self._next_warning = 0

    def set_budget(self, budget: Optional[float]) -> None:
        self.budget = budget
        self._next_warning = 0
        self._check_budget()

    def record(
        self,
        input_tokens: int,
        output_tokens: int,
        model: str,
        phase: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> UsageRecord:
        if model not in MODEL_COSTS:
            raise ValueError(f"Unknown model tier: {model}")
        record = UsageRecord(input_tokens, output_tokens, model, phase, operation)
        self._history.append(record)
        self._check_budget()
        return record

    def history(self, phase: Optional[str] = None) -> List[UsageRecord]:
        if phase is None:
            return list(self._history)
        return [r for r in self._history if r.phase == phase]

    @property
    def total_cost(self) -> float:
        return sum(r.cost for r in self._history)

    def statistics(self) -> CostStatistics:
        stats = CostStatistics(
            cost_by_model={m: {"input": 0, "output": 0, "cost": 0.0} for m in MODEL_COSTS},
            operation_count=len(self._history),
        )
        for record in self._history:
            cost = record.cost
            stats.total_input_tokens += record.input_tokens
            stats.total_output_tokens += record.output_tokens
            stats.total_cost += cost
            by_model = stats.cost_by_model[record.model]
            by_model["input"] += record.input_tokens
            by_model["output"] += record.output_tokens
            by_model["cost"] += cost
            if record.phase:
                by_phase = stats.cost_by_phase.setdefault(record.phase, {"tokens": 0, "cost": 0.0})
                by_phase["tokens"] += record.input_tokens + record.output_tokens
                by_phase["cost"] += cost
        return stats

    def budget_status(self) -> Dict[str, Optional[float]]:
        spent = self.total_cost
        if self.budget is None:
            return {"budget": None, "spent": spent, "remaining": None, "percentage": 0.0}
        return {
            "budget": self.budget,
            "spent": spent,
            "remaining": max(0.0, self.budget - spent),
            "percentage": spent / self.budget * 100 if self.budget else 100.0,
        }

    def can_afford(self, estimated_cost: float) -> bool:
        if self.budget is None:
            return True
        return self.total_cost + estimated_cost <= self.budget

    def summary(self) -> str:
        stats = self.statistics()
        lines = [
            f"Total: {format_cost(stats.total_cost)}",
            f"Tokens: {format_tokens(stats.total_input_tokens)} in / "
            f"{format_tokens(stats.total_output_tokens)} out",
        ]
        if stats.cost_by_phase:
            lines.append("")
            lines.append("By Phase:")
            for phase, data in stats.cost_by_phase.items():
                lines.append(f"  {phase}: {format_cost(data['cost'])}")
        return "\n".join(lines)

    def reset(self) -> None:
        self._history.clear()
        self._next_warning = 0

    def _check_budget(self) -> None:
        if not self.budget:
            return
        ratio = self.total_cost / self.budget
        # Only the highest newly crossed threshold warns.
        for index in range(len(WARNING_THRESHOLDS) - 1, self._next_warning - 1, -1):
            if ratio >= WARNING_THRESHOLDS[index]:
                self._next_warning = index + 1
                warning = BudgetWarning(
                    level=WARNING_LEVELS[index],
                    message=f"{ratio * 100:.1f}% of budget used",
                    current_cost=self.total_cost,
                    budget=self.budget,
                    percentage=ratio * 100,
                )
                logger.warning(f"Budget {warning.level}: {warning.message}")
                if self.on_warning is not None:
                    self.on_warning(warning)
                break
