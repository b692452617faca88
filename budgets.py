from dataclasses import dataclass
from typing import Iterable

from models import Budget, Expense


OVERALL_LABEL = "Overall Budget"


@dataclass(frozen=True)
class BudgetProgress:
    budget: Budget
    spent_cents: int

    @property
    def label(self) -> str:
        return self.budget.category or OVERALL_LABEL

    @property
    def remaining_cents(self) -> int:
        return self.budget.amount_cents - self.spent_cents

    @property
    def percentage(self) -> float:
        if self.budget.amount_cents <= 0:
            return 0.0
        return min(self.spent_cents / self.budget.amount_cents * 100, 100.0)

    @property
    def is_over_budget(self) -> bool:
        return self.spent_cents > self.budget.amount_cents


def spent_for_budget(budget: Budget, expenses: Iterable[Expense]) -> int:
    if budget.category:
        return sum(exp.amount_cents for exp in expenses if exp.category == budget.category)
    return sum(exp.amount_cents for exp in expenses)


def budget_progress(budget: Budget, expenses: Iterable[Expense]) -> BudgetProgress:
    return BudgetProgress(budget=budget, spent_cents=spent_for_budget(budget, expenses))


def sort_budgets(budgets: Iterable[Budget]) -> list[Budget]:
    return sorted(
        budgets,
        key=lambda b: (b.category is not None, (b.category or "").lower(), b.id or 0),
    )
