from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, joinedload

from budgets import BudgetProgress, budget_progress, sort_budgets
from csv_utils import export_expenses_csv, export_incomes_csv, parse_csv
from filters import (
    CombinedEntry,
    FilterState,
    SortState,
    apply_filters,
    filter_and_sort,
    has_active_filters,
    search_combined,
    selection_period_label,
    total_amount_cents,
)
from formatting import format_currency
from models import (
    Budget,
    Expense,
    ExpenseSplitDetail,
    Income,
    Tag,
    TransactionType,
    UserCategory,
    UserSubCategory,
    expense_tags,
    income_tags,
)
from pdf_export import PdfReport, build_report, report_filename, report_title
from periods import local_today, month_bounds, month_label
from schemas import (
    BudgetIn,
    CategoryIn,
    ExpenseIn,
    ImportedExpense,
    IncomeIn,
    SubCategoryIn,
)


logger = logging.getLogger(__name__)


PRESET_EXPENSE_CATEGORIES: dict[str, list[str]] = {
    "Bills": ["Electricity", "Water", "ACT Internet", "Airtel", "Other Bill"],
    "Petrol": ["Splendor", "Dominar", "Santro", "Other Vehicle"],
    "Food": ["Swiggy", "Zomato", "Restaurant", "Street Food", "Other Food"],
    "Groceries": ["Store Purchase", "Online Groceries"],
    "Online Shopping": ["Amazon", "Flipkart", "Myntra", "Other Online Store"],
}

KIND_LABELS = {
    TransactionType.expense: "Expenses",
    TransactionType.income: "Income",
}


def get_current_user_id() -> int:
    return 1


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class TagService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Tag]:
        stmt = select(Tag).where(Tag.user_id == self.user_id).order_by(Tag.name)
        return self.session.scalars(stmt).all()

    def get_or_create(self, name: str) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")

        stmt = select(Tag).where(
            Tag.user_id == self.user_id, func.lower(Tag.name) == clean_name.lower()
        )
        existing = self.session.scalar(stmt)
        if existing:
            return existing

        tag = Tag(user_id=self.user_id, name=clean_name)
        self.session.add(tag)
        self.session.flush()
        return tag

    def resolve_tags(self, names: Sequence[str]) -> list[Tag]:
        tags: list[Tag] = []
        tag_ids: set[int] = set()
        for name in names:
            if not name.strip():
                continue
            tag = self.get_or_create(name)
            if tag.id not in tag_ids:
                tags.append(tag)
                tag_ids.add(tag.id)
        return tags

    def delete(self, tag_id: int) -> None:
        tag = self.session.get(Tag, tag_id)
        if not tag or tag.user_id != self.user_id:
            raise ValueError("Tag not found")

        self.session.execute(delete(expense_tags).where(expense_tags.c.tag_id == tag.id))
        self.session.execute(delete(income_tags).where(income_tags.c.tag_id == tag.id))
        self.session.delete(tag)
        self.session.commit()


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_user(self, type: Optional[TransactionType] = None) -> list[UserCategory]:
        stmt = (
            select(UserCategory)
            .options(joinedload(UserCategory.sub_categories))
            .where(UserCategory.user_id == self.user_id)
            .order_by(UserCategory.type, UserCategory.name)
        )
        if type:
            stmt = stmt.where(UserCategory.type == type)
        return self.session.scalars(stmt).unique().all()

    def options(self, type: TransactionType) -> list[str]:
        """Preset plus user-defined names, de-duplicated and sorted."""
        names: list[str] = []
        if type == TransactionType.expense:
            names.extend(PRESET_EXPENSE_CATEGORIES)
        for category in self.list_user(type):
            if category.name not in names:
                names.append(category.name)
        return sorted(names, key=str.lower)

    def get(self, category_id: int) -> UserCategory:
        category = self.session.get(UserCategory, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> UserCategory:
        clean_name = data.name.strip()
        if not clean_name:
            raise ValueError("Category name cannot be empty")
        if data.type == TransactionType.expense and clean_name.lower() in {
            name.lower() for name in PRESET_EXPENSE_CATEGORIES
        }:
            raise ValueError("Category with this name already exists")
        existing = self.session.scalar(
            select(UserCategory).where(
                UserCategory.user_id == self.user_id,
                UserCategory.type == data.type,
                func.lower(UserCategory.name) == clean_name.lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = UserCategory(user_id=self.user_id, name=clean_name, type=data.type)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def rename(self, category_id: int, name: str) -> UserCategory:
        category = self.get(category_id)
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Category name cannot be empty")
        duplicate = self.session.scalar(
            select(UserCategory).where(
                UserCategory.user_id == self.user_id,
                UserCategory.type == category.type,
                func.lower(UserCategory.name) == clean_name.lower(),
                UserCategory.id != category_id,
            )
        )
        if duplicate:
            raise ValueError("Category with this name already exists")
        category.name = clean_name
        self.session.commit()
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.delete(category)
        self.session.commit()

    def add_sub_category(self, category_id: int, data: SubCategoryIn) -> UserSubCategory:
        category = self.get(category_id)
        clean_name = data.name.strip()
        if not clean_name:
            raise ValueError("Sub-category name cannot be empty")
        if any(sub.name.lower() == clean_name.lower() for sub in category.sub_categories):
            raise ValueError("Sub-category with this name already exists")
        sub = UserSubCategory(
            user_id=self.user_id, category_id=category.id, name=clean_name
        )
        self.session.add(sub)
        self.session.commit()
        self.session.refresh(sub)
        return sub

    def _get_sub_category(self, sub_category_id: int) -> UserSubCategory:
        sub = self.session.get(UserSubCategory, sub_category_id)
        if not sub or sub.user_id != self.user_id:
            raise ValueError("Sub-category not found")
        return sub

    def rename_sub_category(self, sub_category_id: int, data: SubCategoryIn) -> UserSubCategory:
        sub = self._get_sub_category(sub_category_id)
        clean_name = data.name.strip()
        if not clean_name:
            raise ValueError("Sub-category name cannot be empty")
        siblings = self.get(sub.category_id).sub_categories
        if any(
            other.id != sub.id and other.name.lower() == clean_name.lower()
            for other in siblings
        ):
            raise ValueError("Sub-category with this name already exists")
        sub.name = clean_name
        self.session.commit()
        return sub

    def delete_sub_category(self, sub_category_id: int) -> None:
        sub = self._get_sub_category(sub_category_id)
        self.session.delete(sub)
        self.session.commit()

    def sub_categories_for(self, name: str) -> list[str]:
        if name in PRESET_EXPENSE_CATEGORIES:
            return list(PRESET_EXPENSE_CATEGORIES[name])
        category = self.session.scalar(
            select(UserCategory)
            .options(joinedload(UserCategory.sub_categories))
            .where(
                UserCategory.user_id == self.user_id,
                UserCategory.type == TransactionType.expense,
                UserCategory.name == name,
            )
        )
        if not category:
            return []
        return [sub.name for sub in category.sub_categories]

    def resolve_name(self, raw_name: str, type: TransactionType) -> str:
        """Snap ``raw_name`` onto a known category when it is off by case or one edit."""
        clean_name = raw_name.strip()
        input_lower = clean_name.lower()
        known = self.options(type)
        for name in known:
            if name.lower() == input_lower:
                return name

        best_distance: Optional[int] = None
        best: list[str] = []
        for name in known:
            dist = int(Levenshtein.distance(input_lower, name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [name]
            elif dist == best_distance:
                best.append(name)
        if best_distance is not None and best_distance <= 1 and len(best) == 1:
            return best[0]
        if best_distance is not None and best_distance <= 1:
            logger.info(
                f"category_ambiguous: input={clean_name!r} matches={sorted(best)}"
            )
        return clean_name


class ExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _base_query(self):
        return (
            select(Expense)
            .options(joinedload(Expense.tags), joinedload(Expense.split_details))
            .where(Expense.user_id == self.user_id)
        )

    @staticmethod
    def _validate_split(data: ExpenseIn) -> None:
        if data.split_details and not data.is_split:
            raise ValueError("Split details require a split expense")
        split_total = sum(detail.amount_cents for detail in data.split_details)
        if split_total > data.amount_cents:
            raise ValueError("Split amounts exceed the expense total")

    def _apply(self, expense: Expense, data: ExpenseIn) -> None:
        expense.date = data.date
        expense.occurred_at = data.occurred_at
        expense.amount_cents = data.amount_cents
        expense.category = data.category.strip()
        expense.sub_category = _clean_optional(data.sub_category)
        expense.description = _clean_optional(data.description)
        expense.is_split = data.is_split
        expense.split_note = _clean_optional(data.split_note) if data.is_split else None
        expense.split_details = [
            ExpenseSplitDetail(
                user_id=self.user_id,
                person_name=detail.person_name.strip(),
                amount_cents=detail.amount_cents,
            )
            for detail in data.split_details
        ]
        expense.tags = TagService(self.session, self.user_id).resolve_tags(data.tags)

    def create(self, data: ExpenseIn) -> Expense:
        self._validate_split(data)
        expense = Expense(user_id=self.user_id)
        self._apply(expense, data)
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalars(
            self._base_query().where(Expense.id == expense_id)
        ).unique().first()
        if not expense:
            raise ValueError("Expense not found")
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        self._validate_split(data)
        expense = self.get(expense_id)
        self._apply(expense, data)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.session.get(Expense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise ValueError("Expense not found")
        expense.tags = []
        self.session.delete(expense)
        self.session.commit()

    def list_all(self) -> list[Expense]:
        stmt = self._base_query().order_by(Expense.occurred_at.desc(), Expense.id.desc())
        return self.session.scalars(stmt).unique().all()

    def for_month(self, year: int, month: int) -> list[Expense]:
        period = month_bounds(year, month)
        stmt = (
            self._base_query()
            .where(Expense.date.between(period.start, period.end))
            .order_by(Expense.occurred_at.desc(), Expense.id.desc())
        )
        return self.session.scalars(stmt).unique().all()

    def years_with_data(self) -> list[int]:
        dates = self.session.scalars(
            select(Expense.date).where(Expense.user_id == self.user_id).distinct()
        ).all()
        return sorted({d.year for d in dates}, reverse=True)


class IncomeService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _apply(self, income: Income, data: IncomeIn) -> None:
        income.date = data.date
        income.occurred_at = data.occurred_at
        income.amount_cents = data.amount_cents
        income.source = data.source.strip()
        income.description = _clean_optional(data.description)
        income.tags = TagService(self.session, self.user_id).resolve_tags(data.tags)

    def create(self, data: IncomeIn) -> Income:
        income = Income(user_id=self.user_id)
        self._apply(income, data)
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        return income

    def get(self, income_id: int) -> Income:
        income = self.session.scalars(
            select(Income)
            .options(joinedload(Income.tags))
            .where(Income.user_id == self.user_id, Income.id == income_id)
        ).unique().first()
        if not income:
            raise ValueError("Income not found")
        return income

    def update(self, income_id: int, data: IncomeIn) -> Income:
        income = self.get(income_id)
        self._apply(income, data)
        self.session.commit()
        self.session.refresh(income)
        return income

    def delete(self, income_id: int) -> None:
        income = self.session.get(Income, income_id)
        if not income or income.user_id != self.user_id:
            raise ValueError("Income not found")
        income.tags = []
        self.session.delete(income)
        self.session.commit()

    def list_all(self) -> list[Income]:
        stmt = (
            select(Income)
            .options(joinedload(Income.tags))
            .where(Income.user_id == self.user_id)
            .order_by(Income.occurred_at.desc(), Income.id.desc())
        )
        return self.session.scalars(stmt).unique().all()


@dataclass
class CombinedHistory:
    entries: list[CombinedEntry]
    total_income_cents: int
    total_expense_cents: int

    @property
    def net_cents(self) -> int:
        return self.total_income_cents - self.total_expense_cents


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def combined(self, search: str = "") -> CombinedHistory:
        entries = [
            CombinedEntry(TransactionType.expense, exp)
            for exp in ExpenseService(self.session, self.user_id).list_all()
        ]
        entries.extend(
            CombinedEntry(TransactionType.income, inc)
            for inc in IncomeService(self.session, self.user_id).list_all()
        )
        entries.sort(key=lambda entry: entry.occurred_at, reverse=True)
        entries = search_combined(entries, search)
        return CombinedHistory(
            entries=entries,
            total_income_cents=sum(
                e.amount_cents for e in entries if e.kind == TransactionType.income
            ),
            total_expense_cents=sum(
                e.amount_cents for e in entries if e.kind == TransactionType.expense
            ),
        )


@dataclass
class MonthSummary:
    label: str
    expenses: list[Expense]
    total_cents: int


class DashboardService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def current_month(self, today: Optional[date] = None) -> MonthSummary:
        today = today or local_today()
        expenses = ExpenseService(self.session, self.user_id).for_month(
            today.year, today.month
        )
        return MonthSummary(
            label=month_label(today.year, today.month),
            expenses=expenses,
            total_cents=total_amount_cents(expenses),
        )


class HistoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def years_with_data(self, today: Optional[date] = None) -> list[int]:
        today = today or local_today()
        years = set(ExpenseService(self.session, self.user_id).years_with_data())
        years.add(today.year)
        return sorted(years, reverse=True)

    def for_selection(self, year: int, month: int) -> MonthSummary:
        expenses = apply_filters(
            ExpenseService(self.session, self.user_id).list_all(),
            FilterState(selected_year=year, selected_month=month),
            TransactionType.expense,
        )
        if month:
            label = date(year or 2000, month, 1).strftime("%B")
            label = f"{label} {year}" if year else f"{label} (All Years)"
        else:
            label = f"Year {year}" if year else "All Time"
        return MonthSummary(
            label=label, expenses=expenses, total_cents=total_amount_cents(expenses)
        )


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_for_month(self, year: int, month: int) -> list[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.year == year,
            Budget.month == month,
        )
        return sort_budgets(self.session.scalars(stmt).all())

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise ValueError("Budget not found")
        return budget

    def _check_scope(
        self, data: BudgetIn, category: Optional[str], exclude_id: Optional[int] = None
    ) -> None:
        if category is not None:
            known = CategoryService(self.session, self.user_id).options(
                TransactionType.expense
            )
            if category not in known:
                raise ValueError("Category not found")
        stmt = select(Budget.id).where(
            Budget.user_id == self.user_id,
            Budget.year == data.year,
            Budget.month == data.month,
            Budget.category.is_(None) if category is None else Budget.category == category,
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise ValueError("A budget for this category/period already exists")

    def create(self, data: BudgetIn) -> Budget:
        category = _clean_optional(data.category)
        self._check_scope(data, category)
        budget = Budget(
            user_id=self.user_id,
            year=data.year,
            month=data.month,
            category=category,
            amount_cents=data.amount_cents,
            description=_clean_optional(data.description),
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetIn) -> Budget:
        budget = self.get(budget_id)
        category = _clean_optional(data.category)
        self._check_scope(data, category, exclude_id=budget.id)
        budget.year = data.year
        budget.month = data.month
        budget.category = category
        budget.amount_cents = data.amount_cents
        budget.description = _clean_optional(data.description)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def progress_for_month(self, year: int, month: int) -> list[BudgetProgress]:
        budgets = self.list_for_month(year, month)
        expenses = ExpenseService(self.session, self.user_id).for_month(year, month)
        return [budget_progress(budget, expenses) for budget in budgets]


@dataclass
class ImportPreview:
    rows: list[ImportedExpense]
    warnings: list[str] = field(default_factory=list)


@dataclass
class ImportStats:
    total: int
    imported: int
    skipped: int
    warnings: list[str] = field(default_factory=list)


class CSVImportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def preview(self, content: str) -> ImportPreview:
        rows, warnings = parse_csv(content)
        categories = CategoryService(self.session, self.user_id)
        resolved = [
            row.model_copy(
                update={
                    "category": categories.resolve_name(
                        row.category, TransactionType.expense
                    )
                }
            )
            for row in rows
        ]
        return ImportPreview(rows=resolved, warnings=warnings)

    def commit(self, content: str) -> ImportStats:
        preview = self.preview(content)
        if not preview.rows:
            raise ValueError("No valid expenses to import")

        tag_service = TagService(self.session, self.user_id)
        for row in preview.rows:
            expense = Expense(
                user_id=self.user_id,
                date=row.date,
                occurred_at=row.occurred_at,
                amount_cents=row.amount_cents,
                category=row.category,
                sub_category=row.sub_category,
                description=row.description,
                is_split=row.is_split,
                split_note=row.split_note if row.is_split else None,
            )
            expense.tags = tag_service.resolve_tags(row.tags)
            self.session.add(expense)
        self.session.commit()

        skipped = len(preview.warnings)
        stats = ImportStats(
            total=len(preview.rows) + skipped,
            imported=len(preview.rows),
            skipped=skipped,
            warnings=preview.warnings,
        )
        logger.info(
            f"csv_import: rows={stats.total} imported={stats.imported} skipped={stats.skipped}"
        )
        return stats


class ReportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def records(self, kind: TransactionType) -> list:
        if kind == TransactionType.expense:
            return ExpenseService(self.session, self.user_id).list_all()
        return IncomeService(self.session, self.user_id).list_all()

    def filtered(
        self, kind: TransactionType, filters: FilterState, sort: SortState
    ) -> list:
        return filter_and_sort(self.records(kind), filters, sort, kind)

    def export_pdf(
        self,
        kind: TransactionType,
        filters: FilterState,
        sort: SortState,
        today: Optional[date] = None,
    ) -> tuple[PdfReport, str]:
        today = today or local_today()
        items = self.filtered(kind, filters, sort)
        label = KIND_LABELS[kind]
        period_label = (
            selection_period_label(filters, today) if has_active_filters(filters) else None
        )
        report = build_report(
            items,
            kind,
            report_title(label, today, period_label),
            summary=[
                ("Entries", str(len(items))),
                ("Total", format_currency(total_amount_cents(items))),
            ],
        )
        return report, report_filename(label, today)

    def export_combined_pdf(
        self, search: str = "", today: Optional[date] = None
    ) -> tuple[PdfReport, str]:
        today = today or local_today()
        history = TransactionService(self.session, self.user_id).combined(search)
        report = build_report(
            history.entries,
            None,
            report_title("Transactions", today),
            summary=[
                ("Total Income", format_currency(history.total_income_cents)),
                ("Total Expenses", format_currency(history.total_expense_cents)),
                ("Net Balance", format_currency(history.net_cents)),
            ],
        )
        return report, report_filename("Transactions", today)

    def export_csv(
        self,
        kind: TransactionType,
        filters: FilterState,
        sort: SortState,
        today: Optional[date] = None,
    ) -> tuple[str, str]:
        today = today or local_today()
        items = self.filtered(kind, filters, sort)
        if kind == TransactionType.expense:
            text = export_expenses_csv(items)
        else:
            text = export_incomes_csv(items)
        filename = f"{KIND_LABELS[kind]}_{today.strftime('%Y%m%d')}.csv"
        return text, filename
