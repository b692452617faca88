"""Assemble tabular PDF reports of expenses and income.

Row and column assembly is plain Python so it can be checked without a PDF
engine; ``render_pdf`` hands the finished table to a Jinja2 template and
WeasyPrint for layout, pagination and styling.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional, Sequence

from jinja2 import Environment

from filters import CombinedEntry
from formatting import format_amount, format_long_date, format_timestamp
from models import Expense, Income, TransactionType

if TYPE_CHECKING:  # pragma: no cover
    from weasyprint import CSS, HTML  # noqa: F401


logger = logging.getLogger(__name__)

MISSING = "N/A"

HEADER_COLOR = "#16a085"


@dataclass(frozen=True)
class Column:
    title: str
    width_pct: int
    align: str = "left"


EXPENSE_COLUMNS = (
    Column("Date", 13),
    Column("Category", 12),
    Column("Sub-Cat", 10),
    Column("Amount", 10, "right"),
    Column("Description", 25),
    Column("Tags", 12),
    Column("Split Details", 18),
)

INCOME_COLUMNS = (
    Column("Date", 16),
    Column("Source", 18),
    Column("Amount", 14, "right"),
    Column("Description", 34),
    Column("Tags", 18),
)

COMBINED_COLUMNS = (
    Column("Type", 9),
    Column("Date", 14),
    Column("Description", 30),
    Column("Category/Source", 17),
    Column("Amount", 12, "right"),
    Column("Tags", 18),
)


@dataclass
class PdfReport:
    title: str
    columns: Sequence[Column]
    rows: list[list[str]]
    generated_at: datetime
    summary: list[tuple[str, str]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _tags_text(item) -> str:
    names = [tag.name for tag in (item.tags or [])]
    return ", ".join(names) if names else MISSING


def split_details_text(expense: Expense) -> str:
    if not expense.is_split:
        return "No"
    if expense.split_details:
        text = "\n".join(
            f"{detail.person_name}: {format_amount(detail.amount_cents)}"
            for detail in expense.split_details
        )
    else:
        text = "Yes (details not specified)"
    if expense.split_note:
        text += f"\nNote: {expense.split_note}"
    return text


def expense_rows(expenses: Sequence[Expense]) -> list[list[str]]:
    return [
        [
            format_timestamp(exp.occurred_at),
            exp.category,
            exp.sub_category or MISSING,
            format_amount(exp.amount_cents),
            exp.description or MISSING,
            _tags_text(exp),
            split_details_text(exp),
        ]
        for exp in expenses
    ]


def income_rows(incomes: Sequence[Income]) -> list[list[str]]:
    return [
        [
            format_timestamp(inc.occurred_at),
            inc.source,
            format_amount(inc.amount_cents),
            inc.description or MISSING,
            _tags_text(inc),
        ]
        for inc in incomes
    ]


def combined_rows(entries: Sequence[CombinedEntry]) -> list[list[str]]:
    return [
        [
            "Income" if entry.kind == TransactionType.income else "Expense",
            format_timestamp(entry.occurred_at),
            entry.record.description or "-",
            entry.label,
            format_amount(entry.amount_cents),
            _tags_text(entry.record) if entry.record.tags else "-",
        ]
        for entry in entries
    ]


def report_title(kind_label: str, today: date, period_label: Optional[str] = None) -> str:
    if period_label and period_label != "All Time":
        return f"{kind_label} Report ({period_label})"
    return f"{kind_label} Report as of {format_long_date(today)}"


def report_filename(prefix: str, today: date) -> str:
    return f"{prefix}_Report_{today.strftime('%Y%m%d')}.pdf"


def build_report(
    items: Sequence,
    kind: Optional[TransactionType],
    title: str,
    *,
    summary: Optional[list[tuple[str, str]]] = None,
    generated_at: Optional[datetime] = None,
) -> PdfReport:
    """Build the table for ``kind``; ``None`` means a mixed list of entries."""
    if not items:
        raise ValueError("No data to export")
    if kind == TransactionType.expense:
        columns, rows = EXPENSE_COLUMNS, expense_rows(items)
    elif kind == TransactionType.income:
        columns, rows = INCOME_COLUMNS, income_rows(items)
    else:
        columns, rows = COMBINED_COLUMNS, combined_rows(items)
    return PdfReport(
        title=title,
        columns=columns,
        rows=rows,
        generated_at=generated_at or datetime.now(),
        summary=summary or [],
    )


REPORT_CSS = f"""
    @page {{
        size: A4 landscape;
        margin: 14mm 12mm 16mm 12mm;
        @bottom-center {{
            content: "Page " counter(page) " of " counter(pages);
            color: #64748b;
            font-size: 8pt;
        }}
    }}
    body {{
        font-family: "DejaVu Sans", Helvetica, Arial, sans-serif;
        font-size: 8pt;
        color: #0f172a;
    }}
    h1 {{
        font-size: 18pt;
        margin: 0 0 2mm 0;
    }}
    .meta {{
        color: #64748b;
        font-size: 9pt;
        margin-bottom: 4mm;
    }}
    .summary span {{
        margin-right: 8mm;
        font-size: 10pt;
    }}
    table {{
        width: 100%;
        border-collapse: collapse;
        table-layout: fixed;
        margin-top: 4mm;
    }}
    thead {{
        display: table-header-group;
    }}
    th {{
        background: {HEADER_COLOR};
        color: #fff;
        text-align: left;
        padding: 1.5mm;
        border: 0.5pt solid #cbd5e1;
    }}
    td {{
        padding: 1.5mm;
        border: 0.5pt solid #cbd5e1;
        vertical-align: top;
        white-space: pre-line;
        overflow-wrap: break-word;
    }}
    tr {{
        page-break-inside: avoid;
    }}
    .right {{
        text-align: right;
    }}
"""


def render_pdf(report: PdfReport, env: Environment, *, base_url: Optional[str] = None) -> bytes:
    try:
        from weasyprint import CSS, HTML
    except (ImportError, OSError) as exc:
        raise RuntimeError(
            "PDF export requires WeasyPrint system dependencies; install them for your OS and retry."
        ) from exc

    started = datetime.now()
    html = env.get_template("report.html").render(report=report)
    pdf_bytes = HTML(string=html, base_url=base_url).write_pdf(
        stylesheets=[CSS(string=REPORT_CSS)]
    )
    duration = (datetime.now() - started).total_seconds()
    logger.info(
        f"report_generated: rows={report.row_count} "
        f"pdf_size_bytes={len(pdf_bytes)} pdf_duration={duration:.2f}s"
    )
    return pdf_bytes
