import csv
import logging
import re
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Optional, Sequence

from pydantic import ValidationError

from models import Expense, Income
from schemas import ImportedExpense


logger = logging.getLogger(__name__)


class CSVImportError(ValueError):
    pass


HEADER_MAPPINGS: dict[str, str] = {
    "date": "expense_date",
    "transaction_date": "expense_date",
    "trans_date": "expense_date",
    "expense_date": "expense_date",
    "amount": "amount",
    "cost": "amount",
    "price": "amount",
    "value": "amount",
    "category": "category",
    "type": "category",
    "expense_type": "category",
    "transaction_type": "category",
    "source": "category",
    "description": "description",
    "desc": "description",
    "notes": "description",
    "memo": "description",
    "sub_category": "sub_category",
    "subcategory": "sub_category",
    "sub-category": "sub_category",
    "tags": "tags",
    "labels": "tags",
    "is_split": "is_split",
    "split": "is_split",
    "split_note": "split_note",
    "split_details": "split_note",
}

REQUIRED_FIELDS = ("expense_date", "amount", "category")
KNOWN_FIELDS = frozenset(HEADER_MAPPINGS.values())

# tried in order; day-first wins when a date is ambiguous
DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%m-%d-%Y",
    "%d.%m.%Y",
    "%m.%d.%Y",
)

TRUTHY = {"1", "true", "yes", "y"}

IMPORT_TIME = time(12, 0)


def normalize_header(header: str) -> str:
    normalized = header.lower().strip()
    return HEADER_MAPPINGS.get(normalized, normalized)


def validate_headers(headers: Sequence[str]) -> bool:
    normalized = {normalize_header(h) for h in headers}
    return all(required in normalized for required in REQUIRED_FIELDS)


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date format: {value}. Please use YYYY-MM-DD format.")


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    clean = value.strip()
    for symbol in ("₹", "€", "$", "Rs.", "Rs", "INR"):
        clean = clean.replace(symbol, "")
    clean = clean.replace(" ", "").replace("\u00a0", "")
    if "," in clean:
        if "." in clean and clean.rfind(",") > clean.rfind("."):
            # 1.234,56
            clean = clean.replace(".", "").replace(",", ".")
        elif (
            "." in clean
            or clean.count(",") > 1
            or len(clean.rsplit(",", 1)[1]) == 3
        ):
            # 1,234.56 / 12,34,567 / 1,250
            clean = clean.replace(",", "")
        else:
            clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value.strip() or '(empty)'}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value.strip()}")
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def split_tags(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in re.split(r"[;,|]", value) if part.strip()]


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def read_csv(content: str) -> tuple[list[dict[str, str]], list[str]]:
    """Map each data row onto the known fields.

    Rows missing a required value or carrying an unparseable date are
    skipped; the returned warnings say which line and why.
    """
    content = content.lstrip("\ufeff")
    reader = csv.reader(StringIO(content))
    header: Optional[list[str]] = None
    for raw_header in reader:
        if any(cell.strip() for cell in raw_header):
            header = [normalize_header(cell) for cell in raw_header]
            break
    if header is None:
        raise CSVImportError("CSV file is empty")
    if not validate_headers(header):
        raise CSVImportError(
            "Required headers missing. Need: date/expense_date, amount, category"
        )

    rows: list[dict[str, str]] = []
    warnings: list[str] = []
    for values in reader:
        line = reader.line_num
        if not any(value.strip() for value in values):
            continue
        row: dict[str, str] = {}
        for idx, name in enumerate(header):
            if name in KNOWN_FIELDS and name not in row:
                row[name] = values[idx].strip() if idx < len(values) else ""

        if not all(row.get(name) for name in REQUIRED_FIELDS):
            message = f"Row {line}: Missing required fields"
            logger.warning(f"csv_row_skipped: line={line} reason=missing_fields")
            warnings.append(message)
            continue
        try:
            parse_date(row["expense_date"])
        except ValueError as exc:
            logger.warning(f"csv_row_skipped: line={line} reason=invalid_date")
            warnings.append(f"Row {line}: {exc}")
            continue
        row["_line"] = str(line)
        rows.append(row)
    return rows, warnings


def parse_csv_row(row: dict[str, str]) -> ImportedExpense:
    parsed_date = parse_date(row["expense_date"])
    return ImportedExpense(
        line=int(row.get("_line", "0")),
        date=parsed_date,
        occurred_at=datetime.combine(parsed_date, IMPORT_TIME),
        amount_cents=parse_amount(row["amount"]),
        category=row["category"].strip(),
        sub_category=_optional(row.get("sub_category")),
        description=_optional(row.get("description")),
        tags=split_tags(row.get("tags")),
        is_split=(row.get("is_split") or "").strip().lower() in TRUTHY,
        split_note=_optional(row.get("split_note")),
    )


def parse_csv(content: str) -> tuple[list[ImportedExpense], list[str]]:
    raw_rows, warnings = read_csv(content)
    parsed: list[ImportedExpense] = []
    for raw in raw_rows:
        try:
            parsed.append(parse_csv_row(raw))
        except ValueError as exc:
            line = raw.get("_line", "?")
            logger.warning(f"csv_row_skipped: line={line} reason=invalid_row")
            warnings.append(f"Row {line}: {_error_message(exc)}")
    return parsed, warnings


def _error_message(exc: ValueError) -> str:
    if isinstance(exc, ValidationError):
        error = exc.errors()[0]
        field_name = ".".join(str(part) for part in error["loc"])
        return f"{field_name}: {error['msg']}"
    return str(exc)


EXPENSE_EXPORT_HEADER = [
    "Date",
    "Amount",
    "Category",
    "Sub_Category",
    "Description",
    "Tags",
    "Is_Split",
    "Split_Note",
]

INCOME_EXPORT_HEADER = ["Date", "Amount", "Source", "Description", "Tags"]


def export_expenses_csv(expenses: Sequence[Expense]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPENSE_EXPORT_HEADER)
    for exp in expenses:
        writer.writerow(
            [
                exp.date.isoformat(),
                f"{exp.amount_cents / 100:.2f}",
                sanitize_csv_value(exp.category),
                sanitize_csv_value(exp.sub_category or ""),
                sanitize_csv_value(exp.description or ""),
                sanitize_csv_value("; ".join(tag.name for tag in exp.tags)),
                "true" if exp.is_split else "false",
                sanitize_csv_value(exp.split_note or ""),
            ]
        )
    return output.getvalue()


def export_incomes_csv(incomes: Sequence[Income]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(INCOME_EXPORT_HEADER)
    for inc in incomes:
        writer.writerow(
            [
                inc.date.isoformat(),
                f"{inc.amount_cents / 100:.2f}",
                sanitize_csv_value(inc.source),
                sanitize_csv_value(inc.description or ""),
                sanitize_csv_value("; ".join(tag.name for tag in inc.tags)),
            ]
        )
    return output.getvalue()
