import logging
from datetime import date, datetime, time
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import (
    HTMLResponse,
    JSONResponse,
    RedirectResponse,
    Response,
    StreamingResponse,
)
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.orm import Session

from budgets import OVERALL_LABEL
from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from csv_utils import CSVImportError, parse_amount, split_tags
from database import SessionLocal
from filters import (
    SORT_FIELDS,
    SORT_LABELS,
    FilterState,
    SortOrder,
    SortState,
    filter_and_sort,
    has_active_filters,
    paginate,
    selection_period_label,
    total_amount_cents,
)
from formatting import (
    amount_text,
    format_amount,
    format_currency,
    format_long_date,
    format_short_date,
    format_timestamp,
)
from models import TransactionType
from pdf_export import PdfReport, render_pdf
from periods import local_now, local_today, month_label, resolve_month, year_options
from schemas import BudgetIn, CategoryIn, ExpenseIn, IncomeIn, SplitDetailIn, SubCategoryIn
from services import (
    PRESET_EXPENSE_CATEGORIES,
    BudgetService,
    CategoryService,
    CSVImportService,
    DashboardService,
    ExpenseService,
    HistoryService,
    IncomeService,
    ReportService,
    TagService,
    TransactionService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
MAX_UPLOAD_BYTES = 5 * 1024 * 1024

app = FastAPI(title="Expense Ledger")
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=BASE_DIR / "templates")

templates.env.filters["currency"] = format_currency
templates.env.filters["amount"] = format_amount
templates.env.filters["amount_text"] = amount_text
templates.env.filters["timestamp"] = format_timestamp
templates.env.filters["short_date"] = format_short_date
templates.env.filters["long_date"] = format_long_date
templates.env.globals["TransactionType"] = TransactionType
templates.env.globals["csrf_token"] = generate_csrf_token
templates.env.globals["OVERALL_LABEL"] = OVERALL_LABEL
templates.env.globals["SORT_LABELS"] = SORT_LABELS


def static_path(path: str) -> str:
    return app.url_path_for("static", path=path)


templates.env.globals["static_path"] = static_path


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def render(request: Request, template: str, context: dict[str, object]) -> HTMLResponse:
    return templates.TemplateResponse(request, template, context)


def changed(request: Request, event: str, redirect_to: str) -> Response:
    headers = {"HX-Trigger": event}
    if request.headers.get("HX-Request"):
        return Response(status_code=204, headers=headers)
    return RedirectResponse(url=redirect_to, status_code=303, headers=headers)


def check_csrf(form) -> None:
    if not validate_csrf_token(str(form.get("csrf_token", ""))):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def _int_param(value: Optional[str], default: int = 0) -> int:
    try:
        return int(value) if value else default
    except ValueError:
        return default


def _date_param(value: Optional[str]) -> Optional[date]:
    try:
        return date.fromisoformat(value) if value else None
    except ValueError:
        return None


def _amount_param(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return parse_amount(value)
    except ValueError:
        return None


def filters_from_request(
    request: Request, mode: TransactionType
) -> tuple[FilterState, SortState]:
    params = request.query_params
    year = _int_param(params.get("year"))
    month = _int_param(params.get("month"))
    filters = FilterState(
        search_term=params.get("q", "").strip(),
        selected_year=year if 1970 <= year <= 3000 else 0,
        selected_month=month if 1 <= month <= 12 else 0,
        start_date=_date_param(params.get("start")),
        end_date=_date_param(params.get("end")),
        category=params.get("category", "").strip(),
        tag=params.get("tag", "").strip(),
        min_amount_cents=_amount_param(params.get("min")),
        max_amount_cents=_amount_param(params.get("max")),
    )
    try:
        order = SortOrder(params.get("order", SortOrder.desc.value))
    except ValueError:
        order = SortOrder.desc
    sort = SortState(sort_by=params.get("sort", "date"), sort_order=order).for_mode(mode)
    return filters, sort


def month_from_request(request: Request, today: date) -> tuple[int, int]:
    params = request.query_params
    try:
        return resolve_month(params.get("year"), params.get("month"), today=today)
    except ValueError:
        return today.year, today.month


def _occurred_at(form) -> datetime:
    raw_date = str(form.get("date") or "").strip()
    raw_time = str(form.get("time") or "").strip()
    if not raw_date:
        return local_now()
    day = date.fromisoformat(raw_date)
    clock = time.fromisoformat(raw_time) if raw_time else time(12, 0)
    return datetime.combine(day, clock)


def expense_payload_from_form(form) -> ExpenseIn:
    occurred_at = _occurred_at(form)
    category = str(form.get("category") or "").strip()
    if category == "Other":
        category = str(form.get("custom_category") or "").strip()
    is_split = form.get("is_split") == "on"
    split_details = []
    if is_split:
        names = form.getlist("split_person")
        amounts = form.getlist("split_amount")
        for name, amount in zip(names, amounts):
            if not str(name).strip() and not str(amount).strip():
                continue
            split_details.append(
                SplitDetailIn(
                    person_name=str(name).strip(),
                    amount_cents=parse_amount(str(amount) or "0"),
                )
            )
    return ExpenseIn(
        date=occurred_at.date(),
        occurred_at=occurred_at,
        amount_cents=parse_amount(str(form.get("amount") or "")),
        category=category,
        sub_category=form.get("sub_category") or None,
        description=form.get("description") or None,
        tags=split_tags(str(form.get("tags") or "")),
        is_split=is_split,
        split_note=form.get("split_note") or None,
        split_details=split_details,
    )


def income_payload_from_form(form) -> IncomeIn:
    occurred_at = _occurred_at(form)
    return IncomeIn(
        date=occurred_at.date(),
        occurred_at=occurred_at,
        amount_cents=parse_amount(str(form.get("amount") or "")),
        source=str(form.get("source") or "").strip(),
        description=form.get("description") or None,
        tags=split_tags(str(form.get("tags") or "")),
    )


def budget_payload_from_form(form) -> BudgetIn:
    return BudgetIn(
        year=int(form["year"]),
        month=int(form["month"]),
        category=form.get("category") or None,
        amount_cents=parse_amount(str(form.get("amount") or "0")),
        description=form.get("description") or None,
    )


def list_page_context(
    request: Request, db: Session, mode: TransactionType
) -> dict[str, object]:
    filters, sort = filters_from_request(request, mode)
    items = filter_and_sort(ReportService(db).records(mode), filters, sort, mode)
    page = paginate(
        items, _int_param(request.query_params.get("page"), 1), get_settings().items_per_page
    )
    today = local_today()
    return {
        "mode": mode,
        "filters": filters,
        "sort": sort,
        "sort_fields": SORT_FIELDS[mode],
        "page": page,
        "total_cents": total_amount_cents(items),
        "filters_active": has_active_filters(filters),
        "period_label": selection_period_label(filters, today),
        "year_options": year_options(today),
        "category_options": CategoryService(db).options(mode),
        "tags": TagService(db).list_all(),
        "query_string": urlencode(
            [(k, v) for k, v in request.query_params.multi_items() if k != "page"]
        ),
    }


def _download(body, media_type: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([body]),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def pdf_response(request: Request, report: PdfReport, filename: str) -> StreamingResponse:
    try:
        pdf_bytes = render_pdf(report, templates.env, base_url=str(request.base_url))
    except Exception as exc:
        logger.exception("Error generating PDF report")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    response = _download(pdf_bytes, "application/pdf", filename)
    response.headers["Content-Length"] = str(len(pdf_bytes))
    return response


@app.get("/", response_class=HTMLResponse)
def dashboard(request: Request, db: Session = Depends(get_db)):
    summary = DashboardService(db).current_month(local_today())
    return render(
        request,
        "dashboard.html",
        {
            "summary": summary,
            "now": local_now(),
            "category_options": CategoryService(db).options(TransactionType.expense),
            "tags": TagService(db).list_all(),
        },
    )


@app.get("/expenses", response_class=HTMLResponse)
def expenses_page(request: Request, db: Session = Depends(get_db)):
    return render(
        request, "expenses.html", list_page_context(request, db, TransactionType.expense)
    )


@app.post("/expenses")
async def create_expense(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        data = expense_payload_from_form(form)
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        ExpenseService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return changed(request, "expenses-changed", app.url_path_for("dashboard"))


@app.get("/expenses/export.pdf")
def export_expenses_pdf(request: Request, db: Session = Depends(get_db)):
    filters, sort = filters_from_request(request, TransactionType.expense)
    try:
        report, filename = ReportService(db).export_pdf(
            TransactionType.expense, filters, sort
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return pdf_response(request, report, filename)


@app.get("/expenses/export.csv")
def export_expenses_csv(request: Request, db: Session = Depends(get_db)):
    filters, sort = filters_from_request(request, TransactionType.expense)
    csv_text, filename = ReportService(db).export_csv(
        TransactionType.expense, filters, sort
    )
    return _download(csv_text, "text/csv", filename)


@app.get("/expenses/{expense_id}/edit", response_class=HTMLResponse)
def edit_expense_page(expense_id: int, request: Request, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).get(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return render(
        request,
        "expense_edit.html",
        {
            "expense": expense,
            "category_options": CategoryService(db).options(TransactionType.expense),
            "tags": TagService(db).list_all(),
        },
    )


@app.post("/expenses/{expense_id}")
async def update_expense(expense_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        data = expense_payload_from_form(form)
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    service = ExpenseService(db)
    try:
        service.get(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        service.update(expense_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return changed(request, "expenses-changed", app.url_path_for("expenses_page"))


@app.post("/expenses/{expense_id}/delete")
async def delete_expense(expense_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        ExpenseService(db).delete(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return changed(request, "expenses-changed", app.url_path_for("expenses_page"))


@app.get("/income", response_class=HTMLResponse)
def income_page(request: Request, db: Session = Depends(get_db)):
    context = list_page_context(request, db, TransactionType.income)
    context["now"] = local_now()
    return render(request, "income.html", context)


@app.post("/income")
async def create_income(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        data = income_payload_from_form(form)
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        IncomeService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return changed(request, "income-changed", app.url_path_for("income_page"))


@app.get("/income/export.pdf")
def export_income_pdf(request: Request, db: Session = Depends(get_db)):
    filters, sort = filters_from_request(request, TransactionType.income)
    try:
        report, filename = ReportService(db).export_pdf(
            TransactionType.income, filters, sort
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return pdf_response(request, report, filename)


@app.get("/income/export.csv")
def export_income_csv(request: Request, db: Session = Depends(get_db)):
    filters, sort = filters_from_request(request, TransactionType.income)
    csv_text, filename = ReportService(db).export_csv(
        TransactionType.income, filters, sort
    )
    return _download(csv_text, "text/csv", filename)


@app.get("/income/{income_id}/edit", response_class=HTMLResponse)
def edit_income_page(income_id: int, request: Request, db: Session = Depends(get_db)):
    try:
        income = IncomeService(db).get(income_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return render(
        request,
        "income_edit.html",
        {
            "income": income,
            "source_options": CategoryService(db).options(TransactionType.income),
            "tags": TagService(db).list_all(),
        },
    )


@app.post("/income/{income_id}")
async def update_income(income_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        data = income_payload_from_form(form)
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    service = IncomeService(db)
    try:
        service.get(income_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    service.update(income_id, data)
    return changed(request, "income-changed", app.url_path_for("income_page"))


@app.post("/income/{income_id}/delete")
async def delete_income(income_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        IncomeService(db).delete(income_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return changed(request, "income-changed", app.url_path_for("income_page"))


@app.get("/transactions", response_class=HTMLResponse)
def transactions_page(request: Request, db: Session = Depends(get_db)):
    search = request.query_params.get("q", "").strip()
    history = TransactionService(db).combined(search)
    return render(
        request, "transactions.html", {"history": history, "search": search}
    )


@app.get("/transactions/export.pdf")
def export_transactions_pdf(request: Request, db: Session = Depends(get_db)):
    search = request.query_params.get("q", "").strip()
    try:
        report, filename = ReportService(db).export_combined_pdf(search)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return pdf_response(request, report, filename)


@app.get("/history", response_class=HTMLResponse)
def history_page(request: Request, db: Session = Depends(get_db)):
    today = local_today()
    service = HistoryService(db)
    years = service.years_with_data(today)
    year = _int_param(request.query_params.get("year"), today.year)
    if year not in years:
        year = today.year
    month = _int_param(request.query_params.get("month"))
    if not 0 <= month <= 12:
        month = 0
    return render(
        request,
        "history.html",
        {
            "years": years,
            "year": year,
            "month": month,
            "selection": service.for_selection(year, month),
        },
    )


@app.get("/budgets", response_class=HTMLResponse)
def budgets_page(request: Request, db: Session = Depends(get_db)):
    today = local_today()
    year, month = month_from_request(request, today)
    return render(
        request,
        "budgets.html",
        {
            "year": year,
            "month": month,
            "label": month_label(year, month),
            "progress": BudgetService(db).progress_for_month(year, month),
            "year_options": year_options(today),
            "category_options": CategoryService(db).options(TransactionType.expense),
        },
    )


@app.post("/budgets")
async def create_budget(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        data = budget_payload_from_form(form)
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        BudgetService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return changed(
        request, "budgets-changed", f"/budgets?year={data.year}&month={data.month}"
    )


@app.get("/budgets/{budget_id}/edit", response_class=HTMLResponse)
def edit_budget_page(budget_id: int, request: Request, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).get(budget_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return render(
        request,
        "budget_edit.html",
        {
            "budget": budget,
            "year_options": year_options(local_today()),
            "category_options": CategoryService(db).options(TransactionType.expense),
        },
    )


@app.post("/budgets/{budget_id}")
async def update_budget(budget_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        data = budget_payload_from_form(form)
    except (ValueError, KeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    service = BudgetService(db)
    try:
        service.get(budget_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        service.update(budget_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return changed(
        request, "budgets-changed", f"/budgets?year={data.year}&month={data.month}"
    )


@app.post("/budgets/{budget_id}/delete")
async def delete_budget(budget_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        budget = BudgetService(db).get(budget_id)
        year, month = budget.year, budget.month
        BudgetService(db).delete(budget_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return changed(request, "budgets-changed", f"/budgets?year={year}&month={month}")


@app.get("/categories", response_class=HTMLResponse)
def categories_page(request: Request, db: Session = Depends(get_db)):
    service = CategoryService(db)
    return render(
        request,
        "categories.html",
        {
            "presets": PRESET_EXPENSE_CATEGORIES,
            "expense_categories": service.list_user(TransactionType.expense),
            "income_categories": service.list_user(TransactionType.income),
            "tags": TagService(db).list_all(),
        },
    )


@app.post("/categories")
async def create_category(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        data = CategoryIn(
            name=str(form.get("name") or ""),
            type=TransactionType(form.get("type") or TransactionType.expense.value),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        CategoryService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return changed(request, "categories-updated", app.url_path_for("categories_page"))


@app.post("/categories/{category_id}/rename")
async def rename_category(category_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    service = CategoryService(db)
    try:
        service.get(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        service.rename(category_id, str(form.get("name") or ""))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return changed(request, "categories-updated", app.url_path_for("categories_page"))


@app.post("/categories/{category_id}/delete")
async def delete_category(category_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return changed(request, "categories-updated", app.url_path_for("categories_page"))


@app.post("/categories/{category_id}/subcategories")
async def create_sub_category(
    category_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await request.form()
    check_csrf(form)
    try:
        data = SubCategoryIn(name=str(form.get("name") or ""))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    service = CategoryService(db)
    try:
        service.get(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        service.add_sub_category(category_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return changed(request, "categories-updated", app.url_path_for("categories_page"))


@app.post("/subcategories/{sub_category_id}/delete")
async def delete_sub_category(
    sub_category_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await request.form()
    check_csrf(form)
    try:
        CategoryService(db).delete_sub_category(sub_category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return changed(request, "categories-updated", app.url_path_for("categories_page"))


@app.post("/tags/{tag_id}/delete")
async def delete_tag(tag_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    check_csrf(form)
    try:
        TagService(db).delete(tag_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return changed(request, "categories-updated", app.url_path_for("categories_page"))


@app.get("/api/categories/{name}/subcategories")
def api_sub_categories(name: str, db: Session = Depends(get_db)):
    return JSONResponse(CategoryService(db).sub_categories_for(name))


@app.get("/api/tags")
def api_tags(db: Session = Depends(get_db)):
    return JSONResponse([tag.name for tag in TagService(db).list_all()])


@app.get("/import", response_class=HTMLResponse)
def import_page(request: Request):
    return render(request, "import.html", {})


async def _read_upload(file: UploadFile) -> str:
    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(raw) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="CSV file too large (max 5MB)")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8") from exc


@app.post("/import/preview", response_class=HTMLResponse)
async def import_preview(
    request: Request,
    csrf_token: str = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    if not validate_csrf_token(csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    content = await _read_upload(file)
    try:
        preview = CSVImportService(db).preview(content)
    except CSVImportError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return render(request, "components/csv_preview.html", {"preview": preview})


@app.post("/import/commit", response_class=HTMLResponse)
async def import_commit(
    request: Request,
    csrf_token: str = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    if not validate_csrf_token(csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    content = await _read_upload(file)
    try:
        stats = CSVImportService(db).commit(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    response = render(request, "components/import_result.html", {"stats": stats})
    response.headers["HX-Trigger"] = "expenses-changed"
    return response


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
