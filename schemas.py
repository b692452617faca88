from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import TransactionType


class SplitDetailIn(BaseModel):
    person_name: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., ge=0)


class ExpenseIn(BaseModel):
    date: date
    occurred_at: datetime
    amount_cents: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    sub_category: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    is_split: bool = False
    split_note: Optional[str] = Field(default=None, max_length=500)
    split_details: list[SplitDetailIn] = Field(default_factory=list)


class IncomeIn(BaseModel):
    date: date
    occurred_at: datetime
    amount_cents: int = Field(..., gt=0)
    source: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)


class BudgetIn(BaseModel):
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    category: Optional[str] = Field(default=None, max_length=100)
    amount_cents: int = Field(..., ge=0)
    description: Optional[str] = Field(default=None, max_length=200)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class SubCategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class ImportedExpense(BaseModel):
    model_config = ConfigDict(extra="forbid")

    line: int
    date: date
    occurred_at: datetime
    amount_cents: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    sub_category: Optional[str] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    is_split: bool = False
    split_note: Optional[str] = None
