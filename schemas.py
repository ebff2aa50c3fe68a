from datetime import date
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from models import CategoryType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType = CategoryType.expense
    order: int = 1000


class CategoryUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: Optional[CategoryType] = None
    order: Optional[int] = None


class TransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    date: date
    category_id: Optional[Union[int, str]] = None
    category: Optional[str] = Field(default=None, max_length=100)
    note: str = Field(default="", max_length=200)


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    year_month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    amount_cents: int = Field(..., ge=0)


class FixedExpenseIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    category_id: Union[int, str]
    day: int = Field(..., ge=1, le=31)
    note: str = Field(default="", max_length=200)


class LoginIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1)
