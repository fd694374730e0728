from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import TransactionType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class TransactionIn(BaseModel):
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    category_id: int
    notes: Optional[str] = None
    link_budget: bool = False


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    description: str
    amount_cents: int
    type: TransactionType
    category_id: int
    category_name: Optional[str] = None
    notes: Optional[str] = None


class BudgetIn(BaseModel):
    category_id: int
    amount_cents: int = Field(..., gt=0)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_range(self) -> "BudgetIn":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class BudgetUpdateIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_range(self) -> "BudgetUpdateIn":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    amount_cents: int
    start_date: date
    end_date: date


class AllocationIn(BaseModel):
    budget_id: int
    transaction_id: int
    amount_cents: int = Field(..., gt=0)


class SpendingIn(BaseModel):
    budget_id: int
    transaction_id: int
    amount_cents: int = Field(..., gt=0)


class BudgetLinkOut(BaseModel):
    """An allocation or spending row annotated for display."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    budget_id: int
    transaction_id: int
    amount_cents: int
    created_at: datetime
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    transaction_description: Optional[str] = None
    transaction_date: Optional[date] = None


class SpendingCreatedOut(BudgetLinkOut):
    budget_remaining_cents: int
    overspent: bool
