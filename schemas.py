import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import BudgetDirection, PeriodKind, TransactionDirection


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., ge=0)
    period_kind: PeriodKind = PeriodKind.monthly
    direction: BudgetDirection = BudgetDirection.expense


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    direction: TransactionDirection
    amount_cents: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    date: dt.date
    description: Optional[str] = Field(default=None, max_length=200)
    period_kind: Optional[PeriodKind] = None


class LineItemIn(BaseModel):
    name: str = Field(default="Unknown Item", max_length=200)
    unit_price_cents: int = Field(..., ge=0)
    quantity: int = Field(default=1, ge=1)


class BillSplitIn(BaseModel):
    category: str = Field(..., max_length=100)
    subtotal_cents: Optional[int] = Field(default=None, ge=0)
    is_non_essential: bool = False
    items: list[LineItemIn] = Field(default_factory=list)


class ScannedBillIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    direction: TransactionDirection = TransactionDirection.debit
    amount_cents: int = Field(..., gt=0)
    date: dt.date
    store_name: Optional[str] = Field(default=None, max_length=120)
    splits: list[BillSplitIn] = Field(..., min_length=1)
    period_kind: Optional[PeriodKind] = None
