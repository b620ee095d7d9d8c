from datetime import date
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import TransactionType

Amount = Union[Decimal, str]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProjectIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=120)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    planned_budget: Amount = Decimal("0")
    ledger_tag: Optional[str] = Field(default=None, max_length=120)


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    planned_budget: Optional[Amount] = None
    archived: Optional[bool] = None
    ledger_tag: Optional[str] = Field(default=None, max_length=120)


class AllocationIn(CamelModel):
    project_id: int
    amount: Amount


class AllocationsUpdateIn(CamelModel):
    allocations: list[AllocationIn] = Field(default_factory=list)
    free_savings: Optional[Amount] = None


class SavingGoalIn(CamelModel):
    project_id: int
    amount: Amount
    start_date: date
    reason: Optional[str] = Field(default=None, max_length=200)


class GoalAcceptIn(CamelModel):
    new_amount: Amount
    reason: Optional[str] = Field(default=None, max_length=200)


class AccountPreferenceIn(CamelModel):
    account_id: str = Field(..., min_length=1, max_length=64)
    account_name: str = Field(..., min_length=1, max_length=200)
    include_savings: bool = False
    include_checking: bool = False


class ManualSavingsIn(CamelModel):
    amount: Amount


class ManualTransactionIn(CamelModel):
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    amount: Amount
    type: TransactionType = TransactionType.income
    category: str = Field(default="Virements d'épargne", min_length=1, max_length=120)
    comment: Optional[str] = None
    project_id: Optional[int] = None
