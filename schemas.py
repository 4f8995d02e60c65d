import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import AccountType, CategoryType, OperationType, PaymentFrequency


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=200, pattern=r"^[^@\s]+@[^@\s]+$")
    date_format: str = Field(default="%Y-%m-%d", max_length=20)
    time_zone: str = Field(default="UTC", max_length=60)
    is_enabled: bool = True


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    type: AccountType
    balance_cents: int = 0
    is_enabled: bool = True


class AccountUpdateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    type: AccountType
    is_enabled: bool = True


class BalanceCorrectionIn(BaseModel):
    balance_cents: int
    expected_balance_cents: Optional[int] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    subcategories: list[str] = Field(..., min_length=1)
    is_enabled: bool = True

    @field_validator("subcategories")
    @classmethod
    def subcategory_names_required(cls, value: list[str]) -> list[str]:
        names = [name.strip() for name in value]
        if any(not name for name in names):
            raise ValueError("Subcategory name is required")
        if any(len(name) > 100 for name in names):
            raise ValueError("Subcategory name must not exceed 100 characters")
        return names


class VendorIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    is_enabled: bool = True


class AllocationIn(BaseModel):
    model_config = ConfigDict(frozen=True)

    category_id: int = Field(..., gt=0)
    sub_category_id: Optional[int] = Field(default=None, gt=0)
    amount_cents: int


def _nonzero_total(value: int) -> int:
    if value == 0:
        raise ValueError("Total amount must be different than 0")
    return value


class OperationIn(BaseModel):
    date: dt.date
    title: str = Field(..., min_length=1, max_length=100)
    type: OperationType = OperationType.simple
    vendor_id: Optional[int] = Field(default=None, gt=0)
    account_id: int = Field(..., gt=0)
    destination_account_id: Optional[int] = Field(default=None, gt=0)
    total_amount_cents: int
    comments: str = Field(default="", max_length=500)
    category_type: Optional[CategoryType] = None
    allocation: list[AllocationIn] = Field(default_factory=list)

    @field_validator("total_amount_cents")
    @classmethod
    def total_must_be_nonzero(cls, value: int) -> int:
        return _nonzero_total(value)


class TemplateIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    type: OperationType = OperationType.simple
    vendor_id: Optional[int] = Field(default=None, gt=0)
    account_id: int = Field(..., gt=0)
    destination_account_id: Optional[int] = Field(default=None, gt=0)
    total_amount_cents: int
    category_type: Optional[CategoryType] = None
    allocation: list[AllocationIn] = Field(default_factory=list)
    is_enabled: bool = True

    @field_validator("total_amount_cents")
    @classmethod
    def total_must_be_nonzero(cls, value: int) -> int:
        return _nonzero_total(value)


class BillIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    template_id: int = Field(..., gt=0)
    payment_frequency: PaymentFrequency = PaymentFrequency.monthly
    next_due_date: date
    next_due_amount_cents: int = Field(..., ge=0)
    payment_day: int
    payment_month: Optional[int] = None
    is_enabled: bool = True

    @model_validator(mode="after")
    def check_schedule_anchor(self) -> "BillIn":
        if self.payment_frequency in (
            PaymentFrequency.weekly,
            PaymentFrequency.biweekly,
        ):
            if not 1 <= self.payment_day <= 7:
                raise ValueError(
                    "Payment day must be between 1 and 7 for weekly and biweekly payments"
                )
        elif not 1 <= self.payment_day <= 31:
            raise ValueError("Payment day must be between 1 and 31")
        if self.payment_frequency == PaymentFrequency.yearly and not (
            self.payment_month is not None and 1 <= self.payment_month <= 12
        ):
            raise ValueError("Payment month must be between 1 and 12 for yearly payments")
        return self


class BillPaymentIn(BaseModel):
    payment_date: date
    amount_cents: int = Field(..., gt=0)
    comments: str = Field(default="", max_length=500)


class BudgetCategoryIn(BaseModel):
    category_id: int = Field(..., gt=0)
    amount_cents: int = Field(..., gt=0)


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., gt=0)
    start_date: date
    end_date: date
    categories: list[BudgetCategoryIn] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_window(self) -> "BudgetIn":
        if self.start_date > self.end_date:
            raise ValueError("Start date must be before or equal to end date")
        return self
