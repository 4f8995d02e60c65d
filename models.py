import datetime as dt
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AccountType(str, Enum):
    debit = "debit"
    credit = "credit"


class CategoryType(str, Enum):
    expense = "expense"
    income = "income"


class OperationType(str, Enum):
    simple = "simple"
    transfer = "transfer"


class PaymentFrequency(str, Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    bimonthly = "bimonthly"
    yearly = "yearly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    date_format: Mapped[str] = mapped_column(
        String(20), default="%Y-%m-%d", nullable=False
    )
    time_zone: Mapped[str] = mapped_column(String(60), default="UTC", nullable=False)


class Account(Base, TimestampMixin):
    """Debit accounts hold money (cash, checking); credit accounts track money owed."""

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # bumped by every balance change
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_account_user_name"),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    subcategories: Mapped[list["SubCategory"]] = relationship(
        "SubCategory",
        back_populates="category",
        cascade="all, delete-orphan",
        order_by="SubCategory.id",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class SubCategory(Base, TimestampMixin):
    __tablename__ = "subcategories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="subcategories"
    )


class Vendor(Base, TimestampMixin):
    __tablename__ = "vendors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_vendor_user_name"),)


class Operation(Base, TimestampMixin):
    __tablename__ = "operations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[OperationType] = mapped_column(SAEnum(OperationType), nullable=False)
    vendor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("vendors.id"))
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    destination_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_type: Mapped[Optional[CategoryType]] = mapped_column(
        SAEnum(CategoryType)
    )
    comments: Mapped[str] = mapped_column(Text, default="", nullable=False)

    vendor: Mapped[Optional["Vendor"]] = relationship("Vendor")
    account: Mapped["Account"] = relationship("Account", foreign_keys=[account_id])
    destination_account: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[destination_account_id]
    )
    allocations: Mapped[list["OperationAllocation"]] = relationship(
        "OperationAllocation",
        back_populates="operation",
        cascade="all, delete-orphan",
        order_by="OperationAllocation.order",
    )

    __table_args__ = (
        Index("ix_operations_user_date", "user_id", "date"),
        Index("ix_operations_user_account", "user_id", "account_id"),
        CheckConstraint("total_amount_cents <> 0", name="ck_operation_amount_nonzero"),
    )


class OperationAllocation(Base):
    __tablename__ = "operation_allocations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    operation_id: Mapped[int] = mapped_column(
        ForeignKey("operations.id"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    sub_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id")
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    operation: Mapped["Operation"] = relationship(
        "Operation", back_populates="allocations"
    )
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        Index("ix_allocation_category", "category_id", "operation_id"),
    )


class Template(Base, TimestampMixin):
    __tablename__ = "templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[OperationType] = mapped_column(SAEnum(OperationType), nullable=False)
    vendor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("vendors.id"))
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    destination_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_type: Mapped[Optional[CategoryType]] = mapped_column(
        SAEnum(CategoryType)
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    allocations: Mapped[list["TemplateAllocation"]] = relationship(
        "TemplateAllocation",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateAllocation.order",
    )


class TemplateAllocation(Base):
    __tablename__ = "template_allocations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("templates.id"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    sub_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id")
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    template: Mapped["Template"] = relationship(
        "Template", back_populates="allocations"
    )


class Bill(Base, TimestampMixin):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("templates.id"), nullable=False
    )
    payment_frequency: Mapped[PaymentFrequency] = mapped_column(
        SAEnum(PaymentFrequency), nullable=False, default=PaymentFrequency.monthly
    )
    next_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_due_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    # day of week (1-7) for weekly/biweekly, day of month otherwise
    payment_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payment_month: Mapped[Optional[int]] = mapped_column(Integer)
    last_paid_date: Mapped[Optional[date]] = mapped_column(Date)
    last_paid_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    template: Mapped["Template"] = relationship("Template")

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_bill_user_name"),
        CheckConstraint(
            "next_due_amount_cents >= 0", name="ck_bill_due_amount_positive"
        ),
        Index("ix_bills_user_due", "user_id", "next_due_date"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    categories: Mapped[list["BudgetCategory"]] = relationship(
        "BudgetCategory",
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetCategory.id",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_budget_user_name"),
        CheckConstraint("start_date <= end_date", name="ck_budget_window"),
        Index("ix_budgets_user_window", "user_id", "start_date", "end_date"),
    )


class BudgetCategory(Base):
    __tablename__ = "budget_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="categories")
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint("budget_id", "category_id", name="uq_budget_category"),
        CheckConstraint("amount_cents >= 0", name="ck_budget_category_amount"),
    )
