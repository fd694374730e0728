from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
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


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class BudgetLinkMixin:
    """Display fields shared by allocation and spending rows."""

    @property
    def category_id(self) -> Optional[int]:
        return self.budget.category_id if self.budget else None

    @property
    def category_name(self) -> Optional[str]:
        if self.budget and self.budget.category:
            return self.budget.category.name
        return None

    @property
    def transaction_description(self) -> Optional[str]:
        return self.transaction.description if self.transaction else None

    @property
    def transaction_date(self) -> Optional[date]:
        return self.transaction.date if self.transaction else None


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )
    budgets: Mapped[list["Budget"]] = relationship(
        "Budget", back_populates="category"
    )

    __table_args__ = (UniqueConstraint("name", name="uq_category_name"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )
    allocations: Mapped[list["BudgetAllocation"]] = relationship(
        "BudgetAllocation",
        back_populates="transaction",
        cascade="all, delete-orphan",
    )
    spending: Mapped[list["BudgetSpending"]] = relationship(
        "BudgetSpending",
        back_populates="transaction",
        cascade="all, delete-orphan",
    )

    @property
    def category_name(self) -> Optional[str]:
        return self.category.name if self.category else None

    __table_args__ = (
        Index("ix_transactions_date", "date"),
        Index("ix_transactions_category_date", "category_id", "date"),
        Index("ix_transactions_type_date", "type", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    category: Mapped["Category"] = relationship("Category", back_populates="budgets")
    allocations: Mapped[list["BudgetAllocation"]] = relationship(
        "BudgetAllocation",
        back_populates="budget",
        cascade="all, delete-orphan",
    )
    spending: Mapped[list["BudgetSpending"]] = relationship(
        "BudgetSpending",
        back_populates="budget",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        CheckConstraint("end_date >= start_date", name="ck_budget_range_ordered"),
        Index("ix_budget_category_range", "category_id", "start_date", "end_date"),
    )


class BudgetAllocation(Base, BudgetLinkMixin):
    __tablename__ = "budget_allocations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    budget: Mapped["Budget"] = relationship("Budget", back_populates="allocations")
    transaction: Mapped["Transaction"] = relationship(
        "Transaction", back_populates="allocations"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_allocation_amount_positive"),
        Index("ix_allocation_budget", "budget_id"),
        Index("ix_allocation_transaction", "transaction_id"),
    )


class BudgetSpending(Base, BudgetLinkMixin):
    __tablename__ = "budget_spending"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    budget: Mapped["Budget"] = relationship("Budget", back_populates="spending")
    transaction: Mapped["Transaction"] = relationship(
        "Transaction", back_populates="spending"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_spending_amount_positive"),
        Index("ix_spending_budget", "budget_id"),
        Index("ix_spending_transaction", "transaction_id"),
    )
