from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import case, extract, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from database import atomic
from errors import (
    AggregationFailed,
    AllocationNotFound,
    BudgetNotFound,
    CategoryNotFound,
    InsufficientFunds,
    LedgerError,
    SpendingNotFound,
    TransactionNotExpense,
    TransactionNotFound,
    TransactionNotIncome,
    ValidationError,
)
from models import (
    Budget,
    BudgetAllocation,
    BudgetSpending,
    Category,
    Transaction,
    TransactionType,
)
from periods import Period, add_months, month_end, month_start
from schemas import BudgetIn, BudgetUpdateIn, CategoryIn, TransactionIn

logger = logging.getLogger(__name__)

MONTHLY_SERIES_LIMIT = 6
RECENT_TRANSACTIONS_LIMIT = 5

DEFAULT_CATEGORIES = (
    "Housing",
    "Food",
    "Transportation",
    "Entertainment",
    "Utilities",
    "Healthcare",
    "Shopping",
    "Education",
    "Salary",
    "Investments",
    "Side Hustle",
    "Other",
)


@dataclass(frozen=True)
class BudgetMetrics:
    spent_cents: int
    remaining_cents: int
    percentage: int


@dataclass(frozen=True)
class BudgetWithMetrics:
    id: int
    category_id: int
    category_name: str
    amount_cents: int
    start_date: date
    end_date: date
    spent_cents: int
    remaining_cents: int
    percentage: int


def budget_metrics(amount_cents: int, spent_cents: int) -> BudgetMetrics:
    if amount_cents == 0:
        percentage = 0
    else:
        ratio = Decimal(spent_cents) * 100 / Decimal(amount_cents)
        percentage = int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return BudgetMetrics(
        spent_cents=spent_cents,
        remaining_cents=amount_cents - spent_cents,
        percentage=percentage,
    )


def percent_change(current: int, previous: int, *, signed: bool = False) -> float:
    """Relative change from ``previous`` to ``current`` in percent.

    ``signed`` scales by ``abs(previous)`` so a balance moving from -100 to
    -50 reads as an improvement. A zero (or, unsigned, negative) base yields 0.
    """
    if signed:
        if previous == 0:
            return 0.0
        return round((current - previous) / abs(previous) * 100, 1)
    if previous <= 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)


def _require_positive(amount_cents: int, label: str) -> None:
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError(f"{label} amount must be positive")


def _require_range(start: date, end: date) -> None:
    if end < start:
        raise ValidationError("End date must not be before start date")


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        return self.session.scalars(select(Category).order_by(Category.name)).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise CategoryNotFound("Category not found")
        return category

    def _find_by_name(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(func.lower(Category.name) == name.strip().lower())
        )

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise ValidationError("Category name is required")
        with atomic(self.session):
            if self._find_by_name(name):
                raise ValidationError("Category with this name already exists")
            category = Category(name=name)
            self.session.add(category)
        self.session.refresh(category)
        return category

    def rename(self, category_id: int, name: str) -> Category:
        name = name.strip()
        if not name:
            raise ValidationError("Category name is required")
        with atomic(self.session):
            category = self.get(category_id)
            existing = self._find_by_name(name)
            if existing and existing.id != category.id:
                raise ValidationError("Category with this name already exists")
            category.name = name
        return category

    def seed_defaults(self) -> list[Category]:
        created = 0
        with atomic(self.session):
            for name in DEFAULT_CATEGORIES:
                if self._find_by_name(name):
                    continue
                self.session.add(Category(name=name))
                self.session.flush()
                created += 1
        logger.info(f"seed_categories: created={created}")
        return self.list_all()


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _validate(self, data: TransactionIn) -> None:
        _require_positive(data.amount_cents, "Transaction")
        if not data.description or not data.description.strip():
            raise ValidationError("Description is required")
        if not self.session.get(Category, data.category_id):
            raise CategoryNotFound("Category not found")

    def create(self, data: TransactionIn) -> Transaction:
        self._validate(data)
        with atomic(self.session):
            txn = Transaction(
                date=data.date,
                description=data.description.strip(),
                amount_cents=data.amount_cents,
                type=data.type,
                category_id=data.category_id,
                notes=data.notes,
            )
            self.session.add(txn)
        self.session.refresh(txn)
        if data.link_budget and txn.type == TransactionType.expense:
            self._link_budget(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.id == transaction_id)
        )
        if not txn:
            raise TransactionNotFound("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._validate(data)
        with atomic(self.session):
            txn.date = data.date
            txn.description = data.description.strip()
            txn.amount_cents = data.amount_cents
            txn.type = data.type
            txn.category_id = data.category_id
            txn.notes = data.notes
        self.session.refresh(txn)

        if txn.type == TransactionType.expense:
            linked = (
                ReconciliationService(self.session).find_spending_by_transaction(
                    txn.id
                )
                is not None
            )
            if linked or data.link_budget:
                self._link_budget(txn)
        return txn

    def _link_budget(self, txn: Transaction) -> None:
        # Linkage never blocks saving the transaction.
        try:
            ReconciliationService(self.session).relink_expense(txn)
        except LedgerError as exc:
            logger.warning(f"budget_link_skipped: transaction={txn.id} reason={exc}")

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        with atomic(self.session):
            self.session.delete(txn)
        logger.info(f"transaction_deleted: id={transaction_id}")

    def list(
        self,
        period: Optional[Period] = None,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if period:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.min_amount_cents is not None:
            stmt = stmt.where(Transaction.amount_cents >= filters.min_amount_cents)
        if filters.max_amount_cents is not None:
            stmt = stmt.where(Transaction.amount_cents <= filters.max_amount_cents)
        if limit:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def recent(
        self, period: Period, limit: int = RECENT_TRANSACTIONS_LIMIT
    ) -> list[Transaction]:
        return self.list(period, limit=limit)


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.id == budget_id)
        )
        if not budget:
            raise BudgetNotFound("Budget not found")
        return budget

    def find_active_budget(self, category_id: int, on: date) -> Optional[Budget]:
        """The budget of ``category_id`` whose interval contains ``on``, if any."""
        return self.session.scalar(
            select(Budget)
            .where(
                Budget.category_id == category_id,
                Budget.start_date <= on,
                Budget.end_date >= on,
            )
            .order_by(Budget.start_date.desc(), Budget.id.desc())
            .limit(1)
        )

    def spent_between(self, category_id: int, start: date, end: date) -> int:
        if end < start:
            return 0
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                    Transaction.category_id == category_id,
                    Transaction.type == TransactionType.expense,
                    Transaction.date.between(start, end),
                )
            ).scalar_one()
            or 0
        )

    def compute_metrics(self, budget: Budget) -> BudgetMetrics:
        spent = self.spent_between(
            budget.category_id, budget.start_date, budget.end_date
        )
        return budget_metrics(budget.amount_cents, spent)

    @staticmethod
    def _with_metrics(budget: Budget, metrics: BudgetMetrics) -> BudgetWithMetrics:
        return BudgetWithMetrics(
            id=budget.id,
            category_id=budget.category_id,
            category_name=budget.category.name if budget.category else "",
            amount_cents=budget.amount_cents,
            start_date=budget.start_date,
            end_date=budget.end_date,
            spent_cents=metrics.spent_cents,
            remaining_cents=metrics.remaining_cents,
            percentage=metrics.percentage,
        )

    def get_with_metrics(self, budget_id: int) -> BudgetWithMetrics:
        budget = self.get(budget_id)
        return self._with_metrics(budget, self.compute_metrics(budget))

    def list_budgets(self, period: Period) -> list[BudgetWithMetrics]:
        """Budgets overlapping ``period``, with spend clipped to the overlap."""
        _require_range(period.start, period.end)
        budgets = self.session.scalars(
            select(Budget)
            .join(Category, Category.id == Budget.category_id)
            .options(joinedload(Budget.category))
            .where(Budget.start_date <= period.end, Budget.end_date >= period.start)
            .order_by(Category.name, Budget.start_date, Budget.id)
        ).all()
        out: list[BudgetWithMetrics] = []
        for budget in budgets:
            window_start = max(budget.start_date, period.start)
            window_end = min(budget.end_date, period.end)
            spent = self.spent_between(budget.category_id, window_start, window_end)
            out.append(
                self._with_metrics(budget, budget_metrics(budget.amount_cents, spent))
            )
        return out

    def find_budget_for_category(
        self, category_id: int, on: date
    ) -> Optional[BudgetWithMetrics]:
        budget = self.find_active_budget(category_id, on)
        if budget is None:
            return None
        return self._with_metrics(budget, self.compute_metrics(budget))

    def _overlapping(
        self,
        category_id: int,
        start: date,
        end: date,
        *,
        exclude_id: Optional[int] = None,
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.category_id == category_id,
                Budget.start_date <= end,
                Budget.end_date >= start,
            )
            .order_by(Budget.start_date, Budget.id)
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        return self.session.scalars(stmt).all()

    def upsert_budget(self, data: BudgetIn) -> Budget:
        """Create a budget, or update the one it overlaps in place.

        When the new interval spans several existing budgets of the category,
        the earliest one is kept and the others are folded into it: their
        allocation and spending rows move to the kept budget before they are
        removed, so no two budgets of a category ever overlap.
        """
        _require_positive(data.amount_cents, "Budget")
        _require_range(data.start_date, data.end_date)
        with atomic(self.session):
            if not self.session.get(Category, data.category_id):
                raise CategoryNotFound("Category not found")
            overlapping = self._overlapping(
                data.category_id, data.start_date, data.end_date
            )
            if not overlapping:
                budget = Budget(
                    category_id=data.category_id,
                    amount_cents=data.amount_cents,
                    start_date=data.start_date,
                    end_date=data.end_date,
                )
                self.session.add(budget)
            else:
                budget = overlapping[0]
                budget.amount_cents = data.amount_cents
                budget.start_date = data.start_date
                budget.end_date = data.end_date
                for extra in overlapping[1:]:
                    for allocation in list(extra.allocations):
                        allocation.budget = budget
                    for spending in list(extra.spending):
                        spending.budget = budget
                    self.session.delete(extra)
                    logger.info(f"budget_merged: from={extra.id} into={budget.id}")
        self.session.refresh(budget)
        return budget

    def update_budget(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        _require_positive(data.amount_cents, "Budget")
        _require_range(data.start_date, data.end_date)
        with atomic(self.session):
            budget = self.get(budget_id)
            if self._overlapping(
                budget.category_id, data.start_date, data.end_date, exclude_id=budget.id
            ):
                raise ValidationError(
                    "Budget period overlaps another budget for this category"
                )
            budget.amount_cents = data.amount_cents
            budget.start_date = data.start_date
            budget.end_date = data.end_date
        self.session.refresh(budget)
        return budget

    def delete_budget(self, budget_id: int) -> None:
        # Allocation and spending rows go with the budget; transactions stay.
        with atomic(self.session):
            budget = self.get(budget_id)
            self.session.delete(budget)
        logger.info(f"budget_deleted: id={budget_id}")


@dataclass
class SweepResult:
    relinked: int = 0
    removed_spending: int = 0
    removed_allocations: int = 0


class ReconciliationService:
    """Keeps allocation and spending links in step with their transactions."""

    def __init__(
        self, session: Session, *, allocation_check: Optional[str] = None
    ) -> None:
        self.session = session
        self.budgets = BudgetService(session)
        self.allocation_check = allocation_check or get_settings().allocation_check

    def _allocated_total(self, transaction_id: int) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(BudgetAllocation.amount_cents), 0)).where(
                    BudgetAllocation.transaction_id == transaction_id
                )
            ).scalar_one()
            or 0
        )

    def create_allocation(
        self, budget_id: int, transaction_id: int, amount_cents: int
    ) -> BudgetAllocation:
        _require_positive(amount_cents, "Allocation")
        with atomic(self.session):
            txn = self.session.get(Transaction, transaction_id)
            if not txn:
                raise TransactionNotFound("Transaction not found")
            if txn.type != TransactionType.income:
                raise TransactionNotIncome(
                    "Only income transactions can be allocated to a budget"
                )
            budget = self.session.get(Budget, budget_id)
            if not budget:
                raise BudgetNotFound("Budget not found")

            already = 0
            if self.allocation_check == "cumulative":
                already = self._allocated_total(transaction_id)
            if already + amount_cents > txn.amount_cents:
                raise InsufficientFunds("Insufficient transaction amount")

            allocation = BudgetAllocation(
                budget=budget, transaction=txn, amount_cents=amount_cents
            )
            self.session.add(allocation)
        self.session.refresh(allocation)
        logger.info(
            f"allocation_created: id={allocation.id} budget={budget_id} "
            f"transaction={transaction_id} amount_cents={amount_cents}"
        )
        return allocation

    def create_spending(
        self, budget_id: int, transaction_id: int, amount_cents: int
    ) -> BudgetSpending:
        _require_positive(amount_cents, "Spending")
        with atomic(self.session):
            txn = self.session.get(Transaction, transaction_id)
            if not txn:
                raise TransactionNotFound("Transaction not found")
            if txn.type != TransactionType.expense:
                raise TransactionNotExpense(
                    "Only expense transactions can be spent from a budget"
                )
            budget = self.session.get(Budget, budget_id)
            if not budget:
                raise BudgetNotFound("Budget not found")

            # Informational only: overspending is allowed.
            metrics = self.budgets.compute_metrics(budget)

            spending = BudgetSpending(
                budget=budget, transaction=txn, amount_cents=amount_cents
            )
            self.session.add(spending)
        self.session.refresh(spending)
        if metrics.remaining_cents < 0:
            logger.warning(
                f"budget_overspent: budget={budget_id} "
                f"remaining_cents={metrics.remaining_cents}"
            )
        return spending

    def find_spending_by_transaction(
        self, transaction_id: int
    ) -> Optional[BudgetSpending]:
        return self.session.scalar(
            select(BudgetSpending)
            .where(BudgetSpending.transaction_id == transaction_id)
            .order_by(BudgetSpending.id)
            .limit(1)
        )

    def relink_expense(self, txn: Transaction) -> Optional[BudgetSpending]:
        """Point the expense's spending record at the budget now covering it.

        Returns ``None`` and leaves any existing record untouched when no
        budget covers the transaction's category and date.
        """
        if txn.type != TransactionType.expense:
            raise TransactionNotExpense(
                "Only expense transactions can be linked to a budget"
            )
        budget = self.budgets.find_active_budget(txn.category_id, txn.date)
        if budget is None:
            logger.info(f"budget_link_none: transaction={txn.id} date={txn.date}")
            return None
        with atomic(self.session):
            spending = self.find_spending_by_transaction(txn.id)
            if spending:
                spending.budget = budget
                spending.amount_cents = txn.amount_cents
            else:
                spending = BudgetSpending(
                    budget=budget, transaction=txn, amount_cents=txn.amount_cents
                )
                self.session.add(spending)
        self.session.refresh(spending)
        return spending

    def get_allocation(self, allocation_id: int) -> BudgetAllocation:
        allocation = self.session.scalar(
            select(BudgetAllocation)
            .options(
                joinedload(BudgetAllocation.budget).joinedload(Budget.category),
                joinedload(BudgetAllocation.transaction),
            )
            .where(BudgetAllocation.id == allocation_id)
        )
        if not allocation:
            raise AllocationNotFound("Budget allocation not found")
        return allocation

    def get_spending(self, spending_id: int) -> BudgetSpending:
        spending = self.session.scalar(
            select(BudgetSpending)
            .options(
                joinedload(BudgetSpending.budget).joinedload(Budget.category),
                joinedload(BudgetSpending.transaction),
            )
            .where(BudgetSpending.id == spending_id)
        )
        if not spending:
            raise SpendingNotFound("Budget spending not found")
        return spending

    def list_allocations(
        self, budget_id: Optional[int] = None
    ) -> list[BudgetAllocation]:
        stmt = (
            select(BudgetAllocation)
            .options(
                joinedload(BudgetAllocation.budget).joinedload(Budget.category),
                joinedload(BudgetAllocation.transaction),
            )
            .order_by(BudgetAllocation.created_at.desc(), BudgetAllocation.id.desc())
        )
        if budget_id is not None:
            stmt = stmt.where(BudgetAllocation.budget_id == budget_id)
        return self.session.scalars(stmt).all()

    def list_spending(self, budget_id: Optional[int] = None) -> list[BudgetSpending]:
        stmt = (
            select(BudgetSpending)
            .options(
                joinedload(BudgetSpending.budget).joinedload(Budget.category),
                joinedload(BudgetSpending.transaction),
            )
            .order_by(BudgetSpending.created_at.desc(), BudgetSpending.id.desc())
        )
        if budget_id is not None:
            stmt = stmt.where(BudgetSpending.budget_id == budget_id)
        return self.session.scalars(stmt).all()

    def delete_allocation(self, allocation_id: int) -> None:
        with atomic(self.session):
            allocation = self.session.get(BudgetAllocation, allocation_id)
            if not allocation:
                raise AllocationNotFound("Budget allocation not found")
            self.session.delete(allocation)
        logger.info(f"allocation_deleted: id={allocation_id}")

    def delete_spending(self, spending_id: int) -> None:
        """Delete a spending record together with the expense it records."""
        with atomic(self.session):
            spending = self.session.get(BudgetSpending, spending_id)
            if not spending:
                raise SpendingNotFound("Budget spending not found")
            txn = spending.transaction
            self.session.delete(spending)
            if txn is not None:
                self.session.delete(txn)
        logger.info(f"spending_deleted: id={spending_id} with transaction")

    def sweep(self) -> SweepResult:
        """Repair links left stale by transaction edits.

        Spending rows follow their expense to the budget now covering it, or
        are removed when none does or the transaction is no longer an
        expense. Allocations on transactions that are no longer income are
        removed. Transactions themselves are never touched.
        """
        result = SweepResult()
        with atomic(self.session):
            rows = self.session.scalars(
                select(BudgetSpending).options(
                    joinedload(BudgetSpending.budget),
                    joinedload(BudgetSpending.transaction),
                )
            ).all()
            for spending in rows:
                txn = spending.transaction
                if txn.type != TransactionType.expense:
                    self.session.delete(spending)
                    result.removed_spending += 1
                    continue
                budget = spending.budget
                if (
                    budget.category_id == txn.category_id
                    and budget.start_date <= txn.date <= budget.end_date
                ):
                    continue
                covering = self.budgets.find_active_budget(txn.category_id, txn.date)
                if covering is None:
                    self.session.delete(spending)
                    result.removed_spending += 1
                else:
                    spending.budget = covering
                    result.relinked += 1

            stale_allocations = self.session.scalars(
                select(BudgetAllocation)
                .join(Transaction, Transaction.id == BudgetAllocation.transaction_id)
                .where(Transaction.type != TransactionType.income)
            ).all()
            for allocation in stale_allocations:
                self.session.delete(allocation)
                result.removed_allocations += 1
        logger.info(
            f"reconcile_sweep: relinked={result.relinked} "
            f"removed_spending={result.removed_spending} "
            f"removed_allocations={result.removed_allocations}"
        )
        return result


@dataclass(frozen=True)
class MetricSummary:
    value_cents: int
    previous_cents: int
    change: float


@dataclass(frozen=True)
class BudgetSummary:
    total_cents: int
    remaining_cents: int
    percentage: float


@dataclass(frozen=True)
class MonthlyBucket:
    year: int
    month: int
    label: str
    income_cents: int
    expense_cents: int


@dataclass(frozen=True)
class CategoryShare:
    category_id: int
    name: str
    amount_cents: int
    percent: float


@dataclass(frozen=True)
class RecentTransaction:
    id: int
    date: date
    description: str
    amount_cents: int
    type: TransactionType
    category_id: int
    category_name: Optional[str]


@dataclass(frozen=True)
class DashboardSummary:
    period: Period
    previous_period: Period
    income: MetricSummary
    expenses: MetricSummary
    balance: MetricSummary
    budget: BudgetSummary
    monthly: list[MonthlyBucket]
    categories: list[CategoryShare]
    recent: list[RecentTransaction]


class DashboardService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def totals(self, period: Period) -> tuple[int, int]:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("expenses"),
        ).where(Transaction.date.between(period.start, period.end))
        row = self.session.execute(stmt).one()
        return int(row.income or 0), int(row.expenses or 0)

    def budget_total(self, period: Period) -> int:
        # Every budget of a category with spend in the period counts, whatever
        # its own interval.
        has_expense = (
            select(Transaction.id)
            .where(
                Transaction.category_id == Budget.category_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
            .exists()
        )
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Budget.amount_cents), 0)).where(
                    has_expense
                )
            ).scalar_one()
            or 0
        )

    def monthly_series(self, period: Period) -> list[MonthlyBucket]:
        months: list[date] = []
        current = month_start(period.start)
        last = month_start(period.end)
        while current <= last and len(months) < MONTHLY_SERIES_LIMIT:
            months.append(current)
            current = add_months(current, 1)

        year = extract("year", Transaction.date).label("year")
        month = extract("month", Transaction.date).label("month")
        stmt = (
            select(
                year,
                month,
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.income,
                                Transaction.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("income"),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.expense,
                                Transaction.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ).label("expenses"),
            )
            .where(Transaction.date.between(months[0], month_end(months[-1])))
            .group_by(year, month)
        )
        totals: dict[tuple[int, int], tuple[int, int]] = {}
        for row in self.session.execute(stmt):
            totals[(int(row.year), int(row.month))] = (
                int(row.income or 0),
                int(row.expenses or 0),
            )

        out: list[MonthlyBucket] = []
        for m in months:
            income, expenses = totals.get((m.year, m.month), (0, 0))
            out.append(
                MonthlyBucket(
                    year=m.year,
                    month=m.month,
                    label=m.strftime("%b"),
                    income_cents=income,
                    expense_cents=expenses,
                )
            )
        return out

    def category_breakdown(self, period: Period) -> list[CategoryShare]:
        total_expr = func.coalesce(func.sum(Transaction.amount_cents), 0)
        rows = self.session.execute(
            select(
                Category.id.label("category_id"),
                Category.name.label("name"),
                total_expr.label("total"),
            )
            .join(Transaction, Transaction.category_id == Category.id)
            .where(
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Category.id, Category.name)
            .having(total_expr > 0)
            .order_by(total_expr.desc(), Category.name)
        ).all()
        grand_total = sum(int(row.total or 0) for row in rows)
        return [
            CategoryShare(
                category_id=row.category_id,
                name=row.name,
                amount_cents=int(row.total),
                percent=round(int(row.total) / grand_total * 100, 1)
                if grand_total
                else 0.0,
            )
            for row in rows
        ]

    def recent_transactions(
        self, period: Period, limit: int = RECENT_TRANSACTIONS_LIMIT
    ) -> list[RecentTransaction]:
        return [
            RecentTransaction(
                id=txn.id,
                date=txn.date,
                description=txn.description,
                amount_cents=txn.amount_cents,
                type=txn.type,
                category_id=txn.category_id,
                category_name=txn.category_name,
            )
            for txn in TransactionService(self.session).recent(period, limit)
        ]

    def summarize(self, period: Period) -> DashboardSummary:
        _require_range(period.start, period.end)
        previous = period.previous()
        logger.info(
            f"dashboard_summary: start={period.start} end={period.end} "
            f"previous={previous.start}..{previous.end}"
        )
        try:
            income, expenses = self.totals(period)
            prev_income, prev_expenses = self.totals(previous)
            total_budget = self.budget_total(period)
            monthly = self.monthly_series(period)
            categories = self.category_breakdown(period)
            recent = self.recent_transactions(period)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"dashboard_summary_failed: {exc}")
            raise AggregationFailed(
                "Failed to summarize dashboard data", cause=exc
            ) from exc

        balance = income - expenses
        prev_balance = prev_income - prev_expenses
        budget_percentage = (
            round(expenses / total_budget * 100, 1) if total_budget else 0.0
        )
        return DashboardSummary(
            period=period,
            previous_period=previous,
            income=MetricSummary(
                income, prev_income, percent_change(income, prev_income)
            ),
            expenses=MetricSummary(
                expenses, prev_expenses, percent_change(expenses, prev_expenses)
            ),
            balance=MetricSummary(
                balance,
                prev_balance,
                percent_change(balance, prev_balance, signed=True),
            ),
            budget=BudgetSummary(
                total_cents=total_budget,
                remaining_cents=total_budget - expenses,
                percentage=budget_percentage,
            ),
            monthly=monthly,
            categories=categories,
            recent=recent,
        )
