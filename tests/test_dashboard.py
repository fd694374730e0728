from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import AggregationFailed, ValidationError
from models import TransactionType
from periods import Period
from schemas import BudgetIn, CategoryIn, TransactionIn
from services import (
    BudgetService,
    CategoryService,
    DashboardService,
    TransactionService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


JUNE = Period("custom", date(2024, 6, 1), date(2024, 6, 30))


def _add(session, category_id, day, amount_cents, type, description="entry"):
    return TransactionService(session).create(
        TransactionIn(
            date=day,
            description=description,
            amount_cents=amount_cents,
            type=type,
            category_id=category_id,
        )
    )


def test_income_change_against_previous_period() -> None:
    session = make_session()
    salary = CategoryService(session).create(CategoryIn(name="Salary"))
    _add(session, salary.id, date(2024, 5, 15), 100_000, TransactionType.income)
    _add(session, salary.id, date(2024, 6, 15), 120_000, TransactionType.income)

    summary = DashboardService(session).summarize(JUNE)

    assert summary.previous_period.start == date(2024, 5, 2)
    assert summary.previous_period.end == date(2024, 5, 31)
    assert summary.previous_period.days == JUNE.days
    assert summary.income.value_cents == 120_000
    assert summary.income.previous_cents == 100_000
    assert summary.income.change == 20.0
    assert summary.balance.value_cents == 120_000


def test_changes_are_zero_without_previous_activity() -> None:
    session = make_session()
    categories = CategoryService(session)
    salary = categories.create(CategoryIn(name="Salary"))
    food = categories.create(CategoryIn(name="Food"))
    _add(session, salary.id, date(2024, 6, 3), 50_000, TransactionType.income)
    _add(session, food.id, date(2024, 6, 4), 20_000, TransactionType.expense)

    summary = DashboardService(session).summarize(JUNE)

    assert summary.income.change == 0
    assert summary.expenses.change == 0
    assert summary.balance.change == 0
    assert summary.balance.value_cents == 30_000


def test_balance_change_scales_by_absolute_previous_balance() -> None:
    session = make_session()
    categories = CategoryService(session)
    salary = categories.create(CategoryIn(name="Salary"))
    food = categories.create(CategoryIn(name="Food"))
    _add(session, food.id, date(2024, 5, 20), 10_000, TransactionType.expense)
    _add(session, salary.id, date(2024, 6, 3), 5_000, TransactionType.income)

    summary = DashboardService(session).summarize(JUNE)

    assert summary.balance.previous_cents == -10_000
    assert summary.balance.value_cents == 5_000
    assert summary.balance.change == 150.0
    assert summary.expenses.change == -100.0


def test_budget_totals_count_budgets_of_categories_with_spend() -> None:
    session = make_session()
    categories = CategoryService(session)
    food = categories.create(CategoryIn(name="Food"))
    travel = categories.create(CategoryIn(name="Travel"))
    budgets = BudgetService(session)
    for category_id, amount, start, end in (
        (food.id, 50_000, date(2024, 6, 1), date(2024, 6, 30)),
        (food.id, 10_000, date(2024, 7, 1), date(2024, 7, 31)),
        (travel.id, 30_000, date(2024, 6, 1), date(2024, 6, 30)),
    ):
        budgets.upsert_budget(
            BudgetIn(
                category_id=category_id,
                amount_cents=amount,
                start_date=start,
                end_date=end,
            )
        )
    _add(session, food.id, date(2024, 6, 5), 20_000, TransactionType.expense)

    summary = DashboardService(session).summarize(JUNE)

    assert summary.budget.total_cents == 60_000
    assert summary.budget.remaining_cents == 40_000
    assert summary.budget.percentage == 33.3


def test_budget_summary_without_budgets() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    _add(session, food.id, date(2024, 6, 5), 2_000, TransactionType.expense)

    summary = DashboardService(session).summarize(JUNE)

    assert summary.budget.total_cents == 0
    assert summary.budget.remaining_cents == -2_000
    assert summary.budget.percentage == 0


def test_monthly_series_is_capped_at_six_months() -> None:
    session = make_session()
    categories = CategoryService(session)
    salary = categories.create(CategoryIn(name="Salary"))
    food = categories.create(CategoryIn(name="Food"))
    _add(session, salary.id, date(2024, 3, 10), 5_000, TransactionType.income)
    _add(session, food.id, date(2024, 3, 11), 1_500, TransactionType.expense)
    _add(session, food.id, date(2024, 8, 1), 9_900, TransactionType.expense)

    year = Period("custom", date(2024, 1, 1), date(2024, 12, 31))
    monthly = DashboardService(session).summarize(year).monthly

    assert [m.label for m in monthly] == ["Jan", "Feb", "Mar", "Apr", "May", "Jun"]
    assert monthly[2].income_cents == 5_000
    assert monthly[2].expense_cents == 1_500
    assert all(m.expense_cents == 0 for m in monthly if m.month != 3)


def test_monthly_series_single_month() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    _add(session, food.id, date(2024, 6, 30), 700, TransactionType.expense)

    monthly = DashboardService(session).monthly_series(JUNE)

    assert len(monthly) == 1
    assert (monthly[0].year, monthly[0].month) == (2024, 6)
    assert monthly[0].expense_cents == 700


def test_category_breakdown_sorted_and_skips_empty() -> None:
    session = make_session()
    categories = CategoryService(session)
    food = categories.create(CategoryIn(name="Food"))
    travel = categories.create(CategoryIn(name="Travel"))
    salary = categories.create(CategoryIn(name="Salary"))
    categories.create(CategoryIn(name="Health"))
    _add(session, travel.id, date(2024, 6, 2), 10_000, TransactionType.expense)
    _add(session, food.id, date(2024, 6, 3), 12_000, TransactionType.expense)
    _add(session, food.id, date(2024, 6, 9), 18_000, TransactionType.expense)
    _add(session, salary.id, date(2024, 6, 1), 90_000, TransactionType.income)
    _add(session, travel.id, date(2024, 7, 2), 99_000, TransactionType.expense)

    breakdown = DashboardService(session).summarize(JUNE).categories

    assert [c.name for c in breakdown] == ["Food", "Travel"]
    assert [c.amount_cents for c in breakdown] == [30_000, 10_000]
    assert [c.percent for c in breakdown] == [75.0, 25.0]


def test_recent_transactions_limited_to_five_newest() -> None:
    session = make_session()
    food = CategoryService(session).create(CategoryIn(name="Food"))
    for day in range(1, 8):
        _add(
            session,
            food.id,
            date(2024, 6, day),
            100 * day,
            TransactionType.expense,
            description=f"Day {day}",
        )

    recent = DashboardService(session).summarize(JUNE).recent

    assert len(recent) == 5
    assert [r.date.day for r in recent] == [7, 6, 5, 4, 3]
    assert recent[0].category_name == "Food"


def test_summarize_rejects_inverted_period() -> None:
    session = make_session()
    with pytest.raises(ValidationError):
        DashboardService(session).summarize(
            Period("custom", date(2024, 6, 30), date(2024, 6, 1))
        )


def test_store_failure_becomes_aggregation_failed(monkeypatch) -> None:
    session = make_session()
    failure = OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    def broken_execute(*args, **kwargs):
        raise failure

    monkeypatch.setattr(session, "execute", broken_execute)

    with pytest.raises(AggregationFailed) as excinfo:
        DashboardService(session).summarize(JUNE)
    assert excinfo.value.code == "aggregation_failed"
    assert excinfo.value.cause is failure
