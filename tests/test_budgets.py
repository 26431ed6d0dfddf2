from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import Base, build_engine
from models import Budget, BudgetDirection, PeriodKind, TransactionDirection
from schemas import BudgetIn, TransactionIn
from services import BudgetService, TransactionService


def _record(
    session: Session, direction: TransactionDirection, category: str, cents: int
) -> None:
    TransactionService(session).create(
        TransactionIn(
            direction=direction,
            amount_cents=cents,
            category=category,
            date=date(2025, 3, 12),
        )
    )


def _seed_march(session: Session) -> BudgetService:
    budgets = BudgetService(session)
    budgets.upsert(BudgetIn(category="Groceries", amount_cents=50_000))
    budgets.upsert(
        BudgetIn(
            category="Salary",
            amount_cents=300_000,
            direction=BudgetDirection.income,
        )
    )
    budgets.upsert(
        BudgetIn(
            category="Groceries", amount_cents=5_000, period_kind=PeriodKind.weekly
        )
    )
    _record(session, TransactionDirection.debit, "Groceries", 20_000)
    _record(session, TransactionDirection.debit, "Transport", 5_000)
    _record(session, TransactionDirection.credit, "Salary", 350_000)
    return budgets


def test_upsert_updates_existing_budget_for_same_key() -> None:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session)
        first = service.upsert(BudgetIn(category=" Groceries ", amount_cents=10_000))
        second = service.upsert(BudgetIn(category="Groceries", amount_cents=12_500))
        assert first.id == second.id
        assert second.category == "Groceries"
        assert second.amount_cents == 12_500

        service.upsert(
            BudgetIn(
                category="Groceries",
                amount_cents=2_000,
                period_kind=PeriodKind.weekly,
            )
        )
        service.upsert(
            BudgetIn(
                category="Groceries",
                amount_cents=2_000,
                direction=BudgetDirection.income,
            )
        )
        assert len(service.list_budgets()) == 3
        assert len(service.list_budgets(period_kind=PeriodKind.weekly)) == 1
        assert len(service.list_budgets(direction=BudgetDirection.income)) == 1


def test_store_rejects_duplicate_budget_key() -> None:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        for amount in (1_000, 2_000):
            session.add(
                Budget(
                    user_id=1,
                    category="Groceries",
                    amount_cents=amount,
                    period_kind=PeriodKind.monthly,
                    direction=BudgetDirection.expense,
                )
            )
        with pytest.raises(IntegrityError):
            session.commit()


def test_insert_race_falls_back_to_update() -> None:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session)
        existing = service.upsert(BudgetIn(category="Groceries", amount_cents=1_000))

        # another writer won the insert between find() and _insert()
        merged = service._insert(
            "Groceries", BudgetIn(category="Groceries", amount_cents=4_000)
        )
        session.commit()
        assert merged.id == existing.id
        assert session.scalars(select(Budget)).all()[0].amount_cents == 4_000
        assert len(session.scalars(select(Budget)).all()) == 1


def test_upsert_rejects_blank_category_and_delete_checks_owner() -> None:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session)
        with pytest.raises(ValueError, match="Category cannot be empty"):
            service.upsert(BudgetIn(category="   ", amount_cents=1_000))

        budget = service.upsert(BudgetIn(category="Groceries", amount_cents=1_000))
        with pytest.raises(ValueError, match="Budget not found"):
            BudgetService(session, user_id=2).delete(budget.id)
        service.delete(budget.id)
        assert service.list_budgets() == []
        with pytest.raises(ValueError, match="Budget not found"):
            service.delete(budget.id)


def test_overview_reports_limits_actuals_and_unbudgeted_spend() -> None:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = _seed_march(session)
        overview = budgets.overview(PeriodKind.monthly, date(2025, 3, 31))

        assert overview["period"] == {
            "kind": "Monthly",
            "label": "2025-03",
            "start": "2025-03-01",
            "end": "2025-03-31",
        }
        expense = overview["expense"]
        rows = [
            (r["category"], r["limit_cents"], r["actual_cents"])
            for r in expense["rows"]
        ]
        assert rows == [("Groceries", 50_000, 20_000)]
        assert expense["rows"][0]["remaining_cents"] == 30_000
        assert expense["totals"] == {
            "limit_cents": 50_000,
            "budgeted_actual_cents": 20_000,
            "unbudgeted_actual_cents": 5_000,
            "actual_cents": 25_000,
            "remaining_cents": 30_000,
        }
        income = overview["income"]
        assert income["rows"][0]["category"] == "Salary"
        assert income["rows"][0]["remaining_cents"] == -50_000

        april = budgets.overview(PeriodKind.monthly, date(2025, 4, 1))
        assert april["expense"]["totals"]["actual_cents"] == 0


def test_comparison_marks_under_and_over_budget() -> None:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = _seed_march(session)
        report = budgets.comparison("2025-03-01", "2025-03-31")

        assert report["period_kind"] == "Monthly"
        assert report["expense"]["rows"] == [
            {
                "category": "Groceries",
                "budget_cents": 50_000,
                "actual_cents": 20_000,
                "difference_cents": 30_000,
                "status": "Under Budget",
            },
            {
                "category": "Transport",
                "budget_cents": 0,
                "actual_cents": 5_000,
                "difference_cents": -5_000,
                "status": "Over Budget",
            },
        ]
        assert report["expense"]["totals"]["status"] == "Under Budget"
        assert report["income"]["rows"] == [
            {
                "category": "Salary",
                "goal_cents": 300_000,
                "actual_cents": 350_000,
                "difference_cents": -50_000,
                "status": "Above Goal",
            }
        ]

        only_groceries = budgets.comparison("2025-03-01", "2025-03-31", "Groceries")
        assert [r["category"] for r in only_groceries["expense"]["rows"]] == [
            "Groceries"
        ]
        assert only_groceries["income"]["rows"] == []

        weekly = budgets.comparison("2025-03-10", "2025-03-16")
        assert weekly["period_kind"] == "Weekly"
        assert weekly["expense"]["rows"][0]["budget_cents"] == 5_000

        with pytest.raises(ValueError):
            budgets.comparison("2025-04-01", "2025-03-01")


def test_zero_budget_is_listed_with_negative_remaining() -> None:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session)
        budgets.upsert(BudgetIn(category="Dining Out", amount_cents=0))
        _record(session, TransactionDirection.debit, "Dining Out", 1_500)

        (row,) = budgets.overview(PeriodKind.monthly, date(2025, 3, 1))["expense"][
            "rows"
        ]
        assert row["limit_cents"] == 0
        assert row["remaining_cents"] == -1_500
