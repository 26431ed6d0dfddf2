from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import (
    PeriodKind,
    Transaction,
    TransactionDirection,
    TransactionOrigin,
)
from periods import resolve_window
from schemas import BillSplitIn, LineItemIn, ScannedBillIn, TransactionIn
from services import RollupService, TransactionService


def _spend(session: Session, category: str, cents: int, on: date, **kwargs) -> None:
    TransactionService(session).create(
        TransactionIn(
            direction=kwargs.get("direction", TransactionDirection.debit),
            amount_cents=cents,
            category=category,
            date=on,
        )
    )


def test_rollup_groups_manual_transactions_by_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _spend(session, "Groceries", 1_200, date(2025, 3, 1))
        _spend(session, "Groceries", 800, date(2025, 3, 31))
        _spend(session, "Transport", 450, date(2025, 3, 15))
        _spend(session, "Groceries", 9_999, date(2025, 4, 1))
        _spend(
            session,
            "Salary",
            250_000,
            date(2025, 3, 5),
            direction=TransactionDirection.credit,
        )

        window = resolve_window(PeriodKind.monthly, date(2025, 3, 10))
        rollups = RollupService(session)
        assert rollups.rollup_window(TransactionDirection.debit, window) == {
            "Groceries": 2_000,
            "Transport": 450,
        }
        assert rollups.rollup_window(TransactionDirection.credit, window) == {
            "Salary": 250_000
        }
        assert rollups.rollup_window(
            TransactionDirection.debit, window, ["Transport"]
        ) == {"Transport": 450}
        assert rollups.rollup_window(TransactionDirection.debit, window, []) == {}


def test_scanned_bill_counts_only_its_sub_categories() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        result = TransactionService(session).create_scanned(
            ScannedBillIn(
                amount_cents=1_500,
                date=date(2025, 3, 8),
                store_name="Corner Market",
                splits=[
                    BillSplitIn(
                        category="Groceries",
                        items=[
                            LineItemIn(name="Rice", unit_price_cents=500, quantity=2)
                        ],
                    ),
                    BillSplitIn(category="Dining Out", subtotal_cents=500),
                ],
            )
        )
        txn = result.transaction
        assert txn.category == "Groceries"
        assert RollupService.contributions(txn) == {
            "Groceries": 1_000,
            "Dining Out": 500,
        }

        totals = RollupService(session).rollup(
            TransactionDirection.debit, date(2025, 3, 1), date(2025, 3, 31)
        )
        assert totals == {"Groceries": 1_000, "Dining Out": 500}


def test_rollup_trims_keys_and_skips_blank_categories() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add_all(
            [
                Transaction(
                    user_id=1,
                    direction=TransactionDirection.debit,
                    amount_cents=300,
                    category="Groceries ",
                    date=date(2025, 3, 2),
                    origin=TransactionOrigin.manual,
                ),
                Transaction(
                    user_id=1,
                    direction=TransactionDirection.debit,
                    amount_cents=200,
                    category="Groceries",
                    date=date(2025, 3, 3),
                    origin=TransactionOrigin.manual,
                ),
                Transaction(
                    user_id=1,
                    direction=TransactionDirection.debit,
                    amount_cents=700,
                    category="  ",
                    date=date(2025, 3, 4),
                    origin=TransactionOrigin.manual,
                ),
            ]
        )
        session.commit()

        totals = RollupService(session).rollup(
            TransactionDirection.debit, date(2025, 3, 1), date(2025, 3, 31)
        )
        assert totals == {"Groceries": 500}


def test_rollup_is_scoped_to_owner() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _spend(session, "Groceries", 1_000, date(2025, 3, 2))
        TransactionService(session, user_id=2).create(
            TransactionIn(
                direction=TransactionDirection.debit,
                amount_cents=5_000,
                category="Groceries",
                date=date(2025, 3, 2),
            )
        )

        start, end = date(2025, 3, 1), date(2025, 3, 31)
        mine = RollupService(session).rollup(TransactionDirection.debit, start, end)
        assert mine == {"Groceries": 1_000}
        assert RollupService(session, user_id=2).rollup(
            TransactionDirection.debit, start, end
        ) == {"Groceries": 5_000}


def test_list_filters_by_split_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _spend(session, "Transport", 300, date(2025, 3, 1))
        service = TransactionService(session)
        service.create_scanned(
            ScannedBillIn(
                amount_cents=900,
                date=date(2025, 3, 2),
                splits=[
                    BillSplitIn(category="Groceries", subtotal_cents=600),
                    BillSplitIn(category="Dining Out", subtotal_cents=300),
                ],
            )
        )

        dining = service.list(category="Dining Out")
        assert [t.origin for t in dining] == [TransactionOrigin.scanned]
        assert len(service.list()) == 2
        assert len(service.list(category="All")) == 2
        assert service.list(start=date(2025, 3, 2))[0].amount_cents == 900


def test_rollup_totals_add_up_to_all_debits() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        amounts = [("Groceries", 1_250), ("Transport", 300), ("Rent", 80_000)]
        for category, cents in amounts:
            _spend(session, category, cents, date(2025, 6, 10))
        TransactionService(session).create_scanned(
            ScannedBillIn(
                amount_cents=700,
                date=date(2025, 6, 11),
                splits=[
                    BillSplitIn(category="Groceries", subtotal_cents=400),
                    BillSplitIn(category="Personal Care", subtotal_cents=300),
                ],
            )
        )

        totals = RollupService(session).rollup(
            TransactionDirection.debit, date(2025, 6, 1), date(2025, 6, 30)
        )
        assert sum(totals.values()) == sum(c for _, c in amounts) + 700
        assert totals["Groceries"] == 1_650
