from __future__ import annotations

import logging
import threading
import weakref
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Iterator, Mapping, NamedTuple, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from billscan import (
    DEFAULT_BILL_CATEGORIES,
    ConsolidatedSplit,
    check_breakdown_total,
    consolidate_breakdown,
    dominant_category,
)
from config import get_settings
from models import (
    DIRECTION_FOR_BUDGET,
    Budget,
    BudgetDirection,
    Notification,
    NotificationPreference,
    PeriodKind,
    SplitLineItem,
    Transaction,
    TransactionDirection,
    TransactionOrigin,
    TransactionSplit,
)
from periods import (
    PeriodWindow,
    infer_period_kind,
    resolve_range,
    resolve_window,
    today_local,
)
from schemas import BudgetIn, ScannedBillIn, TransactionIn


logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return get_settings().default_user_id


def format_amount(cents: int) -> str:
    symbol = get_settings().currency_symbol
    sign = "-" if cents < 0 else ""
    return f"{sign}{symbol}{abs(cents) / 100:,.2f}"


_owner_locks: weakref.WeakValueDictionary[int, threading.Lock] = (
    weakref.WeakValueDictionary()
)
_owner_locks_guard = threading.Lock()


def owner_lock(user_id: int) -> threading.Lock:
    """
    Per-owner lock serializing alert-relevant writes within this process.

    Entries live only while some caller still holds the lock object.
    """
    with _owner_locks_guard:
        lock = _owner_locks.get(user_id)
        if lock is None:
            lock = threading.Lock()
            _owner_locks[user_id] = lock
        return lock


@contextmanager
def owner_write_scope(session: Session, user_id: int) -> Iterator[None]:
    """
    Hold the owner lock and make sure the session reads current data.

    A read snapshot opened before the lock was taken may predate another
    write for this owner; it is dropped so the guard sees committed totals
    and the later insert cannot fail on a stale snapshot. The fresh
    transaction is opened as a write transaction on SQLite.
    """
    with owner_lock(user_id):
        pending = session.new or session.dirty or session.deleted
        if session.in_transaction() and not pending:
            session.rollback()
        if not session.in_transaction():
            session.connection(execution_options={"sqlite_begin": "IMMEDIATE"})
        yield


def _clean_category(value: str) -> str:
    clean = (value or "").strip()
    if not clean:
        raise ValueError("Category cannot be empty")
    return clean


class RollupService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    @staticmethod
    def contributions(txn: Transaction) -> dict[str, int]:
        """Per-category amounts one transaction adds to a rollup."""
        totals: dict[str, int] = defaultdict(int)
        if txn.origin == TransactionOrigin.scanned:
            for split in txn.splits:
                key = (split.category or "").strip()
                if key:
                    totals[key] += split.subtotal_cents
        else:
            key = (txn.category or "").strip()
            if key:
                totals[key] += txn.amount_cents
        return dict(totals)

    def rollup(
        self,
        direction: TransactionDirection,
        start: date,
        end: date,
        categories: Optional[Iterable[str]] = None,
    ) -> dict[str, int]:
        wanted: Optional[set[str]] = None
        if categories is not None:
            wanted = {c.strip() for c in categories if c and c.strip()}
            if not wanted:
                return {}

        manual_stmt = (
            select(
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.direction == direction,
                Transaction.origin == TransactionOrigin.manual,
                Transaction.date.between(start, end),
            )
            .group_by(Transaction.category)
        )
        scanned_stmt = (
            select(
                TransactionSplit.category,
                func.coalesce(func.sum(TransactionSplit.subtotal_cents), 0).label(
                    "total"
                ),
            )
            .join(Transaction, TransactionSplit.transaction_id == Transaction.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.direction == direction,
                Transaction.origin == TransactionOrigin.scanned,
                Transaction.date.between(start, end),
            )
            .group_by(TransactionSplit.category)
        )
        if wanted is not None:
            manual_stmt = manual_stmt.where(Transaction.category.in_(wanted))
            scanned_stmt = scanned_stmt.where(TransactionSplit.category.in_(wanted))

        totals: dict[str, int] = defaultdict(int)
        for stmt in (manual_stmt, scanned_stmt):
            for row in self.session.execute(stmt):
                key = (row.category or "").strip()
                if not key:
                    continue
                if wanted is not None and key not in wanted:
                    continue
                totals[key] += int(row.total or 0)
        return dict(totals)

    def rollup_window(
        self,
        direction: TransactionDirection,
        window: PeriodWindow,
        categories: Optional[Iterable[str]] = None,
    ) -> dict[str, int]:
        return self.rollup(direction, window.start, window.end, categories)


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_budgets(
        self,
        *,
        period_kind: Optional[PeriodKind] = None,
        direction: Optional[BudgetDirection] = None,
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.direction, Budget.period_kind, Budget.category)
        )
        if period_kind:
            stmt = stmt.where(Budget.period_kind == period_kind)
        if direction:
            stmt = stmt.where(Budget.direction == direction)
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise ValueError("Budget not found")
        return budget

    def find(
        self,
        category: str,
        period_kind: PeriodKind,
        direction: BudgetDirection = BudgetDirection.expense,
    ) -> Optional[Budget]:
        return self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.category == category.strip(),
                Budget.period_kind == period_kind,
                Budget.direction == direction,
            )
        )

    def upsert(self, data: BudgetIn) -> Budget:
        category = _clean_category(data.category)
        budget = self.find(category, data.period_kind, data.direction)
        if budget:
            budget.amount_cents = data.amount_cents
        else:
            budget = self._insert(category, data)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_saved: user={self.user_id} category={category} "
            f"period={data.period_kind.value} direction={data.direction.value} "
            f"amount_cents={data.amount_cents}"
        )
        return budget

    def _insert(self, category: str, data: BudgetIn) -> Budget:
        budget = Budget(
            user_id=self.user_id,
            category=category,
            amount_cents=data.amount_cents,
            period_kind=data.period_kind,
            direction=data.direction,
        )
        try:
            with self.session.begin_nested():
                self.session.add(budget)
        except IntegrityError:
            # a concurrent upsert inserted the same key first
            existing = self.find(category, data.period_kind, data.direction)
            if existing is None:
                raise
            existing.amount_cents = data.amount_cents
            budget = existing
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def overview(
        self, period_kind: PeriodKind, reference: Optional[date] = None
    ) -> dict[str, object]:
        window = resolve_window(period_kind, reference or today_local())
        budgets = self.list_budgets(period_kind=period_kind)
        rollups = RollupService(self.session, self.user_id)

        sections: dict[str, object] = {}
        for direction in (BudgetDirection.expense, BudgetDirection.income):
            actual_by_category = rollups.rollup_window(
                DIRECTION_FOR_BUDGET[direction], window
            )
            rows = []
            limit_total = 0
            budgeted_actual = 0
            for budget in budgets:
                if budget.direction != direction:
                    continue
                actual = actual_by_category.get(budget.category.strip(), 0)
                limit_total += budget.amount_cents
                budgeted_actual += actual
                rows.append(
                    {
                        "id": budget.id,
                        "category": budget.category,
                        "limit_cents": budget.amount_cents,
                        "actual_cents": actual,
                        "remaining_cents": budget.amount_cents - actual,
                    }
                )
            actual_total = sum(actual_by_category.values())
            sections[direction.value] = {
                "rows": rows,
                "totals": {
                    "limit_cents": limit_total,
                    "budgeted_actual_cents": budgeted_actual,
                    "unbudgeted_actual_cents": actual_total - budgeted_actual,
                    "actual_cents": actual_total,
                    "remaining_cents": limit_total - budgeted_actual,
                },
            }

        return {
            "period": {
                "kind": window.kind.value,
                "label": window.label,
                "start": window.start.isoformat(),
                "end": window.end.isoformat(),
            },
            **sections,
        }

    def comparison(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        category: Optional[str] = None,
    ) -> dict[str, object]:
        date_range = resolve_range(start, end)
        period_kind = infer_period_kind(
            date_range.start if start else None, date_range.end if end else None
        )
        wanted = None
        if category and category.strip() and category.strip() != "All":
            wanted = [category.strip()]

        rollups = RollupService(self.session, self.user_id)
        budgets = self.list_budgets(period_kind=period_kind)

        def build(direction: BudgetDirection) -> dict[str, object]:
            actual = rollups.rollup(
                DIRECTION_FOR_BUDGET[direction],
                date_range.start,
                date_range.end,
                wanted,
            )
            planned: dict[str, int] = {}
            for budget in budgets:
                key = budget.category.strip()
                if budget.direction != direction:
                    continue
                if wanted is not None and key not in wanted:
                    continue
                planned[key] = planned.get(key, 0) + budget.amount_cents

            is_expense = direction == BudgetDirection.expense
            plan_key = "budget_cents" if is_expense else "goal_cents"
            rows = []
            for name in sorted(set(actual) | set(planned)):
                plan = planned.get(name, 0)
                spent = actual.get(name, 0)
                if plan <= 0 and spent <= 0:
                    continue
                difference = plan - spent
                rows.append(
                    {
                        "category": name,
                        plan_key: plan,
                        "actual_cents": spent,
                        "difference_cents": difference,
                        "status": _comparison_status(is_expense, difference),
                    }
                )
            total_difference = sum(r["difference_cents"] for r in rows)
            return {
                "rows": rows,
                "totals": {
                    plan_key: sum(r[plan_key] for r in rows),
                    "actual_cents": sum(r["actual_cents"] for r in rows),
                    "difference_cents": total_difference,
                    "status": _comparison_status(is_expense, total_difference),
                },
            }

        return {
            "period_kind": period_kind.value,
            "start": date_range.start.isoformat(),
            "end": date_range.end.isoformat(),
            "expense": build(BudgetDirection.expense),
            "income": build(BudgetDirection.income),
        }


def _comparison_status(is_expense: bool, difference: int) -> str:
    if is_expense:
        return "Under Budget" if difference >= 0 else "Over Budget"
    return "Below Goal" if difference >= 0 else "Above Goal"


@dataclass(frozen=True)
class ThresholdCrossing:
    category: str
    window: PeriodWindow
    limit_cents: int
    prior_cents: int
    new_total_cents: int

    @property
    def message(self) -> str:
        return (
            f"Budget exceeded for {self.category} ({self.window.kind.value}, "
            f"{self.window.label}). Budget: {format_amount(self.limit_cents)}, "
            f"Spent: {format_amount(self.new_total_cents)}"
        )


@dataclass(frozen=True)
class AlertInstruction:
    crossings: tuple[ThresholdCrossing, ...]

    @property
    def message(self) -> str:
        return "; ".join(c.message for c in self.crossings)


class ThresholdGuard:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def evaluate(
        self, data: TransactionIn, period_kind: Optional[PeriodKind] = None
    ) -> Optional[AlertInstruction]:
        if data.amount_cents <= 0:
            raise ValueError("Invalid amount (must be a positive number)")
        category = _clean_category(data.category)
        return self.evaluate_contributions(
            data.direction,
            data.date,
            {category: data.amount_cents},
            period_kind or data.period_kind,
        )

    def evaluate_contributions(
        self,
        direction: TransactionDirection,
        on: date,
        contributions: Mapping[str, int],
        period_kind: Optional[PeriodKind] = None,
    ) -> Optional[AlertInstruction]:
        if on is None:
            raise ValueError("Transaction date is required")
        if direction != TransactionDirection.debit:
            return None
        if not NotificationService(self.session, self.user_id).notifications_enabled():
            return None

        kind = period_kind or PeriodKind.monthly
        window = resolve_window(kind, on)
        budgets = BudgetService(self.session, self.user_id)
        rollups = RollupService(self.session, self.user_id)

        crossings: list[ThresholdCrossing] = []
        for category, amount in contributions.items():
            budget = budgets.find(category, kind, BudgetDirection.expense)
            if budget is None:
                continue
            prior = rollups.rollup_window(
                TransactionDirection.debit, window, [category]
            ).get(category, 0)
            new_total = prior + amount
            if new_total > budget.amount_cents:
                crossings.append(
                    ThresholdCrossing(
                        category=category,
                        window=window,
                        limit_cents=budget.amount_cents,
                        prior_cents=prior,
                        new_total_cents=new_total,
                    )
                )
        if not crossings:
            return None
        return AlertInstruction(tuple(crossings))


@dataclass
class WriteResult:
    transaction: Transaction
    notification: Optional[Notification]


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def create(self, data: TransactionIn) -> WriteResult:
        category = _clean_category(data.category)
        with owner_write_scope(self.session, self.user_id):
            alert = ThresholdGuard(self.session, self.user_id).evaluate(data)
            txn = Transaction(
                user_id=self.user_id,
                direction=data.direction,
                amount_cents=data.amount_cents,
                category=category,
                date=data.date,
                origin=TransactionOrigin.manual,
                description=(data.description or "").strip() or None,
            )
            return self._commit(txn, alert)

    def create_scanned(self, data: ScannedBillIn) -> WriteResult:
        with owner_write_scope(self.session, self.user_id):
            known = [
                b.category
                for b in BudgetService(self.session, self.user_id).list_budgets(
                    direction=BudgetDirection.expense
                )
            ]
            known.extend(DEFAULT_BILL_CATEGORIES)
            splits = consolidate_breakdown(data.splits, known)
            check_breakdown_total(data.amount_cents, splits)

            txn = self._scanned_transaction(data, splits)
            alert = ThresholdGuard(self.session, self.user_id).evaluate_contributions(
                data.direction,
                data.date,
                RollupService.contributions(txn),
                data.period_kind,
            )
            return self._commit(txn, alert)

    def _scanned_transaction(
        self, data: ScannedBillIn, splits: list[ConsolidatedSplit]
    ) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            direction=data.direction,
            amount_cents=data.amount_cents,
            category=dominant_category(splits, data.direction),
            date=data.date,
            origin=TransactionOrigin.scanned,
            description=f"Bill from {data.store_name.strip()}"
            if data.store_name and data.store_name.strip()
            else None,
        )
        for position, split in enumerate(splits):
            txn.splits.append(
                TransactionSplit(
                    position=position,
                    category=split.category,
                    subtotal_cents=split.subtotal_cents,
                    is_non_essential=split.is_non_essential,
                    line_items=[
                        SplitLineItem(
                            name=(item.name or "").strip() or "Unknown Item",
                            unit_price_cents=item.unit_price_cents,
                            quantity=item.quantity,
                        )
                        for item in split.items
                    ],
                )
            )
        return txn

    def _commit(
        self, txn: Transaction, alert: Optional[AlertInstruction]
    ) -> WriteResult:
        notification: Optional[Notification] = None
        try:
            self.session.add(txn)
            self.session.flush()
            if alert is not None:
                notification = Notification(
                    user_id=self.user_id,
                    transaction_id=txn.id,
                    message=alert.message,
                )
                self.session.add(notification)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user={self.user_id} id={txn.id} "
            f"origin={txn.origin.value} direction={txn.direction.value} "
            f"amount_cents={txn.amount_cents} alert={notification is not None}"
        )
        return WriteResult(transaction=txn, notification=notification)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction)
            .options(
                selectinload(Transaction.splits).selectinload(
                    TransactionSplit.line_items
                )
            )
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def list(
        self,
        *,
        direction: Optional[TransactionDirection] = None,
        category: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.splits))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if direction:
            stmt = stmt.where(Transaction.direction == direction)
        if category and category.strip() and category.strip() != "All":
            name = category.strip()
            stmt = stmt.where(
                or_(
                    Transaction.category == name,
                    Transaction.splits.any(TransactionSplit.category == name),
                )
            )
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        return self.session.scalars(stmt).all()


class PendingAlert(NamedTuple):
    transaction_id: int
    occurred_on: date
    message: str


class NotificationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def has_alert(self, transaction_id: int) -> bool:
        stmt = select(Notification.id).where(
            Notification.transaction_id == transaction_id
        )
        return self.session.scalar(stmt.limit(1)) is not None

    def list_recent(self, limit: int = 50) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def mark_read(self, notification_id: int, read: bool = True) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if not notification or notification.user_id != self.user_id:
            raise ValueError("Notification not found")
        notification.read = read
        self.session.commit()
        return notification

    def notifications_enabled(self) -> bool:
        enabled = self.session.scalar(
            select(NotificationPreference.enabled).where(
                NotificationPreference.user_id == self.user_id
            )
        )
        return True if enabled is None else bool(enabled)

    def toggle_enabled(self) -> bool:
        pref = self.session.scalar(
            select(NotificationPreference).where(
                NotificationPreference.user_id == self.user_id
            )
        )
        if pref is None:
            pref = NotificationPreference(user_id=self.user_id, enabled=False)
            self.session.add(pref)
        else:
            pref.enabled = not pref.enabled
        self.session.commit()
        return pref.enabled

    def _debit_history(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.splits))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.direction == TransactionDirection.debit,
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def _missing_alerts(self) -> list[PendingAlert]:
        budgets = BudgetService(self.session, self.user_id).list_budgets(
            direction=BudgetDirection.expense
        )
        if not budgets:
            return []

        history = [
            (txn, RollupService.contributions(txn)) for txn in self._debit_history()
        ]
        alerted = set(
            self.session.scalars(
                select(Notification.transaction_id).where(
                    Notification.user_id == self.user_id
                )
            ).all()
        )

        pending: list[PendingAlert] = []
        for budget in budgets:
            category = budget.category.strip()
            buckets: dict[date, tuple[PeriodWindow, list[Transaction], int]] = {}
            for txn, contributed in history:
                amount = contributed.get(category)
                if amount is None:
                    continue
                window = resolve_window(budget.period_kind, txn.date)
                _, members, total = buckets.get(window.start, (window, [], 0))
                members.append(txn)
                buckets[window.start] = (window, members, total + amount)

            for window, members, total in buckets.values():
                if total <= budget.amount_cents:
                    continue
                message = (
                    f"Budget exceeded for {category} in {window.label}! "
                    f"Spent {format_amount(total)} exceeds budget of "
                    f"{format_amount(budget.amount_cents)}."
                )
                for txn in members:
                    if txn.id in alerted:
                        continue
                    alerted.add(txn.id)
                    pending.append(PendingAlert(txn.id, txn.date, message))
        return pending

    def reconcile(self) -> int:
        """
        Replay the owner's debit history against every expense budget and file
        a notification for each over-limit transaction that has none yet.
        Backfilled notifications are dated to their transaction's day.
        Returns the number of notifications created.
        """
        with owner_write_scope(self.session, self.user_id):
            pending = self._missing_alerts()
            created = 0
            try:
                for alert in pending:
                    # another session may have filed it since the replay
                    if self.has_alert(alert.transaction_id):
                        continue
                    try:
                        with self.session.begin_nested():
                            self.session.add(
                                Notification(
                                    user_id=self.user_id,
                                    transaction_id=alert.transaction_id,
                                    message=alert.message,
                                    created_at=datetime.combine(
                                        alert.occurred_on, time.min
                                    ),
                                )
                            )
                    except IntegrityError:
                        logger.info(
                            f"reconcile_skip_duplicate: user={self.user_id} "
                            f"transaction={alert.transaction_id}"
                        )
                        continue
                    created += 1
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        logger.info(
            f"reconcile: user={self.user_id} candidates={len(pending)} "
            f"created={created}"
        )
        return created


def reconcile_all(session: Session) -> int:
    owners = session.scalars(
        select(Budget.user_id)
        .where(Budget.direction == BudgetDirection.expense)
        .distinct()
    ).all()
    created = 0
    for user_id in owners:
        service = NotificationService(session, user_id)
        if not service.notifications_enabled():
            continue
        created += service.reconcile()
    return created
