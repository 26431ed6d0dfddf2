from datetime import date, datetime, timezone
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


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PeriodKind(str, Enum):
    weekly = "Weekly"
    monthly = "Monthly"
    quarterly = "Quarterly"
    yearly = "Yearly"


class BudgetDirection(str, Enum):
    expense = "expense"
    income = "income"


class TransactionDirection(str, Enum):
    debit = "debit"
    credit = "credit"


class TransactionOrigin(str, Enum):
    manual = "manual"
    scanned = "scanned"


# expense budgets are measured against debits, income goals against credits
DIRECTION_FOR_BUDGET = {
    BudgetDirection.expense: TransactionDirection.debit,
    BudgetDirection.income: TransactionDirection.credit,
}


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period_kind: Mapped[PeriodKind] = mapped_column(
        SAEnum(PeriodKind), nullable=False, default=PeriodKind.monthly
    )
    direction: Mapped[BudgetDirection] = mapped_column(
        SAEnum(BudgetDirection), nullable=False, default=BudgetDirection.expense
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "category",
            "period_kind",
            "direction",
            name="uq_budget_user_category_period_direction",
        ),
        CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
        Index("ix_budget_user_period", "user_id", "period_kind"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    direction: Mapped[TransactionDirection] = mapped_column(
        SAEnum(TransactionDirection), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    origin: Mapped[TransactionOrigin] = mapped_column(
        SAEnum(TransactionOrigin), nullable=False, default=TransactionOrigin.manual
    )
    description: Mapped[Optional[str]] = mapped_column(Text)

    splits: Mapped[list["TransactionSplit"]] = relationship(
        "TransactionSplit",
        back_populates="transaction",
        order_by="TransactionSplit.position",
        cascade="all, delete-orphan",
    )
    notification: Mapped[Optional["Notification"]] = relationship(
        "Notification", back_populates="transaction", uselist=False
    )

    __table_args__ = (
        Index("ix_transactions_user_direction_date", "user_id", "direction", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class TransactionSplit(Base):
    """One sub-category of a scanned bill; the authoritative breakdown."""

    __tablename__ = "transaction_splits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_non_essential: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    transaction: Mapped["Transaction"] = relationship(
        "Transaction", back_populates="splits"
    )
    line_items: Mapped[list["SplitLineItem"]] = relationship(
        "SplitLineItem",
        back_populates="split",
        order_by="SplitLineItem.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_split_category", "category"),
        CheckConstraint("subtotal_cents >= 0", name="ck_split_subtotal_positive"),
    )


class SplitLineItem(Base):
    __tablename__ = "split_line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    split_id: Mapped[int] = mapped_column(
        ForeignKey("transaction_splits.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    split: Mapped["TransactionSplit"] = relationship(
        "TransactionSplit", back_populates="line_items"
    )

    __table_args__ = (
        CheckConstraint("unit_price_cents >= 0", name="ck_line_item_price_positive"),
        CheckConstraint("quantity > 0", name="ck_line_item_quantity_positive"),
    )


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    transaction: Mapped["Transaction"] = relationship(
        "Transaction", back_populates="notification"
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_notification_transaction"),
        Index("ix_notification_user_created", "user_id", "created_at"),
    )


class NotificationPreference(Base, TimestampMixin):
    __tablename__ = "notification_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_notification_preference_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
