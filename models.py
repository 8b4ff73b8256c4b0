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
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[Optional[str]] = mapped_column(String(7))
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )
    subscriptions: Mapped[list["Subscription"]] = relationship(
        "Subscription", back_populates="category"
    )

    __table_args__ = (
        Index("ix_categories_type_active_order", "type", "is_active", "display_order"),
        CheckConstraint("display_order >= 0", name="ck_categories_order_non_negative"),
    )


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    next_payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_generate: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="subscriptions"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="subscription"
    )

    __table_args__ = (
        Index("ix_subscriptions_active_next", "is_active", "next_payment_date"),
        CheckConstraint("amount > 0", name="ck_subscriptions_amount_positive"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    description: Mapped[Optional[str]] = mapped_column(Text)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    tags: Mapped[Optional[str]] = mapped_column(Text)
    receipt_url: Mapped[Optional[str]] = mapped_column(String(2048))
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subscriptions.id")
    )

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    subscription: Mapped[Optional["Subscription"]] = relationship(
        "Subscription", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_date", "transaction_date"),
        Index("ix_transactions_type_date", "type", "transaction_date"),
        Index("ix_transactions_category_date", "category_id", "transaction_date"),
        Index("ix_transactions_recurring_date", "recurring_id", "transaction_date"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )
