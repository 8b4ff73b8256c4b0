from __future__ import annotations

import calendar
import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from models import Category, Frequency, Subscription, Transaction, TransactionType
from schemas import (
    CategoryCreate,
    CategoryUpdate,
    ReorderItem,
    SubscriptionCreate,
    SubscriptionListQuery,
    SubscriptionUpdate,
    TransactionCreate,
    TransactionListQuery,
    TransactionUpdate,
)
from tags import stringify_tags


logger = logging.getLogger(__name__)

TYPE_LABELS = {
    TransactionType.income: "収入用",
    TransactionType.expense: "支出用",
}

DEFAULT_CATEGORIES: dict[TransactionType, list[tuple[str, str, str]]] = {
    TransactionType.expense: [
        ("食費", "#FF6B6B", "utensils"),
        ("交通費", "#4ECDC4", "car"),
        ("光熱費", "#DDA0DD", "zap"),
        ("通信費", "#FFEAA7", "smartphone"),
        ("娯楽費", "#F7DC6F", "game-controller-01"),
        ("医療費", "#96CEB4", "heart"),
        ("日用品", "#45B7D1", "shopping-cart"),
        ("その他", "#D5DBDB", "more-horizontal"),
    ],
    TransactionType.income: [
        ("給与", "#58D68D", "briefcase"),
        ("副業", "#1890FF", "laptop"),
        ("投資", "#722ED1", "trending-up"),
        ("その他", "#13C2C2", "plus-circle"),
    ],
}

MONTHLY_FACTORS = {
    Frequency.daily: 30.0,
    Frequency.weekly: 52 / 12,
    Frequency.monthly: 1.0,
    Frequency.yearly: 1 / 12,
}


class CategoryNotFound(ValueError):
    def __init__(self, category_id: int) -> None:
        self.category_id = category_id
        super().__init__(f"カテゴリID {category_id} は存在しないか、無効です")


class CategoryTypeMismatch(ValueError):
    def __init__(self, message: str, details: str) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class DuplicateCategoryIds(ValueError):
    def __init__(self, duplicates: list[int]) -> None:
        self.duplicates = duplicates
        super().__init__(
            "重複しているID: " + ", ".join(str(item) for item in duplicates)
        )


class NoFieldsToUpdate(ValueError):
    def __init__(self) -> None:
        super().__init__("更新するフィールドが指定されていません")


def _type_label(value: TransactionType) -> str:
    return TYPE_LABELS[TransactionType(value)]


def _active_category(session: Session, category_id: int) -> Category:
    category = session.get(Category, category_id)
    if not category or not category.is_active:
        raise CategoryNotFound(category_id)
    return category


def ensure_transaction_category(
    session: Session, category_id: Optional[int], txn_type: TransactionType
) -> Optional[Category]:
    if category_id is None:
        return None
    category = _active_category(session, category_id)
    if category.type != txn_type:
        raise CategoryTypeMismatch(
            "カテゴリタイプと取引タイプが一致しません",
            f"カテゴリ「{category.name}」は{_type_label(category.type)}のカテゴリですが、"
            f"{_type_label(txn_type)}の取引として登録しようとしています",
        )
    return category


def ensure_subscription_category(
    session: Session,
    category_id: Optional[int],
    *,
    strict: bool = True,
    subscription_name: Optional[str] = None,
) -> Optional[Category]:
    """Check that a subscription points at an active expense category.

    With ``strict`` off an income category is accepted and only logged.
    """
    if category_id is None:
        return None
    category = _active_category(session, category_id)
    if category.type == TransactionType.expense:
        return category
    if strict:
        raise CategoryTypeMismatch(
            "カテゴリタイプが不適切です",
            f"カテゴリ「{category.name}」は{_type_label(category.type)}のカテゴリです。"
            "サブスクリプションには支出用のカテゴリを指定してください",
        )
    logger.warning(
        "subscription_income_category: category_id=%s category=%s subscription=%s",
        category.id,
        category.name,
        subscription_name,
    )
    return category


@dataclass
class Page:
    items: list[Any]
    total_count: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.limit) if self.total_count else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


TransactionPage = Page


@dataclass
class MonthlySummaryRow:
    type: TransactionType
    category_id: Optional[int]
    category_name: Optional[str]
    category_color: Optional[str]
    total_amount: int
    transaction_count: int


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.is_active.is_(True))
            .order_by(Category.display_order, Category.id)
        )
        if type is not None:
            stmt = stmt.where(Category.type == type)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int, *, include_inactive: bool = False) -> Optional[Category]:
        category = self.session.get(Category, category_id)
        if not category:
            return None
        if not include_inactive and not category.is_active:
            return None
        return category

    def _next_display_order(self, type: TransactionType) -> int:
        current = self.session.execute(
            select(func.max(Category.display_order)).where(
                Category.type == type, Category.is_active.is_(True)
            )
        ).scalar()
        return (current or 0) + 1

    def create(self, data: CategoryCreate) -> Category:
        display_order = data.display_order
        if display_order is None:
            display_order = self._next_display_order(data.type)
        category = Category(
            name=data.name,
            type=data.type,
            color=data.color,
            icon=data.icon,
            display_order=display_order,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Optional[Category]:
        category = self.get(category_id)
        if not category:
            return None
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise NoFieldsToUpdate()
        for key, value in fields.items():
            setattr(category, key, value)
        category.updated_at = datetime.utcnow()
        self.session.commit()
        return self.get(category_id)

    def is_in_use(self, category_id: int) -> bool:
        # Categories are only ever deactivated, so references stay valid.
        return False

    def delete(self, category_id: int) -> bool:
        category = self.get(category_id)
        if not category:
            return False
        category.is_active = False
        category.updated_at = datetime.utcnow()
        self.session.commit()
        return True

    def reorder(self, items: list[ReorderItem]) -> list[Category]:
        counts = Counter(item.id for item in items)
        duplicates = sorted(cat_id for cat_id, count in counts.items() if count > 1)
        if duplicates:
            raise DuplicateCategoryIds(duplicates)

        updated: list[Category] = []
        try:
            for item in items:
                category = self.get(item.id)
                if not category:
                    continue
                category.display_order = item.display_order
                category.updated_at = datetime.utcnow()
                updated.append(category)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        if len(updated) != len(items):
            logger.warning(
                "category_reorder_partial: requested=%s updated=%s",
                len(items),
                len(updated),
            )
        return updated

    def seed_defaults(self) -> int:
        inserted = 0
        for txn_type, defaults in DEFAULT_CATEGORIES.items():
            existing = set(
                self.session.scalars(
                    select(Category.name).where(Category.type == txn_type)
                ).all()
            )
            for index, (name, color, icon) in enumerate(defaults, start=1):
                if name in existing:
                    continue
                self.session.add(
                    Category(
                        name=name,
                        type=txn_type,
                        color=color,
                        icon=icon,
                        display_order=index,
                    )
                )
                inserted += 1
        self.session.commit()
        if inserted:
            logger.info("categories_seeded: inserted=%s", inserted)
        return inserted


class TransactionService:
    SORT_COLUMNS = {
        "transactionDate": Transaction.transaction_date,
        "amount": Transaction.amount,
        "createdAt": Transaction.created_at,
    }

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, transaction_id: int) -> Optional[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.id == transaction_id)
        )
        return self.session.scalar(stmt)

    def create(self, data: TransactionCreate) -> Transaction:
        ensure_transaction_category(self.session, data.category_id, data.type)
        txn = Transaction(
            amount=data.amount,
            type=data.type,
            category_id=data.category_id,
            description=data.description,
            transaction_date=data.transaction_date,
            payment_method=data.payment_method,
            tags=stringify_tags(data.tags),
            receipt_url=data.receipt_url,
        )
        self.session.add(txn)
        self.session.commit()
        return self.get(txn.id)

    def list(self, query: TransactionListQuery) -> Page:
        conditions = []
        if query.date_from:
            conditions.append(Transaction.transaction_date >= query.date_from)
        if query.date_to:
            conditions.append(Transaction.transaction_date <= query.date_to)
        if query.type:
            conditions.append(Transaction.type == query.type)
        if query.category_id:
            conditions.append(Transaction.category_id == query.category_id)
        if query.search:
            conditions.append(
                Transaction.description.contains(query.search, autoescape=True)
            )

        total = self.session.execute(
            select(func.count(Transaction.id)).where(*conditions)
        ).scalar_one()

        column = self.SORT_COLUMNS[query.sort_by]
        if query.sort_order == "asc":
            ordering = (column.asc(), Transaction.id.asc())
        else:
            ordering = (column.desc(), Transaction.id.desc())
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(*conditions)
            .order_by(*ordering)
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        items = list(self.session.scalars(stmt).all())
        return Page(items=items, total_count=total, page=query.page, limit=query.limit)

    def update(self, transaction_id: int, data: TransactionUpdate) -> Optional[Transaction]:
        txn = self.get(transaction_id)
        if not txn:
            return None
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise NoFieldsToUpdate()

        effective_type = fields.get("type", txn.type)
        if "category_id" in fields:
            ensure_transaction_category(
                self.session, fields["category_id"], effective_type
            )
        elif txn.category is not None and txn.category.type != effective_type:
            raise CategoryTypeMismatch(
                "カテゴリタイプと取引タイプが一致しません",
                f"カテゴリ「{txn.category.name}」は{_type_label(txn.category.type)}のカテゴリですが、"
                f"{_type_label(effective_type)}の取引として登録しようとしています",
            )

        if "tags" in fields:
            fields["tags"] = stringify_tags(fields["tags"])
        for key, value in fields.items():
            setattr(txn, key, value)
        txn.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.expire(txn)
        return self.get(transaction_id)

    def delete(self, transaction_id: int) -> bool:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            return False
        self.session.delete(txn)
        self.session.commit()
        return True

    def monthly_summary(self, year: int, month: int) -> list[MonthlySummaryRow]:
        """Totals for one calendar month grouped by type and category.

        Uncategorised transactions form their own row with no category fields.
        """
        start = date(year, month, 1)
        end = date(year, month, calendar.monthrange(year, month)[1])
        stmt = (
            select(
                Transaction.type,
                Transaction.category_id,
                Category.name,
                Category.color,
                func.sum(Transaction.amount),
                func.count(Transaction.id),
            )
            .select_from(Transaction)
            .outerjoin(Category, Transaction.category_id == Category.id)
            .where(Transaction.transaction_date >= start, Transaction.transaction_date <= end)
            .group_by(Transaction.type, Transaction.category_id, Category.name, Category.color)
            .order_by(Transaction.type, Transaction.category_id)
        )
        return [
            MonthlySummaryRow(
                type=row[0],
                category_id=row[1],
                category_name=row[2],
                category_color=row[3],
                total_amount=int(row[4] or 0),
                transaction_count=row[5],
            )
            for row in self.session.execute(stmt)
        ]


class SubscriptionService:
    def __init__(self, session: Session, strict_category: Optional[bool] = None) -> None:
        self.session = session
        if strict_category is None:
            strict_category = get_settings().strict_subscription_category
        self.strict_category = strict_category

    def get(
        self, subscription_id: int, *, include_inactive: bool = False
    ) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .options(joinedload(Subscription.category))
            .where(Subscription.id == subscription_id)
        )
        if not include_inactive:
            stmt = stmt.where(Subscription.is_active.is_(True))
        return self.session.scalar(stmt)

    def list(self, query: SubscriptionListQuery) -> Page:
        conditions = []
        if query.active is not None:
            conditions.append(Subscription.is_active.is_(query.active))
        total = self.session.execute(
            select(func.count(Subscription.id)).where(*conditions)
        ).scalar_one()
        stmt = (
            select(Subscription)
            .options(joinedload(Subscription.category))
            .where(*conditions)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        items = list(self.session.scalars(stmt).all())
        return Page(items=items, total_count=total, page=query.page, limit=query.limit)

    def create(self, data: SubscriptionCreate) -> Subscription:
        ensure_subscription_category(
            self.session,
            data.category_id,
            strict=self.strict_category,
            subscription_name=data.name,
        )
        subscription = Subscription(
            name=data.name,
            amount=data.amount,
            category_id=data.category_id,
            frequency=data.frequency,
            next_payment_date=data.next_payment_date,
            description=data.description,
            is_active=data.is_active,
            auto_generate=data.auto_generate,
        )
        self.session.add(subscription)
        self.session.commit()
        return self.get(subscription.id, include_inactive=True)

    def update(
        self, subscription_id: int, data: SubscriptionUpdate
    ) -> Optional[Subscription]:
        subscription = self.get(subscription_id, include_inactive=True)
        if not subscription:
            return None
        fields = data.model_dump(exclude_unset=True)
        if not fields:
            raise NoFieldsToUpdate()
        if fields.get("category_id") is not None:
            ensure_subscription_category(
                self.session,
                fields["category_id"],
                strict=True,
                subscription_name=fields.get("name", subscription.name),
            )
        for key, value in fields.items():
            setattr(subscription, key, value)
        subscription.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.expire(subscription)
        return self.get(subscription_id, include_inactive=True)

    def deactivate(self, subscription_id: int) -> Optional[Subscription]:
        subscription = self.get(subscription_id, include_inactive=True)
        if not subscription:
            return None
        if subscription.is_active:
            subscription.is_active = False
            subscription.updated_at = datetime.utcnow()
            self.session.commit()
        return subscription

    def _active(self) -> list[Subscription]:
        stmt = select(Subscription).where(Subscription.is_active.is_(True))
        return list(self.session.scalars(stmt).all())

    def _monthly_sum(self) -> float:
        return sum(
            sub.amount * MONTHLY_FACTORS[Frequency(sub.frequency)]
            for sub in self._active()
        )

    def monthly_total(self) -> int:
        return math.floor(self._monthly_sum() + 0.5)

    def yearly_total(self) -> int:
        return math.floor(self._monthly_sum() * 12 + 0.5)

    def active_count(self) -> int:
        return self.session.execute(
            select(func.count(Subscription.id)).where(Subscription.is_active.is_(True))
        ).scalar_one()

    def due(self, on: date) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .options(joinedload(Subscription.category))
            .where(
                Subscription.is_active.is_(True),
                Subscription.next_payment_date <= on,
            )
            .order_by(Subscription.next_payment_date, Subscription.id)
        )
        return list(self.session.scalars(stmt).all())
