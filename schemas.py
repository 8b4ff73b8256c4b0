import re
from datetime import date
from typing import Annotated, Literal, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictInt,
    field_validator,
)
from pydantic.alias_generators import to_camel

from models import Frequency, TransactionType


DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
COLOR_PATTERN = re.compile(r"^#[0-9A-F]{6}$", re.IGNORECASE)


def _parse_iso_date(value):
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise ValueError("日付はYYYY-MM-DD形式で入力してください")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError("有効な日付を入力してください") from None


def _reject_null(value):
    if value is None:
        raise ValueError("nullは指定できません")
    return value


IsoDate = Annotated[date, BeforeValidator(_parse_iso_date)]
Amount = Annotated[StrictInt, Field(gt=0)]
PositiveId = Annotated[int, Field(gt=0)]


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _check_color(value: Optional[str]) -> Optional[str]:
    if value is not None and not COLOR_PATTERN.match(value):
        raise ValueError("カラーコードは#RRGGBB形式で入力してください")
    return value


class CategoryCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=50)
    display_order: Optional[int] = Field(None, ge=0)

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: Optional[str]) -> Optional[str]:
        return _check_color(value)


class CategoryUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=50)
    display_order: Optional[int] = Field(None, ge=0)

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: Optional[str]) -> Optional[str]:
        return _check_color(value)

    @field_validator("name", "display_order", mode="before")
    @classmethod
    def reject_null(cls, value):
        return _reject_null(value)


class ReorderItem(ApiModel):
    id: PositiveId
    display_order: int = Field(..., ge=0)


class CategoryReorder(ApiModel):
    categories: list[ReorderItem] = Field(..., min_length=1)


class TransactionCreate(ApiModel):
    amount: Amount
    type: TransactionType
    transaction_date: IsoDate
    category_id: Optional[PositiveId] = None
    description: Optional[str] = Field(None, max_length=500)
    payment_method: Optional[str] = Field(None, max_length=50)
    tags: Optional[list[str]] = None
    receipt_url: Optional[str] = Field(None, max_length=2048)


class TransactionUpdate(ApiModel):
    amount: Optional[Amount] = None
    type: Optional[TransactionType] = None
    transaction_date: Optional[IsoDate] = None
    category_id: Optional[PositiveId] = None
    description: Optional[str] = Field(None, max_length=500)
    payment_method: Optional[str] = Field(None, max_length=50)
    tags: Optional[list[str]] = None
    receipt_url: Optional[str] = Field(None, max_length=2048)

    @field_validator("amount", "type", "transaction_date", mode="before")
    @classmethod
    def reject_null(cls, value):
        return _reject_null(value)


class TransactionListQuery(BaseModel):
    """Query string of ``GET /api/transactions`` (snake_case keys on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date_from: Optional[IsoDate] = Field(None, alias="from")
    date_to: Optional[IsoDate] = Field(None, alias="to")
    type: Optional[TransactionType] = None
    category_id: Optional[PositiveId] = None
    search: Optional[str] = Field(None, min_length=1)
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=1000)
    sort_by: Literal["transactionDate", "amount", "createdAt"] = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"


class MonthlySummaryQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    year: int = Field(..., ge=1, le=9999)
    month: int = Field(..., ge=1, le=12)


def _parse_active_flag(value):
    if isinstance(value, bool):
        return value
    if value == "true":
        return True
    if value == "false":
        return False
    return None


class SubscriptionListQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    active: Annotated[Optional[bool], BeforeValidator(_parse_active_flag)] = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)


class SubscriptionCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount: Amount
    category_id: Optional[PositiveId] = None
    frequency: Frequency
    next_payment_date: IsoDate
    description: Optional[str] = Field(None, max_length=500)
    is_active: bool = True
    auto_generate: bool = True


class SubscriptionUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    amount: Optional[Amount] = None
    category_id: Optional[PositiveId] = None
    frequency: Optional[Frequency] = None
    next_payment_date: Optional[IsoDate] = None
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None
    auto_generate: Optional[bool] = None

    @field_validator(
        "name",
        "amount",
        "frequency",
        "next_payment_date",
        "is_active",
        "auto_generate",
        mode="before",
    )
    @classmethod
    def reject_null(cls, value):
        return _reject_null(value)


class DeactivateRequest(ApiModel):
    id: PositiveId
