from datetime import date

import pytest
from pydantic import ValidationError

from models import Frequency, TransactionType
from schemas import (
    CategoryCreate,
    CategoryReorder,
    CategoryUpdate,
    SubscriptionCreate,
    SubscriptionListQuery,
    SubscriptionUpdate,
    TransactionCreate,
    TransactionListQuery,
    TransactionUpdate,
)


def _fields(exc: ValidationError) -> set[str]:
    return {".".join(str(part) for part in err["loc"]) for err in exc.errors()}


def test_transaction_create_reads_camel_case():
    data = TransactionCreate.model_validate(
        {
            "amount": 1200,
            "type": "expense",
            "transactionDate": "2024-04-01",
            "categoryId": 3,
            "paymentMethod": "現金",
            "tags": ["ランチ"],
        }
    )
    assert data.transaction_date == date(2024, 4, 1)
    assert data.type == TransactionType.expense
    assert data.payment_method == "現金"


@pytest.mark.parametrize("amount", [0, -5, 1.5, "100", True])
def test_transaction_amount_must_be_positive_integer(amount):
    with pytest.raises(ValidationError) as excinfo:
        TransactionCreate.model_validate(
            {"amount": amount, "type": "expense", "transactionDate": "2024-04-01"}
        )
    assert "amount" in _fields(excinfo.value)


@pytest.mark.parametrize("value", ["2024-4-1", "2024/04/01", "2024-02-30", "20240401"])
def test_transaction_date_must_be_real_iso_date(value):
    with pytest.raises(ValidationError) as excinfo:
        TransactionCreate.model_validate(
            {"amount": 100, "type": "income", "transactionDate": value}
        )
    assert "transactionDate" in _fields(excinfo.value)


def test_transaction_update_drops_server_managed_fields():
    data = TransactionUpdate.model_validate(
        {"isRecurring": True, "recurringId": 4, "id": 9, "createdAt": "2024-01-01"}
    )
    assert data.model_dump(exclude_unset=True) == {}


def test_transaction_update_rejects_null_on_required_columns():
    with pytest.raises(ValidationError) as excinfo:
        TransactionUpdate.model_validate({"amount": None, "transactionDate": None})
    assert _fields(excinfo.value) == {"amount", "transactionDate"}


def test_transaction_update_allows_clearing_category():
    data = TransactionUpdate.model_validate({"categoryId": None})
    assert data.model_dump(exclude_unset=True) == {"category_id": None}


def test_category_color_is_case_insensitive():
    assert CategoryCreate(name="食費", type="expense", color="#ff6b6b").color == "#ff6b6b"
    with pytest.raises(ValidationError):
        CategoryCreate(name="食費", type="expense", color="red")
    with pytest.raises(ValidationError):
        CategoryCreate(name="食費", type="expense", color="#FF6B6")


def test_category_name_length():
    with pytest.raises(ValidationError):
        CategoryCreate(name="", type="expense")
    with pytest.raises(ValidationError):
        CategoryCreate(name="x" * 101, type="expense")


def test_category_update_ignores_type_and_active_flag():
    data = CategoryUpdate.model_validate({"type": "income", "isActive": False})
    assert data.model_dump(exclude_unset=True) == {}


def test_category_update_keeps_display_order():
    data = CategoryUpdate.model_validate({"displayOrder": 4})
    assert data.model_dump(exclude_unset=True) == {"display_order": 4}


def test_reorder_requires_positive_ids_and_items():
    with pytest.raises(ValidationError):
        CategoryReorder.model_validate({"categories": []})
    with pytest.raises(ValidationError):
        CategoryReorder.model_validate({"categories": [{"id": 0, "displayOrder": 1}]})
    with pytest.raises(ValidationError):
        CategoryReorder.model_validate({"categories": [{"id": 1, "displayOrder": -1}]})


def test_transaction_list_query_defaults():
    query = TransactionListQuery.model_validate({})
    assert query.page == 1
    assert query.limit == 20
    assert query.sort_by == "createdAt"
    assert query.sort_order == "desc"


def test_transaction_list_query_parses_strings():
    query = TransactionListQuery.model_validate(
        {"from": "2024-01-01", "to": "2024-01-31", "category_id": "2", "limit": "1000"}
    )
    assert query.date_from == date(2024, 1, 1)
    assert query.date_to == date(2024, 1, 31)
    assert query.category_id == 2
    assert query.limit == 1000


@pytest.mark.parametrize(
    "params",
    [
        {"limit": "0"},
        {"limit": "1001"},
        {"page": "0"},
        {"sort_by": "name"},
        {"sort_order": "up"},
        {"category_id": "abc"},
        {"search": ""},
        {"from": "2024-1-1"},
    ],
)
def test_transaction_list_query_rejects(params):
    with pytest.raises(ValidationError):
        TransactionListQuery.model_validate(params)


@pytest.mark.parametrize(
    "raw, expected", [("true", True), ("false", False), ("yes", None), ("", None)]
)
def test_subscription_active_filter(raw, expected):
    assert SubscriptionListQuery.model_validate({"active": raw}).active is expected


def test_subscription_list_limit_bounds():
    assert SubscriptionListQuery.model_validate({}).limit == 50
    with pytest.raises(ValidationError):
        SubscriptionListQuery.model_validate({"limit": "101"})


def test_subscription_create_defaults():
    data = SubscriptionCreate.model_validate(
        {
            "name": "Netflix",
            "amount": 1490,
            "frequency": "monthly",
            "nextPaymentDate": "2024-05-01",
        }
    )
    assert data.frequency == Frequency.monthly
    assert data.is_active is True
    assert data.auto_generate is True
    assert data.category_id is None


def test_subscription_create_rejects_unknown_frequency():
    with pytest.raises(ValidationError):
        SubscriptionCreate.model_validate(
            {
                "name": "Netflix",
                "amount": 1490,
                "frequency": "biweekly",
                "nextPaymentDate": "2024-05-01",
            }
        )


def test_subscription_update_rejects_null_name():
    with pytest.raises(ValidationError) as excinfo:
        SubscriptionUpdate.model_validate({"name": None})
    assert _fields(excinfo.value) == {"name"}
