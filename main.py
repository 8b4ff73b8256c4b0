import logging
from typing import Any, Optional

from fastapi import Depends, FastAPI, Path, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import get_db
from errors import (
    ApiError,
    build_error_response,
    check_database_health,
    diagnose_unexpected_error,
)
from models import Category, Subscription, Transaction, TransactionType
from scheduler import SchedulerManager
from schemas import (
    CategoryCreate,
    CategoryReorder,
    CategoryUpdate,
    DeactivateRequest,
    MonthlySummaryQuery,
    SubscriptionCreate,
    SubscriptionListQuery,
    SubscriptionUpdate,
    TransactionCreate,
    TransactionListQuery,
    TransactionUpdate,
)
from services import (
    CategoryNotFound,
    CategoryService,
    CategoryTypeMismatch,
    DuplicateCategoryIds,
    NoFieldsToUpdate,
    Page,
    SubscriptionService,
    TransactionService,
)
from tags import parse_tags


logger = logging.getLogger(__name__)

app = FastAPI(title="Kakeibo API")

scheduler_manager = SchedulerManager()

INVALID_BODY = "無効なリクエストボディです"
INVALID_PARAMS = "無効なパラメータです"
INVALID_QUERY = "無効なクエリパラメータです"
CATEGORY_NOT_FOUND = "指定されたカテゴリが見つかりません"
TRANSACTION_NOT_FOUND = "指定された取引が見つかりません"
SUBSCRIPTION_NOT_FOUND = "指定されたサブスクリプションが見つかりません"
ALREADY_INACTIVE = "サブスクリプションは既に非アクティブです"


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def get_session(request: Request, db: Session = Depends(get_db)) -> Session:
    request.state.db = db
    return db


# Serialization


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_category_ref(category: Optional[Category]) -> Optional[dict[str, Any]]:
    if category is None:
        return None
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "icon": category.icon,
    }


def serialize_category(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "icon": category.icon,
        "displayOrder": category.display_order,
        "isActive": category.is_active,
        "createdAt": _iso(category.created_at),
        "updatedAt": _iso(category.updated_at),
    }


def serialize_transaction(txn: Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "amount": txn.amount,
        "type": txn.type.value,
        "categoryId": txn.category_id,
        "description": txn.description,
        "transactionDate": _iso(txn.transaction_date),
        "paymentMethod": txn.payment_method,
        "tags": parse_tags(txn.tags, txn.id),
        "receiptUrl": txn.receipt_url,
        "isRecurring": txn.is_recurring,
        "recurringId": txn.recurring_id,
        "createdAt": _iso(txn.created_at),
        "updatedAt": _iso(txn.updated_at),
        "category": serialize_category_ref(txn.category),
    }


def serialize_subscription(sub: Subscription) -> dict[str, Any]:
    return {
        "id": sub.id,
        "name": sub.name,
        "amount": sub.amount,
        "categoryId": sub.category_id,
        "frequency": sub.frequency.value,
        "nextPaymentDate": _iso(sub.next_payment_date),
        "description": sub.description,
        "isActive": sub.is_active,
        "autoGenerate": sub.auto_generate,
        "createdAt": _iso(sub.created_at),
        "updatedAt": _iso(sub.updated_at),
        "category": serialize_category_ref(sub.category),
    }


def pagination_payload(page: Page) -> dict[str, Any]:
    return {
        "currentPage": page.page,
        "totalPages": page.total_pages,
        "totalCount": page.total_count,
        "hasNextPage": page.has_next_page,
        "hasPrevPage": page.has_prev_page,
        "limit": page.limit,
    }


# Errors


def validation_details(errors) -> list[dict[str, str]]:
    details = []
    for err in errors:
        loc = list(err.get("loc", ()))
        if loc and loc[0] in ("body", "query", "path"):
            loc = loc[1:]
        details.append(
            {
                "field": ".".join(str(part) for part in loc),
                "message": err.get("msg", ""),
                "type": err.get("type", ""),
            }
        )
    return details


def domain_error(exc: ValueError) -> ApiError:
    if isinstance(exc, CategoryNotFound):
        return ApiError(400, CATEGORY_NOT_FOUND, str(exc))
    if isinstance(exc, CategoryTypeMismatch):
        return ApiError(400, exc.message, exc.details)
    if isinstance(exc, DuplicateCategoryIds):
        return ApiError(400, "カテゴリIDに重複があります", str(exc))
    return ApiError(400, str(exc))


def parse_query(model: type[BaseModel], request: Request):
    try:
        return model.model_validate(dict(request.query_params))
    except ValidationError as exc:
        raise ApiError(400, INVALID_QUERY, validation_details(exc.errors())) from exc


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    source = errors[0]["loc"][0] if errors and errors[0].get("loc") else "body"
    message = {"path": INVALID_PARAMS, "query": INVALID_QUERY}.get(source, INVALID_BODY)
    if not get_settings().is_production:
        logger.info(
            "validation_failed: method=%s path=%s errors=%s",
            request.method,
            request.url.path,
            errors,
        )
    return JSONResponse(
        status_code=400,
        content={"error": message, "details": validation_details(errors)},
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 405:
        content = {
            "error": f"{request.method} メソッドはサポートされていません",
            "details": exc.detail,
        }
    elif exc.status_code == 404:
        content = {"error": "リソースが見つかりません", "details": exc.detail}
    else:
        content = {"error": str(exc.detail)}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    session = getattr(request.state, "db", None)
    if session is not None:
        session.rollback()
    try:
        return build_error_response(
            exc, "データベース処理中にエラーが発生しました", session
        )
    finally:
        if session is not None:
            session.close()


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error: method=%s path=%s", request.method, request.url.path)
    return build_error_response(
        exc,
        "サーバー内部エラーが発生しました",
        include_health_check=False,
        diagnosis=diagnose_unexpected_error(exc),
    )


# Health


@app.get("/health")
def health(db: Session = Depends(get_session)):
    report = check_database_health(db)
    return JSONResponse(status_code=200 if report["isHealthy"] else 503, content=report)


# Categories


@app.get("/api/categories")
def list_categories(
    type: Optional[TransactionType] = None, db: Session = Depends(get_session)
):
    categories = CategoryService(db).list_all(type=type)
    return {
        "success": True,
        "data": [serialize_category(category) for category in categories],
        "count": len(categories),
    }


@app.post("/api/categories", status_code=201)
def create_category(payload: CategoryCreate, db: Session = Depends(get_session)):
    category = CategoryService(db).create(payload)
    return {
        "success": True,
        "data": serialize_category(category),
        "message": "カテゴリが正常に作成されました",
    }


@app.post("/api/categories/seed")
def seed_categories(db: Session = Depends(get_session)):
    inserted = CategoryService(db).seed_defaults()
    return {
        "success": True,
        "data": {"inserted": inserted},
        "message": f"{inserted}件のデフォルトカテゴリを追加しました",
    }


@app.put("/api/categories/reorder")
def reorder_categories(payload: CategoryReorder, db: Session = Depends(get_session)):
    try:
        updated = CategoryService(db).reorder(payload.categories)
    except DuplicateCategoryIds as exc:
        raise domain_error(exc) from exc
    return {
        "success": True,
        "data": [serialize_category(category) for category in updated],
        "message": f"{len(updated)}件のカテゴリの表示順序が更新されました",
        "updatedCount": len(updated),
    }


@app.get("/api/categories/{category_id}")
def get_category(category_id: int = Path(..., gt=0), db: Session = Depends(get_session)):
    category = CategoryService(db).get(category_id)
    if not category:
        raise ApiError(404, CATEGORY_NOT_FOUND)
    return {"success": True, "data": serialize_category(category)}


@app.put("/api/categories/{category_id}")
def update_category(
    payload: CategoryUpdate,
    category_id: int = Path(..., gt=0),
    db: Session = Depends(get_session),
):
    try:
        category = CategoryService(db).update(category_id, payload)
    except NoFieldsToUpdate as exc:
        raise domain_error(exc) from exc
    if not category:
        raise ApiError(404, CATEGORY_NOT_FOUND)
    return {
        "success": True,
        "data": serialize_category(category),
        "message": "カテゴリが正常に更新されました",
    }


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: int = Path(..., gt=0), db: Session = Depends(get_session)):
    service = CategoryService(db)
    category = service.get(category_id)
    if not category:
        raise ApiError(404, CATEGORY_NOT_FOUND)
    if service.is_in_use(category_id):
        raise ApiError(
            409,
            "このカテゴリは使用中のため削除できません",
            extra={
                "message": "カテゴリを削除するには、関連する取引やサブスクリプションを先に削除してください"
            },
        )
    service.delete(category_id)
    return {
        "success": True,
        "data": serialize_category(category),
        "message": "カテゴリが正常に削除されました",
    }


# Transactions


@app.get("/api/transactions")
def list_transactions(request: Request, db: Session = Depends(get_session)):
    query = parse_query(TransactionListQuery, request)
    page = TransactionService(db).list(query)
    return {
        "success": True,
        "data": [serialize_transaction(txn) for txn in page.items],
        "count": len(page.items),
        "pagination": pagination_payload(page),
        "filters": {
            "from": _iso(query.date_from),
            "to": _iso(query.date_to),
            "type": query.type.value if query.type else None,
            "category_id": query.category_id,
            "search": query.search,
        },
        "sort": {"sort_by": query.sort_by, "sort_order": query.sort_order},
    }


@app.get("/api/transactions/summary")
def transaction_monthly_summary(request: Request, db: Session = Depends(get_session)):
    query = parse_query(MonthlySummaryQuery, request)
    rows = TransactionService(db).monthly_summary(query.year, query.month)
    return {
        "success": True,
        "data": [
            {
                "type": row.type.value,
                "categoryId": row.category_id,
                "categoryName": row.category_name,
                "categoryColor": row.category_color,
                "totalAmount": row.total_amount,
                "transactionCount": row.transaction_count,
            }
            for row in rows
        ],
        "period": {"year": query.year, "month": query.month},
    }


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int = Path(..., gt=0), db: Session = Depends(get_session)
):
    txn = TransactionService(db).get(transaction_id)
    if not txn:
        raise ApiError(404, TRANSACTION_NOT_FOUND)
    return {"success": True, "data": serialize_transaction(txn)}


@app.post("/api/transactions", status_code=201)
def create_transaction(payload: TransactionCreate, db: Session = Depends(get_session)):
    try:
        txn = TransactionService(db).create(payload)
    except (CategoryNotFound, CategoryTypeMismatch) as exc:
        raise domain_error(exc) from exc
    return {
        "success": True,
        "data": serialize_transaction(txn),
        "message": "取引が正常に作成されました",
    }


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    payload: TransactionUpdate,
    transaction_id: int = Path(..., gt=0),
    db: Session = Depends(get_session),
):
    try:
        txn = TransactionService(db).update(transaction_id, payload)
    except (CategoryNotFound, CategoryTypeMismatch, NoFieldsToUpdate) as exc:
        raise domain_error(exc) from exc
    if not txn:
        raise ApiError(404, TRANSACTION_NOT_FOUND)
    return {
        "success": True,
        "data": serialize_transaction(txn),
        "message": "取引が正常に更新されました",
    }


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int = Path(..., gt=0), db: Session = Depends(get_session)
):
    if not TransactionService(db).delete(transaction_id):
        raise ApiError(404, TRANSACTION_NOT_FOUND)
    return {
        "success": True,
        "data": {"id": transaction_id},
        "message": "取引が正常に削除されました",
    }


# Subscriptions


@app.get("/api/subscriptions")
def list_subscriptions(request: Request, db: Session = Depends(get_session)):
    query = parse_query(SubscriptionListQuery, request)
    page = SubscriptionService(db).list(query)
    return {
        "success": True,
        "data": [serialize_subscription(sub) for sub in page.items],
        "count": len(page.items),
        "pagination": pagination_payload(page),
        "filters": {"active": query.active},
    }


@app.get("/api/subscriptions/summary")
def subscription_summary(db: Session = Depends(get_session)):
    service = SubscriptionService(db)
    return {
        "success": True,
        "data": {
            "monthlyTotal": service.monthly_total(),
            "yearlyTotal": service.yearly_total(),
            "activeCount": service.active_count(),
        },
    }


@app.put("/api/subscriptions/deactivate")
def deactivate_subscription(
    payload: DeactivateRequest, db: Session = Depends(get_session)
):
    service = SubscriptionService(db)
    subscription = service.get(payload.id, include_inactive=True)
    if not subscription:
        raise ApiError(404, SUBSCRIPTION_NOT_FOUND)
    if not subscription.is_active:
        return {
            "success": True,
            "data": serialize_subscription(subscription),
            "message": ALREADY_INACTIVE,
        }
    subscription = service.deactivate(payload.id)
    return {
        "success": True,
        "data": serialize_subscription(subscription),
        "message": "サブスクリプションが正常に無効化されました",
    }


@app.get("/api/subscriptions/{subscription_id}")
def get_subscription(
    subscription_id: int = Path(..., gt=0), db: Session = Depends(get_session)
):
    subscription = SubscriptionService(db).get(subscription_id)
    if not subscription:
        raise ApiError(404, SUBSCRIPTION_NOT_FOUND)
    return {"success": True, "data": serialize_subscription(subscription)}


@app.post("/api/subscriptions", status_code=201)
def create_subscription(payload: SubscriptionCreate, db: Session = Depends(get_session)):
    try:
        subscription = SubscriptionService(db).create(payload)
    except (CategoryNotFound, CategoryTypeMismatch) as exc:
        raise domain_error(exc) from exc
    return {
        "success": True,
        "data": serialize_subscription(subscription),
        "message": "サブスクリプションが正常に作成されました",
    }


@app.put("/api/subscriptions/{subscription_id}")
def update_subscription(
    payload: SubscriptionUpdate,
    subscription_id: int = Path(..., gt=0),
    db: Session = Depends(get_session),
):
    try:
        subscription = SubscriptionService(db).update(subscription_id, payload)
    except (CategoryNotFound, CategoryTypeMismatch, NoFieldsToUpdate) as exc:
        raise domain_error(exc) from exc
    if not subscription:
        raise ApiError(404, SUBSCRIPTION_NOT_FOUND)
    return {
        "success": True,
        "data": serialize_subscription(subscription),
        "message": "サブスクリプションが正常に更新されました",
    }


@app.delete("/api/subscriptions/{subscription_id}")
def delete_subscription(
    subscription_id: int = Path(..., gt=0), db: Session = Depends(get_session)
):
    service = SubscriptionService(db)
    subscription = service.get(subscription_id, include_inactive=True)
    if not subscription:
        raise ApiError(404, SUBSCRIPTION_NOT_FOUND)
    if not subscription.is_active:
        return {
            "success": True,
            "data": serialize_subscription(subscription),
            "message": ALREADY_INACTIVE,
        }
    subscription = service.deactivate(subscription_id)
    return {
        "success": True,
        "data": serialize_subscription(subscription),
        "message": "サブスクリプションが正常に削除されました（非アクティブ化）",
    }
