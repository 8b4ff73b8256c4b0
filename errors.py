import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text

from config import get_settings


logger = logging.getLogger(__name__)

EXPECTED_TABLES = ("categories", "transactions", "subscriptions")

STATUS_BY_KIND = {
    "BINDING_MISSING": 503,
    "BINDING_INVALID": 503,
    "MIGRATION_FAILED": 503,
    "DATABASE_LOCKED": 503,
    "CONNECTION_FAILED": 503,
    "FOREIGN_KEY_VIOLATION": 400,
    "NOT_NULL_VIOLATION": 400,
    "CHECK_VIOLATION": 400,
    "UNIQUE_VIOLATION": 409,
    "QUERY_EXECUTION_FAILED": 500,
    "UNKNOWN_DATABASE_ERROR": 500,
    "UNKNOWN": 500,
}


class ApiError(Exception):
    """An error that maps directly onto a JSON error response."""

    def __init__(
        self,
        status_code: int,
        error: str,
        details: Any = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details
        self.extra = extra or {}

    def to_content(self) -> dict[str, Any]:
        content: dict[str, Any] = {"error": self.error}
        if self.details is not None:
            content["details"] = self.details
        content.update(self.extra)
        return content


@dataclass
class ErrorDiagnosis:
    kind: str
    user_message: str
    debug_message: str
    suggestions: list[str] = field(default_factory=list)
    technical_details: dict[str, Any] = field(default_factory=dict)
    health_status: str = "unhealthy"

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND.get(self.kind, 500)


def _stack_head(exc: BaseException, lines: int = 5) -> list[str]:
    formatted = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return "".join(formatted).splitlines()[:lines]


def _contains_any(message: str, needles: tuple[str, ...]) -> bool:
    return any(needle in message for needle in needles)


def diagnose_error(exc: BaseException, session: Any = None) -> ErrorDiagnosis:
    message = str(exc)
    lowered = message.lower()

    if session is None:
        return ErrorDiagnosis(
            kind="BINDING_MISSING",
            user_message="データベース接続の設定に問題があります",
            debug_message="データベースセッションが見つかりません",
            suggestions=[
                "KAKEIBO_DATABASE_URL が正しく設定されているか確認してください",
                "リクエストにデータベースセッションが注入されているか確認してください",
            ],
            technical_details={"sessionExists": False},
        )

    if not callable(getattr(session, "execute", None)):
        return ErrorDiagnosis(
            kind="BINDING_INVALID",
            user_message="データベース接続の設定に問題があります",
            debug_message="データベースセッションが無効です（executeメソッドが存在しません）",
            suggestions=[
                "セッションが SQLAlchemy の Session であるか確認してください",
            ],
            technical_details={"sessionType": type(session).__name__},
        )

    if _contains_any(lowered, ("no such table", "does not exist")):
        return ErrorDiagnosis(
            kind="MIGRATION_FAILED",
            user_message="データベースの初期化に問題があります",
            debug_message=f"必要なテーブルが存在しません: {message}",
            suggestions=[
                "データベースマイグレーションが実行されているか確認してください",
                "alembic upgrade head を実行してください",
            ],
            technical_details={"sqlError": message, "errorType": "table_missing"},
            health_status="degraded",
        )

    if "database is locked" in lowered:
        return ErrorDiagnosis(
            kind="DATABASE_LOCKED",
            user_message="データベースが一時的に利用できません",
            debug_message="データベースがロックされています",
            suggestions=[
                "少し時間をおいて再試行してください",
                "複数の同時書き込みが発生している可能性があります",
            ],
            technical_details={"sqlError": message, "retryable": True},
            health_status="degraded",
        )

    if _contains_any(
        lowered, ("foreign key constraint failed", "violates foreign key constraint")
    ):
        return ErrorDiagnosis(
            kind="FOREIGN_KEY_VIOLATION",
            user_message="関連するデータが存在しません",
            debug_message=f"外部キー制約違反: {message}",
            suggestions=["参照先のカテゴリやサブスクリプションが存在するか確認してください"],
            technical_details={"sqlError": message},
            health_status="healthy",
        )

    if _contains_any(lowered, ("not null constraint failed", "violates not-null constraint")):
        return ErrorDiagnosis(
            kind="NOT_NULL_VIOLATION",
            user_message="必須項目が不足しています",
            debug_message=f"NOT NULL 制約違反: {message}",
            suggestions=["必須項目がすべて指定されているか確認してください"],
            technical_details={"sqlError": message},
            health_status="healthy",
        )

    if _contains_any(lowered, ("check constraint failed", "violates check constraint")):
        return ErrorDiagnosis(
            kind="CHECK_VIOLATION",
            user_message="データ形式エラー",
            debug_message=f"CHECK 制約違反: {message}",
            suggestions=["金額は正の整数、表示順序は0以上で指定してください"],
            technical_details={"sqlError": message},
            health_status="healthy",
        )

    if _contains_any(lowered, ("unique constraint failed", "duplicate key value")):
        return ErrorDiagnosis(
            kind="UNIQUE_VIOLATION",
            user_message="同じデータが既に存在します",
            debug_message=f"一意制約違反: {message}",
            suggestions=["重複する値がないか確認してください"],
            technical_details={"sqlError": message},
            health_status="healthy",
        )

    if _contains_any(
        lowered,
        ("unable to open database", "could not connect", "connection", "timeout", "network"),
    ):
        return ErrorDiagnosis(
            kind="CONNECTION_FAILED",
            user_message="データベースへの接続に問題があります",
            debug_message=f"接続エラー: {message}",
            suggestions=[
                "データベースファイルまたはサーバーにアクセスできるか確認してください",
                "接続先URLとタイムアウト設定を確認してください",
            ],
            technical_details={"networkError": message, "retryable": True},
        )

    if "SQLITE_" in message or "SQL" in message:
        return ErrorDiagnosis(
            kind="QUERY_EXECUTION_FAILED",
            user_message="データベース処理中にエラーが発生しました",
            debug_message=f"SQLクエリの実行に失敗しました: {message}",
            suggestions=[
                "データベーススキーマが最新の状態か確認してください",
                "クエリパラメータが正しい形式か確認してください",
            ],
            technical_details={"sqlError": message, "errorStack": _stack_head(exc)},
            health_status="degraded",
        )

    settings = get_settings()
    return ErrorDiagnosis(
        kind="UNKNOWN_DATABASE_ERROR",
        user_message="データベース処理中に予期しないエラーが発生しました",
        debug_message=f"不明なエラー: {message}",
        suggestions=[
            "エラーログを確認してください",
            "データベース接続設定を確認してください",
        ],
        technical_details={
            "originalError": message,
            "errorStack": None if settings.is_production else _stack_head(exc),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def diagnose_unexpected_error(exc: BaseException) -> ErrorDiagnosis:
    """Diagnosis for failures that did not come from the database layer."""
    message = str(exc)
    settings = get_settings()
    return ErrorDiagnosis(
        kind="UNKNOWN",
        user_message="予期しないエラーが発生しました",
        debug_message=f"{type(exc).__name__}: {message}",
        suggestions=["エラーログを確認してください"],
        technical_details={
            "exceptionType": type(exc).__name__,
            "errorStack": None if settings.is_production else _stack_head(exc),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        health_status="healthy",
    )


def check_database_health(session: Any) -> dict[str, Any]:
    diagnostics: list[str] = []
    if session is None:
        diagnostics.append("データベースセッションが見つかりません")
        return {"isHealthy": False, "status": "unhealthy", "diagnostics": diagnostics}
    if not callable(getattr(session, "execute", None)):
        diagnostics.append("データベースセッションが無効です（executeメソッドが存在しません）")
        return {"isHealthy": False, "status": "unhealthy", "diagnostics": diagnostics}

    try:
        result = session.execute(text("SELECT 1")).scalar()
        if result != 1:
            diagnostics.append("データベース基本クエリが失敗しました")
            return {"isHealthy": False, "status": "degraded", "diagnostics": diagnostics}

        existing = set(inspect(session.connection()).get_table_names())
        missing = [table for table in EXPECTED_TABLES if table not in existing]
        if missing:
            diagnostics.append(f"必要なテーブルが見つかりません: {', '.join(missing)}")
            diagnostics.append("マイグレーションが未実行の可能性があります")
            return {"isHealthy": False, "status": "degraded", "diagnostics": diagnostics}
    except Exception as exc:
        diagnostics.append(f"データベース健全性チェック中にエラー: {exc}")
        return {"isHealthy": False, "status": "unhealthy", "diagnostics": diagnostics}

    diagnostics.append("データベース接続正常")
    return {"isHealthy": True, "status": "healthy", "diagnostics": diagnostics}


def build_error_response(
    exc: BaseException,
    message: str,
    session: Any = None,
    include_health_check: bool = True,
    diagnosis: Optional[ErrorDiagnosis] = None,
) -> JSONResponse:
    settings = get_settings()
    if diagnosis is None:
        diagnosis = diagnose_error(exc, session)

    health = None
    if include_health_check and not settings.is_production:
        if session is not None and callable(getattr(session, "rollback", None)):
            session.rollback()
        health = check_database_health(session)

    content: dict[str, Any] = {
        "error": message,
        "details": diagnosis.user_message,
        "errorType": diagnosis.kind,
    }
    if not settings.is_production:
        debug_info: dict[str, Any] = {
            "debugMessage": diagnosis.debug_message,
            "suggestions": diagnosis.suggestions,
            "technicalDetails": diagnosis.technical_details,
            "healthStatus": diagnosis.health_status,
        }
        if health is not None:
            debug_info["databaseHealth"] = health
        content["debugInfo"] = debug_info

    status_code = diagnosis.status_code
    if status_code >= 500:
        logger.error(
            "api_error: kind=%s message=%s detail=%s",
            diagnosis.kind,
            message,
            diagnosis.debug_message,
        )
    else:
        logger.warning(
            "api_error: kind=%s message=%s detail=%s",
            diagnosis.kind,
            message,
            diagnosis.debug_message,
        )
    return JSONResponse(status_code=status_code, content=content)
