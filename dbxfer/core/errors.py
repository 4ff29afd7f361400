"""
Standardized error classification for dbxfer.

Every failure the engine can surface maps to one `ErrorKind`. Exceptions raised
inside the engine derive from `DbxferError`; the orchestrator converts them to an
`ErrorInfo` carried on the failed `TransferResult`, so callers branch on
`result.error.kind` instead of matching message strings:

    result = transfer(source, destination, request)
    if not result.success and result.error.kind == ErrorKind.CANCELLED:
        ...
"""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Error categories surfaced to callers."""

    CONNECTION = "connection"       # Server unreachable, login failed
    SOURCE = "source"               # Missing source table, invalid query
    SCHEMA = "schema"               # Unmapped column type, CREATE TABLE failed
    TRANSFER = "transfer"           # Batch load failed, transaction rolled back
    CANCELLED = "cancelled"         # Caller requested cancellation
    VALIDATION = "validation"       # Malformed transfer request
    UNKNOWN = "unknown"             # Unclassified error


class ErrorInfo(BaseModel):
    """
    Serializable description of a failure.

    `details` carries driver-level context when it is available, e.g.
    `{"db_kind": "constraint", "sqlstate": "23505"}`.
    """

    kind: ErrorKind = Field(
        default=ErrorKind.UNKNOWN,
        description="Error category"
    )
    code: str = Field(
        default="UNKNOWN",
        description="Short machine code (SCHEMA_UNMAPPED_TYPE, DB_23505, ...)"
    )
    message: str = Field(
        default="Unknown error",
        description="Human-readable error message"
    )
    exception_type: Optional[str] = Field(
        None, description="Python exception class name of the root cause"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Optional extra context"
    )

    def to_dict(self) -> dict[str, Any]:
        d = {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
        }
        if self.exception_type is not None:
            d["exception_type"] = self.exception_type
        if self.details:
            d["details"] = self.details
        return d


class DbxferError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_code: str = "UNKNOWN"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = dict(details or {})

    def to_info(self) -> ErrorInfo:
        cause = self.__cause__
        return ErrorInfo(
            kind=self.kind,
            code=self.code,
            message=self.message,
            exception_type=type(cause).__name__ if cause is not None else type(self).__name__,
            details=self.details,
        )


class DbConnectionError(DbxferError):
    """Source or destination server unreachable, or authentication failed."""
    kind = ErrorKind.CONNECTION
    default_code = "CONN_ERROR"


class SourceError(DbxferError):
    """Source table does not exist or the source query is invalid."""
    kind = ErrorKind.SOURCE
    default_code = "SOURCE_ERROR"


class SchemaError(DbxferError):
    """Source type has no mapping, or destination table creation failed."""
    kind = ErrorKind.SCHEMA
    default_code = "SCHEMA_ERROR"


class TransferError(DbxferError):
    """A batch load failed; the open transaction is rolled back."""
    kind = ErrorKind.TRANSFER
    default_code = "TRANSFER_ERROR"


class CancellationError(DbxferError):
    """The caller cancelled the transfer."""
    kind = ErrorKind.CANCELLED
    default_code = "CANCELLED"

    def __init__(self, message: str = "Transfer cancelled by caller", **kwargs):
        super().__init__(message, **kwargs)


class RequestValidationError(DbxferError):
    """The transfer request is incomplete or inconsistent."""
    kind = ErrorKind.VALIDATION
    default_code = "INVALID_REQUEST"


def _sqlstate(error: Exception) -> Optional[str]:
    # psycopg exposes .sqlstate, psycopg2 .pgcode, pyodbc puts it in args[0]
    for attr in ("sqlstate", "pgcode"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and value:
            return value
    args = getattr(error, "args", ())
    if len(args) >= 2 and isinstance(args[0], str) and len(args[0]) == 5:
        return args[0]
    return None


def classify_db_error(error: Exception) -> dict[str, Any]:
    """
    Classify a DB-API driver exception into detail fields.

    Returns a dict suitable for `DbxferError(details=...)` with `db_kind`
    (constraint, deadlock, timeout, connection, permission or unknown) and the
    SQLSTATE when the driver exposes one.
    """
    error_str = str(error).lower()
    state = _sqlstate(error)
    details: dict[str, Any] = {}
    if state:
        details["sqlstate"] = state

    if "deadlock" in error_str or state in ("40001", "40P01"):
        details["db_kind"] = "deadlock"
    elif (
        "unique" in error_str
        or "duplicate" in error_str
        or "constraint" in error_str
        or "identity" in error_str
        or (state and state.startswith("23"))
    ):
        details["db_kind"] = "constraint"
    elif "timeout" in error_str or state in ("57014", "HYT00", "HYT01"):
        details["db_kind"] = "timeout"
    elif "connection" in error_str or "login" in error_str or (state and state.startswith("08")):
        details["db_kind"] = "connection"
    elif "permission" in error_str or "denied" in error_str or state == "42501":
        details["db_kind"] = "permission"
    else:
        details["db_kind"] = "unknown"
    return details


def classify_error(error: Exception) -> ErrorInfo:
    """Build an `ErrorInfo` for any exception reaching the orchestrator boundary."""
    if isinstance(error, DbxferError):
        return error.to_info()
    return ErrorInfo(
        kind=ErrorKind.UNKNOWN,
        code=f"PY_{type(error).__name__}",
        message=str(error) or type(error).__name__,
        exception_type=type(error).__name__,
        details=classify_db_error(error),
    )


__all__ = [
    "ErrorKind",
    "ErrorInfo",
    "DbxferError",
    "DbConnectionError",
    "SourceError",
    "SchemaError",
    "TransferError",
    "CancellationError",
    "RequestValidationError",
    "classify_db_error",
    "classify_error",
]
