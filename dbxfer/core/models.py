"""
Pydantic models shared by the transfer engine, the dialects and the CLI.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from dbxfer.core.errors import ErrorInfo, ErrorKind


DIALECT_ALIASES = {
    "mssql": "mssql",
    "sqlserver": "mssql",
    "sql_server": "mssql",
    "postgres": "postgres",
    "postgresql": "postgres",
    "pg": "postgres",
    "sqlite": "sqlite",
    "sqlite3": "sqlite",
}


class AuthenticationType(str, Enum):
    INTEGRATED = "integrated"       # Windows / trusted connection
    CREDENTIALS = "credentials"     # Username and password


class TransferMode(str, Enum):
    TABLE = "table"
    QUERY = "query"


class TransferAction(str, Enum):
    APPEND = "append"
    REPLACE = "replace"


class TransferState(str, Enum):
    VALIDATING = "validating"
    COUNTING = "counting"
    PREPARING_SCHEMA = "preparing_schema"
    CLEARING_DESTINATION = "clearing_destination"
    LOADING = "loading"
    COMMITTING = "committing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferState.SUCCEEDED, TransferState.FAILED, TransferState.CANCELLED)


class ConnectionParams(BaseModel):
    """
    Plain connection parameters for one server.

    Supplied by whatever stores the operator's connection settings; the engine
    treats `password` as an opaque string and never persists it.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    dialect: str = Field(..., description="mssql, postgres or sqlite")
    server: str = Field(
        default="",
        description="Host (or host\\instance) for servers; directory holding database files for sqlite"
    )
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    authentication: AuthenticationType = AuthenticationType.CREDENTIALS
    username: str = ""
    password: str = Field(default="", repr=False)
    timeout: int = Field(default=30, ge=0, description="Connect timeout in seconds")
    trust_server_certificate: bool = True
    database: Optional[str] = Field(default=None, description="Default database when a call names none")
    options: dict[str, str] = Field(
        default_factory=dict,
        description="Extra driver options, e.g. {'driver': 'ODBC Driver 18 for SQL Server'}"
    )

    @field_validator("dialect", mode="before")
    @classmethod
    def normalize_dialect(cls, v):
        key = str(v or "").strip().lower()
        if key not in DIALECT_ALIASES:
            raise ValueError(f"Unsupported dialect '{v}'. Supported: {sorted(set(DIALECT_ALIASES.values()))}")
        return DIALECT_ALIASES[key]

    def masked(self) -> dict[str, Any]:
        """Loggable view of the parameters with the password hidden."""
        data = self.model_dump()
        if data.get("password"):
            data["password"] = "***"
        return data


class TransferRequest(BaseModel):
    """
    Immutable configuration for one transfer.

    Only `source_table` is read in table mode and only `source_query` in query
    mode. `destination_table` is always an explicit input.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    source_database: str = ""
    mode: TransferMode = TransferMode.TABLE
    source_table: str = ""
    source_query: str = ""
    destination_database: str = ""
    destination_table: str = ""
    action: TransferAction = TransferAction.APPEND
    preserve_identity: bool = False

    @classmethod
    def for_table(
        cls,
        source_database: str,
        source_table: str,
        destination_database: str,
        destination_table: Optional[str] = None,
        **kwargs,
    ) -> "TransferRequest":
        """Table-mode request whose destination name defaults to the source table name."""
        return cls(
            source_database=source_database,
            mode=TransferMode.TABLE,
            source_table=source_table,
            destination_database=destination_database,
            destination_table=destination_table or source_table,
            **kwargs,
        )

    @property
    def is_query(self) -> bool:
        return self.mode == TransferMode.QUERY

    @property
    def source_expression(self) -> str:
        return self.source_query if self.is_query else self.source_table

    def validation_errors(self) -> List[str]:
        problems = []
        if self.is_query and not self.source_query:
            problems.append("source query is required in query mode")
        if not self.is_query and not self.source_table:
            problems.append("source table name is required in table mode")
        if not self.destination_table:
            problems.append("destination table name is required")
        return problems


class ColumnDescriptor(BaseModel):
    """Column metadata read from the source catalog or result set."""
    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    nullable: bool = True
    max_length: Optional[int] = Field(default=None, description="-1 means MAX")
    precision: Optional[int] = None
    scale: Optional[int] = None


class TransferProgress(BaseModel):
    """Immutable progress snapshot handed to the progress sink."""
    model_config = ConfigDict(frozen=True)

    total_rows: int = 0
    transferred_rows: int = 0
    state: TransferState = TransferState.VALIDATING
    status_message: str = ""
    is_complete: bool = False
    is_success: bool = False
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @computed_field
    @property
    def percentage(self) -> int:
        if self.total_rows <= 0:
            # an empty transfer that committed is fully done
            return 100 if (self.is_complete and self.is_success) else 0
        return min(100, self.transferred_rows * 100 // self.total_rows)


class TransferResult(BaseModel):
    """Outcome of one transfer call."""

    success: bool
    state: TransferState
    total_rows: int = 0
    rows_transferred: int = 0
    batches: int = 0
    table_created: bool = False
    message: str = ""
    error: Optional[ErrorInfo] = None
    duration_s: float = 0.0

    @property
    def cancelled(self) -> bool:
        return self.state == TransferState.CANCELLED


class DatabaseInfo(BaseModel):
    name: str
    size_mb: int = 0
    status: str = ""
    recovery_model: str = ""
    last_backup: Optional[datetime] = None

    @property
    def size_formatted(self) -> str:
        if self.size_mb >= 1024:
            return f"{self.size_mb / 1024.0:.2f} GB"
        return f"{self.size_mb} MB"

    @property
    def last_backup_formatted(self) -> str:
        return self.last_backup.strftime("%Y-%m-%d %H:%M:%S") if self.last_backup else "Never"


class TableInfo(BaseModel):
    name: str
    schema_name: str = ""
    column_count: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.schema_name}.{self.name}" if self.schema_name else self.name


class PreviewResult(BaseModel):
    columns: List[str] = Field(default_factory=list)
    rows: List[tuple] = Field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def as_dicts(self) -> List[dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


class SqlDataType(BaseModel):
    """Entry of the supported data type catalog."""
    name: str
    requires_length: bool = False
    requires_precision: bool = False
    description: Optional[str] = None


__all__ = [
    "AuthenticationType",
    "TransferMode",
    "TransferAction",
    "TransferState",
    "ConnectionParams",
    "TransferRequest",
    "ColumnDescriptor",
    "TransferProgress",
    "TransferResult",
    "DatabaseInfo",
    "TableInfo",
    "PreviewResult",
    "SqlDataType",
]
