"""
Error classification - Unit Tests
"""

import sqlite3

import pytest

from dbxfer.core.errors import (
    CancellationError,
    DbConnectionError,
    ErrorInfo,
    ErrorKind,
    RequestValidationError,
    SchemaError,
    SourceError,
    TransferError,
    classify_db_error,
    classify_error,
)


class _DriverError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


class TestErrorKinds:
    @pytest.mark.parametrize("error_cls,kind,code", [
        (DbConnectionError, ErrorKind.CONNECTION, "CONN_ERROR"),
        (SourceError, ErrorKind.SOURCE, "SOURCE_ERROR"),
        (SchemaError, ErrorKind.SCHEMA, "SCHEMA_ERROR"),
        (TransferError, ErrorKind.TRANSFER, "TRANSFER_ERROR"),
        (RequestValidationError, ErrorKind.VALIDATION, "INVALID_REQUEST"),
    ])
    def test_default_kind_and_code(self, error_cls, kind, code):
        error = error_cls("boom")
        info = error.to_info()
        assert info.kind == kind
        assert info.code == code
        assert info.message == "boom"

    def test_cancellation_has_default_message(self):
        error = CancellationError()
        assert error.kind == ErrorKind.CANCELLED
        assert error.message == "Transfer cancelled by caller"

    def test_to_info_reports_cause_type(self):
        try:
            try:
                raise sqlite3.OperationalError("no such table: Missing")
            except sqlite3.OperationalError as e:
                raise SourceError("Failed to count", code="SOURCE_QUERY_FAILED") from e
        except SourceError as wrapped:
            info = wrapped.to_info()
        assert info.exception_type == "OperationalError"
        assert info.code == "SOURCE_QUERY_FAILED"

    def test_to_dict_omits_empty_fields(self):
        info = ErrorInfo(kind=ErrorKind.SCHEMA, code="SCHEMA_DDL_FAILED", message="bad")
        assert info.to_dict() == {"kind": "schema", "code": "SCHEMA_DDL_FAILED", "message": "bad"}


class TestClassifyDbError:
    def test_unique_violation_is_constraint(self):
        details = classify_db_error(sqlite3.IntegrityError("UNIQUE constraint failed: Customers.Id"))
        assert details["db_kind"] == "constraint"

    def test_sqlstate_attribute(self):
        details = classify_db_error(_DriverError("could not serialize", sqlstate="40P01"))
        assert details == {"sqlstate": "40P01", "db_kind": "deadlock"}

    def test_pyodbc_style_args(self):
        error = Exception("08001", "[08001] [Microsoft][ODBC Driver 18] TCP Provider: host unreachable")
        details = classify_db_error(error)
        assert details["sqlstate"] == "08001"
        assert details["db_kind"] == "connection"

    def test_timeout(self):
        assert classify_db_error(_DriverError("canceling statement", sqlstate="57014"))["db_kind"] == "timeout"

    def test_permission(self):
        assert classify_db_error(_DriverError("permission denied for table t"))["db_kind"] == "permission"

    def test_unknown(self):
        assert classify_db_error(ValueError("something odd")) == {"db_kind": "unknown"}


class TestClassifyError:
    def test_engine_error_passes_through(self):
        info = classify_error(SchemaError("no mapping", code="SCHEMA_UNMAPPED_TYPE"))
        assert info.kind == ErrorKind.SCHEMA
        assert info.code == "SCHEMA_UNMAPPED_TYPE"

    def test_foreign_error_is_unknown(self):
        info = classify_error(KeyError("x"))
        assert info.kind == ErrorKind.UNKNOWN
        assert info.code == "PY_KeyError"
        assert info.exception_type == "KeyError"
