import sqlite3
from pathlib import Path

import pytest

from dbxfer.core.config import Settings
from dbxfer.core.models import ConnectionParams


CUSTOMERS_DDL = """
CREATE TABLE Customers (
    Id INTEGER PRIMARY KEY,
    Name NVARCHAR(100) NOT NULL,
    Email VARCHAR(255),
    Balance DECIMAL(18,2),
    CreatedAt DATETIME2
)
"""


def create_database(directory: Path, name: str, script: str = "", rows=None) -> Path:
    """Create a SQLite database file, run `script` and insert `rows` ({sql: [params...]})."""
    path = directory / name
    conn = sqlite3.connect(path)
    try:
        # writing the header makes sure the file exists even without tables
        conn.execute("PRAGMA user_version = 1")
        if script:
            conn.executescript(script)
        for sql, params in (rows or {}).items():
            conn.executemany(sql, params)
        conn.commit()
    finally:
        conn.close()
    return path


def customer_rows(count: int, start: int = 1):
    return [
        (i, f"Customer {i}", f"customer{i}@example.com", round(i * 1.25, 2), f"2024-01-{(i % 28) + 1:02d} 10:00:00")
        for i in range(start, start + count)
    ]


def insert_customers_sql() -> str:
    return "INSERT INTO Customers (Id, Name, Email, Balance, CreatedAt) VALUES (?, ?, ?, ?, ?)"


def query_one(path: Path, sql: str):
    conn = sqlite3.connect(path)
    try:
        return conn.execute(sql).fetchone()
    finally:
        conn.close()


def query_all(path: Path, sql: str):
    conn = sqlite3.connect(path)
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


def table_count(path: Path, table: str) -> int:
    return query_one(path, f'SELECT COUNT(*) FROM "{table}"')[0]


def table_exists(path: Path, table: str) -> bool:
    row = query_one(path, f"SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = '{table}'")
    return row[0] == 1


@pytest.fixture
def sqlite_params(tmp_path):
    return ConnectionParams(dialect="sqlite", server=str(tmp_path))


@pytest.fixture
def settings():
    return Settings(batch_size=1000, preview_rows=10)


@pytest.fixture
def customers_source(tmp_path):
    """source.db with 2500 customers."""
    return create_database(
        tmp_path, "source.db", CUSTOMERS_DDL, {insert_customers_sql(): customer_rows(2500)}
    )


@pytest.fixture
def empty_destination(tmp_path):
    return create_database(tmp_path, "dest.db")
