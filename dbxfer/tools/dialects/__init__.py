"""
Dialect registry.

Dialect modules are imported on first use so that importing dbxfer never needs
a database driver that the caller does not use.
"""

from typing import Dict

from dbxfer.tools.dialects.base import Dialect

_INSTANCES: Dict[str, Dialect] = {}


def get_dialect(name: str) -> Dialect:
    """Return the (shared, stateless) dialect for a normalized dialect name."""
    if name in _INSTANCES:
        return _INSTANCES[name]
    if name == "mssql":
        from dbxfer.tools.dialects.mssql import MssqlDialect
        dialect = MssqlDialect()
    elif name == "postgres":
        from dbxfer.tools.dialects.postgres import PostgresDialect
        dialect = PostgresDialect()
    elif name == "sqlite":
        from dbxfer.tools.dialects.sqlite import SqliteDialect
        dialect = SqliteDialect()
    else:
        raise ValueError(f"Unsupported dialect: {name}")
    _INSTANCES[name] = dialect
    return dialect


__all__ = ["Dialect", "get_dialect"]
