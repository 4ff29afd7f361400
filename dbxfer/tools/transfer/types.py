"""
Fixed column type table used for destination table creation.

Canonical type names are the SQL Server catalog names. Every canonical type
knows which modifiers it carries (length, precision/scale or precision), how
PostgreSQL and SQLite spell it when they are the source, and how each dialect
declares it when it is the destination. Anything outside this table is rejected
with SchemaError.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from dbxfer.core.errors import SchemaError
from dbxfer.core.models import ColumnDescriptor, SqlDataType


MAX_LENGTH = -1

# fractional seconds digits; SQL Server allows 7, PostgreSQL 6
MAX_TEMPORAL_PRECISION = {"mssql": 7, "postgres": 6, "sqlite": 7}


class TypeCategory(str, Enum):
    EXACT_INTEGER = "exact_integer"
    EXACT_DECIMAL = "exact_decimal"
    APPROXIMATE = "approximate"
    MONETARY = "monetary"
    TEMPORAL = "temporal"
    CHARACTER = "character"
    UNICODE = "unicode"
    BINARY = "binary"
    OTHER = "other"


class Modifier(str, Enum):
    LENGTH = "length"                   # VARCHAR(50), VARBINARY(MAX)
    PRECISION_SCALE = "precision_scale" # DECIMAL(18,2)
    PRECISION = "precision"             # FLOAT(53), DATETIME2(3)


@dataclass(frozen=True)
class TypeSpec:
    name: str
    category: TypeCategory
    description: str
    modifier: Optional[Modifier] = None
    # dialect -> (declared name, whether modifiers are appended)
    renderings: Dict[str, Tuple[str, bool]] = field(default_factory=dict)

    @property
    def requires_length(self) -> bool:
        return self.modifier == Modifier.LENGTH

    @property
    def requires_precision(self) -> bool:
        return self.category in (TypeCategory.EXACT_DECIMAL, TypeCategory.APPROXIMATE)


def _spec(name, category, description, modifier=None, postgres=None, pg_modifiers=True):
    # mssql and sqlite declare the canonical name; postgres spells most types differently
    renderings = {
        "mssql": (name, True),
        "sqlite": (name, True),
        "postgres": (postgres or name.lower(), pg_modifiers),
    }
    return TypeSpec(name, category, description, modifier, renderings)


_TYPES: List[TypeSpec] = [
    # Exact numerics
    _spec("INT", TypeCategory.EXACT_INTEGER, "Integer", postgres="integer"),
    _spec("BIGINT", TypeCategory.EXACT_INTEGER, "Big Integer", postgres="bigint"),
    _spec("SMALLINT", TypeCategory.EXACT_INTEGER, "Small Integer", postgres="smallint"),
    _spec("TINYINT", TypeCategory.EXACT_INTEGER, "Tiny Integer", postgres="smallint"),

    # Approximate numerics
    _spec("FLOAT", TypeCategory.APPROXIMATE, "Float", Modifier.PRECISION, postgres="float"),
    _spec("REAL", TypeCategory.APPROXIMATE, "Real", postgres="real"),

    # Decimal
    _spec("DECIMAL", TypeCategory.EXACT_DECIMAL, "Decimal", Modifier.PRECISION_SCALE, postgres="numeric"),
    _spec("NUMERIC", TypeCategory.EXACT_DECIMAL, "Numeric", Modifier.PRECISION_SCALE, postgres="numeric"),

    # Monetary
    _spec("MONEY", TypeCategory.MONETARY, "Money", postgres="numeric(19,4)"),
    _spec("SMALLMONEY", TypeCategory.MONETARY, "Small Money", postgres="numeric(10,4)"),

    # Date and time
    _spec("DATE", TypeCategory.TEMPORAL, "Date", postgres="date"),
    _spec("TIME", TypeCategory.TEMPORAL, "Time", Modifier.PRECISION, postgres="time"),
    _spec("DATETIME", TypeCategory.TEMPORAL, "DateTime", postgres="timestamp"),
    _spec("DATETIME2", TypeCategory.TEMPORAL, "DateTime2", Modifier.PRECISION, postgres="timestamp"),
    _spec("DATETIMEOFFSET", TypeCategory.TEMPORAL, "DateTimeOffset", Modifier.PRECISION, postgres="timestamptz"),
    _spec("SMALLDATETIME", TypeCategory.TEMPORAL, "Small DateTime", postgres="timestamp"),

    # Character strings
    _spec("CHAR", TypeCategory.CHARACTER, "Character", Modifier.LENGTH, postgres="char"),
    _spec("VARCHAR", TypeCategory.CHARACTER, "Variable Character", Modifier.LENGTH, postgres="varchar"),
    _spec("TEXT", TypeCategory.CHARACTER, "Text", postgres="text"),

    # Unicode character strings
    _spec("NCHAR", TypeCategory.UNICODE, "Unicode Character", Modifier.LENGTH, postgres="char"),
    _spec("NVARCHAR", TypeCategory.UNICODE, "Unicode Variable Character", Modifier.LENGTH, postgres="varchar"),
    _spec("NTEXT", TypeCategory.UNICODE, "Unicode Text", postgres="text"),

    # Binary
    _spec("BINARY", TypeCategory.BINARY, "Binary", Modifier.LENGTH, postgres="bytea", pg_modifiers=False),
    _spec("VARBINARY", TypeCategory.BINARY, "Variable Binary", Modifier.LENGTH, postgres="bytea", pg_modifiers=False),
    _spec("IMAGE", TypeCategory.BINARY, "Image", postgres="bytea"),

    # Other
    _spec("BIT", TypeCategory.OTHER, "Bit", postgres="boolean"),
    _spec("UNIQUEIDENTIFIER", TypeCategory.OTHER, "Unique Identifier", postgres="uuid"),
    _spec("XML", TypeCategory.OTHER, "XML", postgres="xml"),
    _spec("JSON", TypeCategory.OTHER, "JSON", postgres="jsonb"),
]

TYPE_TABLE: Dict[str, TypeSpec] = {spec.name: spec for spec in _TYPES}

# Source spellings that differ from the canonical name, keyed by source dialect
SOURCE_ALIASES: Dict[str, Dict[str, str]] = {
    "mssql": {},
    "postgres": {
        "INTEGER": "INT",
        "INT4": "INT",
        "SERIAL": "INT",
        "INT8": "BIGINT",
        "BIGSERIAL": "BIGINT",
        "INT2": "SMALLINT",
        "SMALLSERIAL": "SMALLINT",
        "DOUBLE PRECISION": "FLOAT",
        "FLOAT8": "FLOAT",
        "FLOAT4": "REAL",
        "TIME WITHOUT TIME ZONE": "TIME",
        "TIMESTAMP": "DATETIME2",
        "TIMESTAMP WITHOUT TIME ZONE": "DATETIME2",
        "TIMESTAMPTZ": "DATETIMEOFFSET",
        "TIMESTAMP WITH TIME ZONE": "DATETIMEOFFSET",
        "CHARACTER": "CHAR",
        "BPCHAR": "CHAR",
        "CHARACTER VARYING": "VARCHAR",
        "BYTEA": "VARBINARY",
        "BOOLEAN": "BIT",
        "BOOL": "BIT",
        "UUID": "UNIQUEIDENTIFIER",
        "JSONB": "JSON",
    },
    "sqlite": {
        "INTEGER": "BIGINT",
        "BOOLEAN": "BIT",
        "BLOB": "VARBINARY",
        "DOUBLE": "FLOAT",
        "DOUBLE PRECISION": "FLOAT",
        "CLOB": "TEXT",
        "TIMESTAMP": "DATETIME2",
        "UUID": "UNIQUEIDENTIFIER",
        "CHARACTER VARYING": "VARCHAR",
    },
}

_DECLARATION = re.compile(r"^\s*(?P<base>[A-Za-z][A-Za-z0-9_ ]*?)\s*(?:\((?P<args>[^)]*)\))?\s*$")


def canonical_name(dialect: str, data_type: str) -> Optional[str]:
    """Canonical type name for a source type, or None when the table has no entry."""
    key = " ".join((data_type or "").strip().upper().split())
    if not key:
        return None
    aliases = SOURCE_ALIASES.get(dialect, {})
    name = aliases.get(key, key)
    return name if name in TYPE_TABLE else None


def lookup(dialect: str, data_type: str) -> TypeSpec:
    """Resolve a source type name to its TypeSpec or raise SchemaError."""
    name = canonical_name(dialect, data_type)
    if name is None:
        raise SchemaError(
            f"Source type '{data_type or '<undeclared>'}' has no destination mapping",
            code="SCHEMA_UNMAPPED_TYPE",
            details={"data_type": data_type, "dialect": dialect},
        )
    return TYPE_TABLE[name]


def parse_declaration(declaration: str) -> Tuple[str, List[str]]:
    """Split 'DECIMAL(18, 2)' into ('DECIMAL', ['18', '2'])."""
    match = _DECLARATION.match(declaration or "")
    if not match:
        return (declaration or "").strip(), []
    args = match.group("args")
    parsed_args = [a.strip() for a in args.split(",")] if args else []
    return match.group("base").strip(), parsed_args


def _to_int(value: str) -> Optional[int]:
    if value.upper() == "MAX":
        return MAX_LENGTH
    try:
        return int(value)
    except ValueError:
        return None


def descriptor_from_declaration(dialect: str, name: str, declaration: str, nullable: bool = True) -> ColumnDescriptor:
    """
    Build a ColumnDescriptor from a full type declaration such as 'NVARCHAR(50)'.

    The modifiers are interpreted according to the canonical type; a declaration
    outside the type table keeps its base name and is rejected later by the
    schema resolver.
    """
    base, args = parse_declaration(declaration)
    canonical = canonical_name(dialect, base)
    spec = TYPE_TABLE.get(canonical) if canonical else None
    values = [_to_int(a) for a in args]
    max_length = precision = scale = None
    if spec is not None and values:
        if spec.modifier == Modifier.LENGTH:
            max_length = values[0]
        elif spec.modifier == Modifier.PRECISION_SCALE:
            precision = values[0]
            scale = values[1] if len(values) > 1 else 0
        elif spec.modifier == Modifier.PRECISION:
            precision = values[0]
    return ColumnDescriptor(
        name=name,
        data_type=base,
        nullable=nullable,
        max_length=max_length,
        precision=precision,
        scale=scale,
    )


def render_type(spec: TypeSpec, column: ColumnDescriptor, dialect: str) -> str:
    """Destination declaration of one column's type, without nullability."""
    declared, with_modifiers = spec.renderings[dialect]
    if not with_modifiers or spec.modifier is None:
        return declared

    if spec.modifier == Modifier.LENGTH:
        length = column.max_length
        if length is None or length == MAX_LENGTH or length <= 0:
            # mssql needs an explicit MAX, otherwise the length defaults to 1
            if dialect == "mssql" and spec.name.startswith(("VAR", "NVAR")):
                return f"{declared}(MAX)"
            return declared
        return f"{declared}({length})"

    if spec.modifier == Modifier.PRECISION_SCALE:
        if column.precision is None:
            return declared
        return f"{declared}({column.precision},{column.scale or 0})"

    if column.precision is None:
        return declared
    precision = column.precision
    if spec.category == TypeCategory.TEMPORAL:
        precision = min(precision, MAX_TEMPORAL_PRECISION[dialect])
    return f"{declared}({precision})"


def has_fractional_seconds(dialect: str, data_type: str) -> bool:
    """True for source time types whose declaration carries a fractional seconds precision."""
    name = canonical_name(dialect, data_type)
    if name is None:
        return False
    spec = TYPE_TABLE[name]
    return spec.category == TypeCategory.TEMPORAL and spec.modifier == Modifier.PRECISION


def list_data_types() -> List[SqlDataType]:
    """The supported type catalog in display order."""
    return [
        SqlDataType(
            name=spec.name,
            requires_length=spec.requires_length,
            requires_precision=spec.requires_precision,
            description=spec.description,
        )
        for spec in _TYPES
    ]


__all__ = [
    "MAX_LENGTH",
    "TypeCategory",
    "Modifier",
    "TypeSpec",
    "TYPE_TABLE",
    "SOURCE_ALIASES",
    "canonical_name",
    "lookup",
    "parse_declaration",
    "descriptor_from_declaration",
    "render_type",
    "has_fractional_seconds",
    "MAX_TEMPORAL_PRECISION",
    "list_data_types",
]
