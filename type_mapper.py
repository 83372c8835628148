"""
PostgreSQL to MariaDB column type mapping

The mapping is intentionally lossy: every integer width up to `integer`
collapses to INT and every numeric precision/scale collapses to DECIMAL(20,6).
Unknown types fall back to TEXT so table creation is never blocked.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

# Type mapping from Postgres (information_schema.columns.data_type) to MariaDB
PGSQL_TO_MARIADB_TYPES = MappingProxyType({
    'smallint': 'INT',
    'integer': 'INT',
    'bigint': 'BIGINT',
    'boolean': 'TINYINT(1)',
    'character varying': 'VARCHAR(255)',
    'text': 'TEXT',
    'timestamp without time zone': 'DATETIME',
    'date': 'DATE',
    'numeric': 'DECIMAL(20,6)',
})

FALLBACK_TYPE = 'TEXT'

NUMERIC_TYPES = frozenset(['smallint', 'integer', 'bigint', 'numeric'])
BOOLEAN_TYPES = frozenset(['boolean'])


class ColumnKind(Enum):
    """How a column's values are treated during row sanitization"""
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    TEXT = "text"


def normalize_type_name(source_type: str) -> str:
    return (source_type or '').strip().lower()


@dataclass(frozen=True)
class TypeMapping:
    """Immutable source type -> target type literal table with a fallback"""
    types: Mapping[str, str] = field(default_factory=lambda: PGSQL_TO_MARIADB_TYPES)
    fallback: str = FALLBACK_TYPE

    def __post_init__(self):
        if not self.fallback:
            raise ValueError("Fallback type must be a non-empty type literal")
        # Freeze a private copy so callers can't mutate the table afterwards
        normalized = {normalize_type_name(k): v for k, v in self.types.items()}
        object.__setattr__(self, 'types', MappingProxyType(normalized))

    def map_type(self, source_type: str) -> str:
        """Return the target type literal for a source type, never fails"""
        return self.types.get(normalize_type_name(source_type)) or self.fallback


DEFAULT_TYPE_MAPPING = TypeMapping()


def map_type(source_type: str) -> str:
    """Map a Postgres type name to a MariaDB type using the default table"""
    return DEFAULT_TYPE_MAPPING.map_type(source_type)


def column_kind(source_type: str) -> ColumnKind:
    """Classify a Postgres type name for default substitution and coercion"""
    name = normalize_type_name(source_type)
    if name in BOOLEAN_TYPES:
        return ColumnKind.BOOLEAN
    if name in NUMERIC_TYPES:
        return ColumnKind.NUMERIC
    return ColumnKind.TEXT
