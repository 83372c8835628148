"""
Translate introspected Postgres column metadata into MariaDB table DDL
"""
import logging
import re
from dataclasses import dataclass
from typing import Sequence

import mysql.connector

from type_mapper import DEFAULT_TYPE_MAPPING, ColumnKind, TypeMapping, column_kind

logger = logging.getLogger(__name__)

DEFAULT_ENGINE = 'InnoDB'
DEFAULT_CHARSET = 'utf8mb4'

# Engine and charset are interpolated into DDL, only plain words are allowed
_OPTION_PATTERN = re.compile(r'^[A-Za-z0-9_]+$')


class SchemaTranslationError(Exception):
    """Target rejected the table definition"""

    def __init__(self, table_name: str, statement: str, cause: Exception):
        super().__init__(f"Failed to create table {table_name}: {cause}")
        self.table_name = table_name
        self.statement = statement


@dataclass(frozen=True)
class ColumnDescriptor:
    """One source column, in source ordinal order"""
    name: str
    source_type: str
    nullable: bool

    @property
    def kind(self) -> ColumnKind:
        return column_kind(self.source_type)


@dataclass(frozen=True)
class StorageOptions:
    """MariaDB table storage engine and default character set"""
    engine: str = DEFAULT_ENGINE
    charset: str = DEFAULT_CHARSET

    def __post_init__(self):
        for label, value in (('engine', self.engine), ('charset', self.charset)):
            if not value or not _OPTION_PATTERN.match(value):
                raise ValueError(f"Invalid table {label}: {value!r}")


def quote_identifier(name: str) -> str:
    """Backtick-quote a MariaDB identifier"""
    return '`' + name.replace('`', '``') + '`'


def build_column_clause(column: ColumnDescriptor, type_mapping: TypeMapping = DEFAULT_TYPE_MAPPING) -> str:
    nullability = 'NULL' if column.nullable else 'NOT NULL'
    return f"{quote_identifier(column.name)} {type_mapping.map_type(column.source_type)} {nullability}"


def build_create_table_sql(table_name: str, columns: Sequence[ColumnDescriptor],
                           storage_options: StorageOptions = StorageOptions(),
                           type_mapping: TypeMapping = DEFAULT_TYPE_MAPPING) -> str:
    """Build the CREATE TABLE IF NOT EXISTS statement for one table"""
    if not columns:
        raise ValueError(f"Table {table_name} has no columns")

    col_definitions = [build_column_clause(col, type_mapping) for col in columns]

    return (
        f"CREATE TABLE IF NOT EXISTS {quote_identifier(table_name)} "
        f"({', '.join(col_definitions)}) "
        f"ENGINE={storage_options.engine} DEFAULT CHARSET={storage_options.charset}"
    )


def translate_schema(target, table_name: str, columns: Sequence[ColumnDescriptor],
                     storage_options: StorageOptions = StorageOptions(),
                     type_mapping: TypeMapping = DEFAULT_TYPE_MAPPING) -> str:
    """
    Create the target table if it does not exist yet.

    Re-running against a target that already has the table is a no-op.
    Raises SchemaTranslationError when the target rejects the statement;
    the caller is expected to skip data transfer for that table.

    Returns the executed statement.
    """
    create_sql = build_create_table_sql(table_name, columns, storage_options, type_mapping)
    logger.debug(f"Executing: {create_sql}")

    try:
        target.execute(create_sql)
    except mysql.connector.Error as e:
        raise SchemaTranslationError(table_name, create_sql, e) from e

    return create_sql
