"""
Batched row transfer from Postgres to MariaDB

Rows are paged out of the source with LIMIT/OFFSET, sanitized against the
column descriptors, and inserted one by one so a rejected row never aborts
the rest of the batch or the table.
"""
import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Sequence

import mysql.connector

from schema_translator import ColumnDescriptor, quote_identifier
from type_mapper import ColumnKind

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

# Text forms read as true; any other value reads as false
TRUTHY_VALUES = frozenset(['1', 'true', 'on', 'yes'])


@dataclass
class TransferResult:
    """Counters for one table's data transfer"""
    table_name: str
    batches: int = 0
    rows_read: int = 0
    rows_inserted: int = 0
    rows_failed: int = 0


def to_bool_int(value) -> int:
    """Interpret a value as boolean and return 0 or 1"""
    if isinstance(value, bool):
        return int(value)
    if value is None:
        return 0
    # 1.0 and Decimal('1.000') read like the integer 1
    if isinstance(value, (float, Decimal)) and math.isfinite(value) and value == int(value):
        value = int(value)
    return 1 if str(value).strip().lower() in TRUTHY_VALUES else 0


def default_for(column: ColumnDescriptor):
    """Substitute for a missing or empty value"""
    if column.nullable:
        return None
    if column.kind in (ColumnKind.NUMERIC, ColumnKind.BOOLEAN):
        return 0
    return ''


def sanitize_row(row: Dict[str, Any], columns: Sequence[ColumnDescriptor]) -> Dict[str, Any]:
    """Return a cleaned copy of a source row, keyed by column name"""
    sanitized = dict(row)

    for col in columns:
        value = sanitized.get(col.name)

        if value is None or value == '':
            value = default_for(col)

        if col.kind is ColumnKind.BOOLEAN:
            value = to_bool_int(value)

        sanitized[col.name] = value

    return sanitized


def row_values(row: Dict[str, Any], columns: Sequence[ColumnDescriptor]) -> List[Any]:
    """Positional values in the exact order of the INSERT column list"""
    return [row.get(col.name) for col in columns]


def build_insert_sql(table_name: str, columns: Sequence[ColumnDescriptor]) -> str:
    col_names = ', '.join(quote_identifier(col.name) for col in columns)
    placeholders = ', '.join(['%s'] * len(columns))
    return f"INSERT INTO {quote_identifier(table_name)} ({col_names}) VALUES ({placeholders})"


def format_row(row: Dict[str, Any]) -> str:
    return json.dumps(row, default=str, ensure_ascii=False)


def transfer_data(source, target, table_name: str, columns: Sequence[ColumnDescriptor],
                  batch_size: int = DEFAULT_BATCH_SIZE) -> TransferResult:
    """
    Copy every source row of a table into the already created target table.

    Pagination assumes the source table is not written to while it is being
    copied; concurrent inserts or deletes can make OFFSET pages skip or
    repeat rows.

    Source errors propagate to the caller. Target errors are handled per row.
    """
    if batch_size < 1:
        raise ValueError(f"Batch size must be positive, got {batch_size}")

    insert_sql = build_insert_sql(table_name, columns)
    col_names = [col.name for col in columns]
    result = TransferResult(table_name=table_name)
    start_time = datetime.now()
    offset = 0

    logger.debug(f"Executing per row: {insert_sql}")

    while True:
        batch = source.fetch_rows(table_name, col_names, batch_size, offset)
        if not batch:
            break

        result.batches += 1

        for row in batch:
            result.rows_read += 1
            sanitized = sanitize_row(row, columns)
            try:
                target.execute(insert_sql, row_values(sanitized, columns))
                result.rows_inserted += 1
            except mysql.connector.Error as e:
                result.rows_failed += 1
                logger.error(f"    {table_name}: ❌ Error migrating row: {e}")
                logger.error(f"    {table_name}: Row data: {format_row(sanitized)}")

        offset += batch_size
        logger.info(f"    {table_name}: batch {result.batches} - {result.rows_read} rows read, "
                    f"{result.rows_failed} failed")

    elapsed = (datetime.now() - start_time).total_seconds()
    rate = result.rows_inserted / elapsed if elapsed > 0 else 0
    logger.info(f"    {table_name}: ✅ Done! {result.rows_inserted}/{result.rows_read} rows "
                f"in {elapsed:.1f}s ({rate:.0f} rows/sec)")
    return result
