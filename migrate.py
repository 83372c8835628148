#!/usr/bin/env python3
"""
PostgreSQL to MariaDB migration tool
Copies every table of one Postgres schema into a MariaDB database:
creates missing tables with translated column types, then copies rows in
batches, skipping (and reporting) rows the target rejects.

Tables are migrated one at a time over a single pair of connections.
Each DDL statement and each row insert commits on its own; there is no
rollback of a partially migrated table.
"""
import os
import sys
import argparse
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import mysql.connector
import psycopg2
from dotenv import load_dotenv

from data_transfer import DEFAULT_BATCH_SIZE, TransferResult, transfer_data
from db_handles import DatabaseConnections
from schema_translator import (
    DEFAULT_CHARSET,
    DEFAULT_ENGINE,
    SchemaTranslationError,
    StorageOptions,
    translate_schema,
)
from type_mapper import DEFAULT_TYPE_MAPPING, TypeMapping
from verify_counts import all_passed, verify_row_counts

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = 'public'


def load_env():
    """Load environment variables from .env file"""
    # Try multiple paths: same directory as script, or current working directory
    script_dir_env = Path(__file__).parent / '.env'
    cwd_env = Path.cwd() / '.env'

    for env_path in (script_dir_env, cwd_env):
        if env_path.exists():
            load_dotenv(env_path)
            logger.info(f"✅ Loaded environment from {env_path}")
            return env_path

    logger.debug(f"No .env file found at {script_dir_env} or {cwd_env}")
    return None


def get_pg_config() -> Dict[str, Any]:
    """Postgres connection settings from the environment"""
    return {
        'host': os.getenv('PGSQL_HOST', 'localhost'),
        'port': int(os.getenv('PGSQL_PORT', '5432')),
        'dbname': os.getenv('PGSQL_DBNAME', 'postgres'),
        'user': os.getenv('PGSQL_USER', 'postgres'),
        'password': os.getenv('PGSQL_PASSWORD', ''),
    }


def get_mariadb_config() -> Dict[str, Any]:
    """MariaDB connection settings from the environment"""
    return {
        'host': os.getenv('MARIADB_HOST', 'localhost'),
        'port': int(os.getenv('MARIADB_PORT', '3306')),
        'database': os.getenv('MARIADB_DBNAME', 'mysql'),
        'user': os.getenv('MARIADB_USER', 'root'),
        'password': os.getenv('MARIADB_PASSWORD', ''),
    }


@dataclass
class MigrationConfig:
    """Everything the migration needs besides the two open connections"""
    schema: str = DEFAULT_SCHEMA
    storage: StorageOptions = field(default_factory=StorageOptions)
    batch_size: int = DEFAULT_BATCH_SIZE
    tables: Optional[List[str]] = None
    type_mapping: TypeMapping = DEFAULT_TYPE_MAPPING

    @classmethod
    def from_env(cls) -> "MigrationConfig":
        """Raises ValueError on a malformed batch size, engine or charset"""
        return cls(
            schema=os.getenv('PGSQL_SCHEMA', DEFAULT_SCHEMA),
            storage=StorageOptions(
                engine=os.getenv('TABLE_ENGINE') or DEFAULT_ENGINE,
                charset=os.getenv('TABLE_CHARSET') or DEFAULT_CHARSET,
            ),
            batch_size=int(os.getenv('MIGRATION_BATCH_SIZE', str(DEFAULT_BATCH_SIZE))),
        )


class TableStatus(Enum):
    """Outcome of one table's migration"""
    COMPLETE = "✅ COMPLETE"
    PARTIAL = "⚠️  PARTIAL"
    SKIPPED = "⊘ SKIPPED"
    FAILED = "❌ FAILED"


@dataclass
class TableResult:
    table_name: str
    status: TableStatus
    message: str = ""
    transfer: Optional[TransferResult] = None


@dataclass
class MigrationReport:
    """Per-table results of one run"""
    tables: List[TableResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def count(self, status: TableStatus) -> int:
        return sum(1 for t in self.tables if t.status is status)

    @property
    def rows_inserted(self) -> int:
        return sum(t.transfer.rows_inserted for t in self.tables if t.transfer)

    @property
    def rows_failed(self) -> int:
        return sum(t.transfer.rows_failed for t in self.tables if t.transfer)

    @property
    def succeeded(self) -> bool:
        return all(t.status is TableStatus.COMPLETE for t in self.tables)


def select_tables(available: List[str], requested: Optional[List[str]]) -> List[str]:
    """Keep source order; warn about requested tables that don't exist"""
    if not requested:
        return available

    for table in requested:
        if table not in available:
            logger.warning(f"Table '{table}' does not exist in the source schema")

    return [t for t in available if t in requested]


def migrate_table(source, target, table_name: str, config: MigrationConfig) -> TableResult:
    """Create the target table and copy its rows; never raises for table or row errors"""
    try:
        columns = source.describe_columns(table_name)
    except psycopg2.Error as e:
        logger.error(f"  Could not read columns of table `{table_name}`: {e}. Skipping.")
        return TableResult(table_name, TableStatus.SKIPPED, f"Column introspection failed: {e}")

    if not columns:
        logger.warning(f"  No columns found for table `{table_name}`. Skipping.")
        return TableResult(table_name, TableStatus.SKIPPED, "No columns found")

    try:
        translate_schema(target, table_name, columns, config.storage, config.type_mapping)
    except SchemaTranslationError as e:
        logger.error(f"    {table_name}: ❌ {e}. Skipping data transfer.")
        return TableResult(table_name, TableStatus.FAILED, str(e))

    logger.info(f"    {table_name}: ✅ Table ready ({len(columns)} columns)")

    try:
        transfer = transfer_data(source, target, table_name, columns, config.batch_size)
    except psycopg2.Error as e:
        logger.error(f"    {table_name}: ❌ Reading rows failed: {e}")
        return TableResult(table_name, TableStatus.FAILED, f"Reading rows failed: {e}")

    if transfer.rows_failed:
        return TableResult(table_name, TableStatus.PARTIAL,
                           f"{transfer.rows_failed} of {transfer.rows_read} rows rejected", transfer)
    return TableResult(table_name, TableStatus.COMPLETE, f"{transfer.rows_inserted} rows", transfer)


def migrate_database(source, target, config: MigrationConfig) -> MigrationReport:
    """Migrate tables one after another, fully, in source order"""
    report = MigrationReport()

    tables = select_tables(source.list_tables(), config.tables)

    if not tables:
        logger.info(f"No tables found in PostgreSQL schema '{config.schema}'. Nothing to do.")
        report.finished_at = datetime.now()
        return report

    logger.info(f"Migrating {len(tables)} tables (batch_size={config.batch_size}, "
                f"engine={config.storage.engine}, charset={config.storage.charset})")

    for index, table_name in enumerate(tables, start=1):
        logger.info(f"[{index}/{len(tables)}] Migrating table: {table_name}")
        report.tables.append(migrate_table(source, target, table_name, config))

    report.finished_at = datetime.now()
    return report


def print_summary(report: MigrationReport):
    """Print per-table results and totals"""
    finished_at = report.finished_at or datetime.now()
    elapsed = (finished_at - report.started_at).total_seconds()

    print(f"\n{'='*60}")
    print("MIGRATION SUMMARY")
    print(f"{'='*60}")

    for result in report.tables:
        print(f"{result.status.value:14} {result.table_name:30} {result.message}")

    print(f"\nTables: {len(report.tables)} total, "
          f"{report.count(TableStatus.COMPLETE)} complete, "
          f"{report.count(TableStatus.PARTIAL)} partial, "
          f"{report.count(TableStatus.SKIPPED)} skipped, "
          f"{report.count(TableStatus.FAILED)} failed")
    print(f"Rows: {report.rows_inserted:,} inserted, {report.rows_failed:,} rejected")
    print(f"Duration: {elapsed:.1f}s")
    print(f"{'='*60}")


def confirm() -> bool:
    """Ask the operator to confirm before anything is written"""
    print("WARNING: Use this tool at your own risk. Rows are inserted without deduplication;")
    print("re-running against an already migrated database duplicates data unless the target")
    print("tables reject repeats. Make sure the source is not written to during the migration.")
    try:
        input("Press [Enter] to continue or Ctrl+C to exit.\n")
    except (EOFError, KeyboardInterrupt):
        print()
        return False
    return True


def positive_int(value):
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser():
    parser = argparse.ArgumentParser(
        description='PostgreSQL to MariaDB schema and data migration tool',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Connection settings are read from the environment or a .env file:
  PGSQL_HOST, PGSQL_PORT, PGSQL_DBNAME, PGSQL_USER, PGSQL_PASSWORD, PGSQL_SCHEMA
  MARIADB_HOST, MARIADB_PORT, MARIADB_DBNAME, MARIADB_USER, MARIADB_PASSWORD
  TABLE_ENGINE, TABLE_CHARSET, MIGRATION_BATCH_SIZE

Examples:
  # Migrate every table of the public schema
  python3 migrate.py

  # Migrate two tables with bigger batches, no prompt, then compare row counts
  python3 migrate.py --tables users,orders --batch-size 1000 --yes --verify

The source must not be written to while the migration runs: rows are paged
with LIMIT/OFFSET and concurrent writes can make pages skip or repeat rows.
        """
    )

    parser.add_argument('--schema', type=str, help=f'Postgres schema to migrate (default: {DEFAULT_SCHEMA})')
    parser.add_argument('--tables', type=str, help='Comma-separated list of tables to migrate (default: all)')
    parser.add_argument('--batch-size', type=positive_int,
                        help=f'Rows fetched per batch (default: {DEFAULT_BATCH_SIZE})')
    parser.add_argument('--engine', type=str, help=f'MariaDB storage engine (default: {DEFAULT_ENGINE})')
    parser.add_argument('--charset', type=str, help=f'MariaDB default charset (default: {DEFAULT_CHARSET})')
    parser.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation')
    parser.add_argument('--verify', action='store_true', help='Compare source and target row counts afterwards')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log executed statements')

    return parser


def build_config(args, parser) -> MigrationConfig:
    """Environment settings overridden by command-line flags"""
    try:
        config = MigrationConfig.from_env()
        if args.engine or args.charset:
            config.storage = StorageOptions(
                engine=args.engine or config.storage.engine,
                charset=args.charset or config.storage.charset,
            )
    except ValueError as e:
        parser.error(str(e))

    if config.batch_size < 1:
        parser.error(f"MIGRATION_BATCH_SIZE must be at least 1, got {config.batch_size}")

    if args.schema:
        config.schema = args.schema
    if args.batch_size:
        config.batch_size = args.batch_size
    if args.tables:
        config.tables = [t.strip() for t in args.tables.split(',') if t.strip()]

    return config


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    load_env()
    config = build_config(args, parser)

    print("=" * 60)
    print("PostgreSQL to MariaDB Migration Tool")
    print("=" * 60)

    if not args.yes and not confirm():
        print("Migration cancelled.")
        sys.exit(1)

    try:
        pg_config = get_pg_config()
        mariadb_config = get_mariadb_config()
    except ValueError as e:
        parser.error(f"Invalid port setting: {e}")

    try:
        with DatabaseConnections(pg_config, mariadb_config, config.schema) as db:
            report = migrate_database(db.source, db.target, config)
            print_summary(report)

            verified = True
            if args.verify and report.tables:
                logger.info("Verifying row counts...")
                migrated = [t.table_name for t in report.tables if t.transfer]
                verified = all_passed(verify_row_counts(db.source, db.target, migrated))

    except (psycopg2.Error, mysql.connector.Error) as e:
        logger.error(f"❌ Migration aborted: {e}")
        print("ERROR: Unable to connect to or read from one of the databases.")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nMigration interrupted.")
        sys.exit(130)

    if not report.succeeded or not verified:
        print("\n❌ Migration finished with errors.")
        sys.exit(1)

    print("\n✅ Migration completed successfully!")


if __name__ == '__main__':
    main()
