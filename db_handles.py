"""
Source (Postgres) and target (MariaDB) handles used by the migration.

The core only talks to the databases through the methods defined here.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

import mysql.connector
import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor, register_default_json, register_default_jsonb

from schema_translator import ColumnDescriptor, quote_identifier

logger = logging.getLogger(__name__)

SOURCE_SESSION_SETTINGS = (
    "SET synchronize_seqscans = off",
    "SET max_parallel_workers_per_gather = 0",
)


def connect_source(pg_config: Dict[str, Any]):
    """Create Postgres connection (read-only, autocommit)"""
    conn = psycopg2.connect(**pg_config)
    # A failed query must not leave an aborted transaction behind for the next table
    conn.set_session(readonly=True, autocommit=True)
    # OFFSET pages rely on every scan returning rows in the same order
    with conn.cursor() as cur:
        for setting in SOURCE_SESSION_SETTINGS:
            cur.execute(setting)
    # Keep json/jsonb as text; MariaDB can't bind dicts
    register_default_json(conn, loads=_raw_json)
    register_default_jsonb(conn, loads=_raw_json)
    return conn


def _raw_json(value):
    return value


def connect_target(mariadb_config: Dict[str, Any]):
    """Create MariaDB connection (utf8mb4, autocommit)"""
    return mysql.connector.connect(
        charset='utf8mb4',
        autocommit=True,
        **mariadb_config
    )


class PostgresSource:
    """Read side: table listing, column introspection, paged row reads"""

    def __init__(self, conn, schema: str = 'public'):
        self.conn = conn
        self.schema = schema

    def list_tables(self) -> List[str]:
        with self.conn.cursor() as cur:
            cur.execute("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = %s
                  AND table_type = 'BASE TABLE'
                ORDER BY table_name
            """, (self.schema,))
            return [row[0] for row in cur.fetchall()]

    def describe_columns(self, table_name: str) -> List[ColumnDescriptor]:
        """Column name, data type and nullability in ordinal order"""
        with self.conn.cursor() as cur:
            cur.execute("""
                SELECT column_name, data_type, is_nullable
                FROM information_schema.columns
                WHERE table_schema = %s
                  AND table_name = %s
                ORDER BY ordinal_position
            """, (self.schema, table_name))
            return [
                ColumnDescriptor(name=col_name, source_type=data_type, nullable=is_nullable == 'YES')
                for col_name, data_type, is_nullable in cur.fetchall()
            ]

    def fetch_rows(self, table_name: str, column_names: Sequence[str], limit: int, offset: int) -> List[Dict[str, Any]]:
        query = sql.SQL("SELECT {} FROM {}.{} LIMIT %s OFFSET %s").format(
            sql.SQL(', ').join(map(sql.Identifier, column_names)),
            sql.Identifier(self.schema),
            sql.Identifier(table_name)
        )
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, (limit, offset))
            return [dict(row) for row in cur.fetchall()]

    def count_rows(self, table_name: str) -> int:
        query = sql.SQL("SELECT COUNT(*) FROM {}.{}").format(
            sql.Identifier(self.schema),
            sql.Identifier(table_name)
        )
        with self.conn.cursor() as cur:
            cur.execute(query)
            return cur.fetchone()[0]

    def close(self):
        self.conn.close()


class MariaDBTarget:
    """Write side: DDL and positional INSERTs, one autocommit statement each"""

    def __init__(self, conn):
        self.conn = conn

    def execute(self, statement: str, params: Optional[Sequence[Any]] = None):
        """Execute one statement; every failure propagates as mysql.connector.Error"""
        with self.conn.cursor() as cur:
            try:
                cur.execute(statement, params)
            except mysql.connector.Error:
                raise
            except Exception as e:
                # The C extension raises its own conversion errors for values it can't bind (list, memoryview)
                raise mysql.connector.errors.ProgrammingError(msg=f"Failed to execute statement: {e}") from e

    def count_rows(self, table_name: str) -> int:
        with self.conn.cursor() as cur:
            cur.execute(f"SELECT COUNT(*) FROM {quote_identifier(table_name)}")
            return cur.fetchone()[0]

    def close(self):
        self.conn.close()


class DatabaseConnections:
    """Opens the source and target handles, closes both on exit"""

    def __init__(self, pg_config: Dict[str, Any], mariadb_config: Dict[str, Any], schema: str = 'public'):
        self.pg_config = pg_config
        self.mariadb_config = mariadb_config
        self.schema = schema
        self.source: Optional[PostgresSource] = None
        self.target: Optional[MariaDBTarget] = None

    def __enter__(self):
        """Connect to both databases"""
        try:
            self.source = PostgresSource(connect_source(self.pg_config), self.schema)
            logger.info(f"✅ Connected to PostgreSQL {self.pg_config.get('host')}/{self.pg_config.get('dbname')}")

            self.target = MariaDBTarget(connect_target(self.mariadb_config))
            logger.info(f"✅ Connected to MariaDB {self.mariadb_config.get('host')}/{self.mariadb_config.get('database')}")
            return self

        except (psycopg2.Error, mysql.connector.Error) as e:
            logger.error(f"Database connection failed: {e}")
            self.__exit__(None, None, None)
            raise

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close database connections"""
        if self.source:
            self.source.close()
            self.source = None
        if self.target:
            self.target.close()
            self.target = None
