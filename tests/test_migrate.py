"""
Tests for the table-by-table orchestration, configuration and CLI
"""
from unittest.mock import MagicMock, patch

import pytest
import psycopg2
from mysql.connector import errors as mysql_errors

from db_handles import MariaDBTarget
import migrate
from migrate import (
    MigrationConfig,
    TableStatus,
    build_config,
    build_parser,
    migrate_database,
    migrate_table,
    select_tables,
)
from schema_translator import ColumnDescriptor, StorageOptions
from tests.fakes import FakeSource, FakeTarget

ENV_VARS = [
    'PGSQL_SCHEMA', 'TABLE_ENGINE', 'TABLE_CHARSET', 'MIGRATION_BATCH_SIZE',
    'PGSQL_HOST', 'PGSQL_PORT', 'MARIADB_HOST', 'MARIADB_PORT',
]

ORDERS_COLUMNS = [
    ColumnDescriptor('id', 'bigint', False),
    ColumnDescriptor('total', 'numeric', True),
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    # Keep any developer .env in the working directory out of the tests
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def source(users_columns, users_rows):
    return FakeSource({
        'orders': (ORDERS_COLUMNS, [{'id': 1, 'total': '12.50'}, {'id': 2, 'total': ''}]),
        'users': (users_columns, users_rows),
    })


def reject_table_ddl(table_name):
    def reject(statement, params):
        if statement.startswith(f"CREATE TABLE IF NOT EXISTS `{table_name}`"):
            return mysql_errors.ProgrammingError(msg="Access denied")
        return None
    return reject


# ============================================================================
# Orchestration
# ============================================================================

def test_all_tables_migrated_in_order(source):
    target = FakeTarget()

    report = migrate_database(source, target, MigrationConfig())

    assert [t.table_name for t in report.tables] == ['orders', 'users']
    assert all(t.status is TableStatus.COMPLETE for t in report.tables)
    assert report.succeeded
    assert report.rows_inserted == 4
    assert target.inserts('orders') == [[1, '12.50'], [2, None]]
    assert target.inserts('users') == [[1, 'Ann', 1], [2, None, 0]]
    # Each table is created before its rows are copied
    statements = [stmt for stmt, _ in target.executed]
    assert statements[0].startswith("CREATE TABLE IF NOT EXISTS `orders`")
    assert statements[3].startswith("CREATE TABLE IF NOT EXISTS `users`")


def test_storage_options_and_batch_size_passed_through(source):
    target = FakeTarget()
    config = MigrationConfig(storage=StorageOptions('MyISAM', 'utf8'), batch_size=1)

    migrate_database(source, target, config)

    assert all(stmt.endswith("ENGINE=MyISAM DEFAULT CHARSET=utf8") for stmt in target.ddl)
    assert {call[2] for call in source.fetch_calls} == {1}


def test_empty_source_is_nothing_to_do(caplog):
    caplog.set_level('INFO')
    report = migrate_database(FakeSource(), FakeTarget(), MigrationConfig())

    assert report.tables == []
    assert report.succeeded
    assert 'Nothing to do' in caplog.text


def test_table_without_columns_skipped(source):
    source.tables['ghost'] = ([], [])
    target = FakeTarget()

    report = migrate_database(source, target, MigrationConfig())

    ghost = report.tables[-1]
    assert ghost.status is TableStatus.SKIPPED
    assert not any('`ghost`' in stmt for stmt, _ in target.executed)
    assert not report.succeeded


def test_introspection_failure_skips_table_only(source):
    source.describe_errors['orders'] = psycopg2.ProgrammingError("permission denied for table orders")
    target = FakeTarget()

    report = migrate_database(source, target, MigrationConfig())

    statuses = {t.table_name: t.status for t in report.tables}
    assert statuses == {'orders': TableStatus.SKIPPED, 'users': TableStatus.COMPLETE}
    assert target.inserts('orders') == []
    assert len(target.inserts('users')) == 2


def test_schema_failure_skips_data_and_continues(source):
    target = FakeTarget(reject=reject_table_ddl('orders'))

    report = migrate_database(source, target, MigrationConfig())

    orders, users = report.tables
    assert orders.status is TableStatus.FAILED
    assert 'Access denied' in orders.message
    assert orders.transfer is None
    assert not any(call[0] == 'orders' for call in source.fetch_calls)
    assert users.status is TableStatus.COMPLETE
    assert len(target.inserts('users')) == 2


def test_rejected_rows_mark_table_partial(source):
    def reject(statement, params):
        if statement.startswith("INSERT INTO `orders`") and params[0] == 2:
            return mysql_errors.IntegrityError(msg="Duplicate entry '2'")
        return None

    report = migrate_database(source, FakeTarget(reject=reject), MigrationConfig())

    orders = report.tables[0]
    assert orders.status is TableStatus.PARTIAL
    assert orders.transfer.rows_failed == 1
    assert orders.transfer.rows_inserted == 1
    assert report.rows_failed == 1
    assert not report.succeeded


def test_source_read_failure_fails_table(source):
    source.fetch_errors['orders'] = psycopg2.OperationalError("canceling statement")

    report = migrate_database(source, FakeTarget(), MigrationConfig())

    statuses = [t.status for t in report.tables]
    assert statuses == [TableStatus.FAILED, TableStatus.COMPLETE]


def test_migrate_table_never_raises_for_table_errors(users_columns):
    source = FakeSource({'users': (users_columns, [])},
                        describe_errors={'users': psycopg2.OperationalError("gone")})

    result = migrate_table(source, FakeTarget(), 'users', MigrationConfig())

    assert result.status is TableStatus.SKIPPED


def test_progress_narrative_logged(source, caplog):
    caplog.set_level('INFO')

    migrate_database(source, FakeTarget(), MigrationConfig())

    messages = [r.getMessage() for r in caplog.records]
    assert '[1/2] Migrating table: orders' in messages
    assert '[2/2] Migrating table: users' in messages
    assert '    users: ✅ Table ready (3 columns)' in messages
    done = [m for m in messages if '✅ Done!' in m]
    assert len(done) == 2
    assert done[0].startswith('    orders: ✅ Done! 2/2 rows')
    assert done[1].startswith('    users: ✅ Done! 2/2 rows')


class ConversionError(Exception):
    """Stand-in for the C extension's own MySQLInterfaceError"""


def converting_target(inserted):
    """MariaDBTarget over a cursor that, like the C extension, can't bind a list"""
    conn = MagicMock()
    cur = conn.cursor.return_value.__enter__.return_value

    def execute(statement, params=None):
        if params and any(isinstance(value, (list, memoryview)) for value in params):
            raise ConversionError("Python type list cannot be converted")
        if statement.startswith('INSERT'):
            inserted.append(params[0])

    cur.execute.side_effect = execute
    return MariaDBTarget(conn)


def test_unconvertible_value_fails_only_its_row():
    tagged = [ColumnDescriptor('id', 'integer', False), ColumnDescriptor('tags', 'ARRAY', True)]
    source = FakeSource({
        't': (tagged, [{'id': 1, 'tags': None}, {'id': 2, 'tags': ['a', 'b']}, {'id': 3, 'tags': None}]),
        'u': ([ColumnDescriptor('id', 'integer', False)], [{'id': 9}]),
    })
    inserted = []

    report = migrate_database(source, converting_target(inserted), MigrationConfig())

    assert inserted == [1, 3, 9]
    assert [t.status for t in report.tables] == [TableStatus.PARTIAL, TableStatus.COMPLETE]
    assert report.tables[0].transfer.rows_failed == 1


def test_table_filter(source):
    target = FakeTarget()

    report = migrate_database(source, target, MigrationConfig(tables=['users', 'missing']))

    assert [t.table_name for t in report.tables] == ['users']
    assert target.inserts('orders') == []


def test_select_tables_keeps_source_order():
    assert select_tables(['a', 'b', 'c'], ['c', 'a']) == ['a', 'c']
    assert select_tables(['a', 'b'], None) == ['a', 'b']
    assert select_tables(['a'], ['z']) == []


def test_rerun_is_schema_idempotent_but_duplicates_rows(source):
    target = FakeTarget()

    migrate_database(source, target, MigrationConfig())
    migrate_database(source, target, MigrationConfig())

    assert len(target.ddl) == 4
    assert len(set(target.ddl)) == 2
    assert len(target.inserts('users')) == 4


# ============================================================================
# Configuration
# ============================================================================

def test_config_defaults():
    config = MigrationConfig.from_env()

    assert config.schema == 'public'
    assert config.storage == StorageOptions('InnoDB', 'utf8mb4')
    assert config.batch_size == 100
    assert config.tables is None


def test_config_from_env(monkeypatch):
    monkeypatch.setenv('PGSQL_SCHEMA', 'sales')
    monkeypatch.setenv('TABLE_ENGINE', 'Aria')
    monkeypatch.setenv('TABLE_CHARSET', 'latin1')
    monkeypatch.setenv('MIGRATION_BATCH_SIZE', '500')

    config = MigrationConfig.from_env()

    assert config.schema == 'sales'
    assert config.storage == StorageOptions('Aria', 'latin1')
    assert config.batch_size == 500


def test_empty_engine_env_falls_back_to_default(monkeypatch):
    monkeypatch.setenv('TABLE_ENGINE', '')
    assert MigrationConfig.from_env().storage.engine == 'InnoDB'


def test_cli_flags_override_env(monkeypatch):
    monkeypatch.setenv('MIGRATION_BATCH_SIZE', '500')
    parser = build_parser()
    args = parser.parse_args(['--batch-size', '25', '--tables', 'users, orders,', '--schema', 'crm',
                              '--engine', 'MyISAM'])

    config = build_config(args, parser)

    assert config.batch_size == 25
    assert config.tables == ['users', 'orders']
    assert config.schema == 'crm'
    assert config.storage == StorageOptions('MyISAM', 'utf8mb4')


@pytest.mark.parametrize("argv", [
    ['--batch-size', '0'],
    ['--batch-size', 'ten'],
    ['--engine', 'InnoDB;DROP'],
])
def test_invalid_cli_values_rejected(argv):
    parser = build_parser()
    with pytest.raises(SystemExit) as exc_info:
        build_config(parser.parse_args(argv), parser)
    assert exc_info.value.code == 2


@pytest.mark.parametrize("value", ['abc', '0'])
def test_invalid_batch_size_env_rejected(monkeypatch, value):
    monkeypatch.setenv('MIGRATION_BATCH_SIZE', value)
    parser = build_parser()
    with pytest.raises(SystemExit) as exc_info:
        build_config(parser.parse_args([]), parser)
    assert exc_info.value.code == 2


def test_connection_settings_from_env(monkeypatch):
    monkeypatch.setenv('PGSQL_HOST', 'pg.internal')
    monkeypatch.setenv('PGSQL_PORT', '6543')
    monkeypatch.setenv('MARIADB_HOST', 'maria.internal')

    assert migrate.get_pg_config()['host'] == 'pg.internal'
    assert migrate.get_pg_config()['port'] == 6543
    assert migrate.get_mariadb_config()['host'] == 'maria.internal'
    assert migrate.get_mariadb_config()['port'] == 3306


def test_load_env_reads_dotenv_from_cwd(monkeypatch, tmp_path):
    monkeypatch.delenv('TABLE_CHARSET', raising=False)
    (tmp_path / '.env').write_text("TABLE_CHARSET=latin1\n")

    with patch.object(migrate, '__file__', str(tmp_path / 'elsewhere' / 'migrate.py')):
        assert migrate.load_env() == tmp_path / '.env'

    assert MigrationConfig.from_env().storage.charset == 'latin1'


# ============================================================================
# CLI entry point
# ============================================================================

def fake_connections(source, target):
    connections = MagicMock()
    connections.return_value.__enter__.return_value = MagicMock(source=source, target=target)
    connections.return_value.__exit__.return_value = False
    return connections


def test_main_success(source, capsys):
    target = FakeTarget()

    with patch.object(migrate, 'DatabaseConnections', fake_connections(source, target)):
        migrate.main(['--yes'])

    out = capsys.readouterr().out
    assert 'MIGRATION SUMMARY' in out
    assert 'Migration completed successfully' in out
    assert len(target.inserts()) == 4


def test_main_exits_nonzero_on_table_failure(source):
    target = FakeTarget(reject=reject_table_ddl('users'))

    with patch.object(migrate, 'DatabaseConnections', fake_connections(source, target)):
        with pytest.raises(SystemExit) as exc_info:
            migrate.main(['--yes'])

    assert exc_info.value.code == 1


def test_main_verify_counts(source, capsys):
    target = FakeTarget()

    with patch.object(migrate, 'DatabaseConnections', fake_connections(source, target)):
        migrate.main(['--yes', '--verify'])

    assert 'Migration completed successfully' in capsys.readouterr().out


def test_main_verify_detects_mismatch(source):
    # Target reports one row too many for `orders`
    target = FakeTarget()
    target.count_rows = lambda table_name: len(target.inserts(table_name)) + (table_name == 'orders')

    with patch.object(migrate, 'DatabaseConnections', fake_connections(source, target)):
        with pytest.raises(SystemExit) as exc_info:
            migrate.main(['--yes', '--verify'])

    assert exc_info.value.code == 1


def test_main_connection_failure_aborts():
    connections = MagicMock()
    connections.return_value.__enter__.side_effect = psycopg2.OperationalError("could not connect to server")

    with patch.object(migrate, 'DatabaseConnections', connections):
        with pytest.raises(SystemExit) as exc_info:
            migrate.main(['--yes'])

    assert exc_info.value.code == 1


def test_main_declined_prompt_touches_nothing(monkeypatch):
    connections = MagicMock()

    def decline(prompt=''):
        raise EOFError

    monkeypatch.setattr('builtins.input', decline)

    with patch.object(migrate, 'DatabaseConnections', connections):
        with pytest.raises(SystemExit) as exc_info:
            migrate.main([])

    assert exc_info.value.code == 1
    connections.assert_not_called()


def test_main_confirmed_prompt_runs(monkeypatch, source):
    monkeypatch.setattr('builtins.input', lambda prompt='': '')
    target = FakeTarget()

    with patch.object(migrate, 'DatabaseConnections', fake_connections(source, target)):
        migrate.main([])

    assert len(target.inserts()) == 4
