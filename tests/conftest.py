import pytest

from schema_translator import ColumnDescriptor


@pytest.fixture
def users_columns():
    return [
        ColumnDescriptor('id', 'integer', True),
        ColumnDescriptor('name', 'character varying', True),
        ColumnDescriptor('active', 'boolean', False),
    ]


@pytest.fixture
def users_rows():
    return [
        {'id': 1, 'name': 'Ann', 'active': True},
        {'id': 2, 'name': '', 'active': None},
    ]
