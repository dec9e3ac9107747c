#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import pytest
from sqlalchemy import select, func
from sqlalchemy.dialects import mysql, postgresql, sqlite

from ldapsync.concepts.mapping import parse_profile_fields
from ldapsync.exc import StagingError
from ldapsync.staging import (
    create_staging_table,
    drop_staging_table,
    insert_ignore,
    stage_records,
    staging_table,
)
from . import make_record


class TestStagingTable:
    def test_columns(self, sync_config):
        config = sync_config._replace(profile_fields=parse_profile_fields('office=roomNumber'))
        table = staging_table(config)
        assert set(table.c.keys()) == {
            'username', 'mnethostid', 'uid',
            'firstname', 'preferred_firstname', 'lastname', 'middlename',
            'alternatename', 'idnumber', 'email',
            'createtimestamp', 'modifytimestamp',
            'profile_field_office',
        }
        assert [c.name for c in table.primary_key] == ['username', 'mnethostid']

    def test_temporary(self, sync_config):
        assert staging_table(sync_config)._prefixes == ['TEMPORARY']

    @pytest.mark.parametrize('dialect, expected', [
        (postgresql.dialect(), 'ON CONFLICT DO NOTHING'),
        (sqlite.dialect(), 'ON CONFLICT DO NOTHING'),
        (mysql.dialect(), 'INSERT IGNORE'),
    ])
    def test_insert_ignore(self, sync_config, dialect, expected):
        stmt = insert_ignore(staging_table(sync_config), dialect.name)
        assert expected in str(stmt.compile(dialect=dialect))


class TestStageRecords:
    @pytest.fixture
    def table(self, session, sync_config):
        table = staging_table(sync_config)
        create_staging_table(session, table)
        yield table
        drop_staging_table(session, table)

    def _rows(self, session, table):
        return session.execute(select(table).order_by(table.c.username)).mappings().all()

    def test_rows_staged(self, session, table, sync_config):
        staged = stage_records(session, table, [
            make_record('a@example.org', uid='a', firstname='A', createtimestamp=5),
            make_record('b@example.org', uid='b', lastname="O'Reilly"),
        ], sync_config)
        assert staged == 2
        rows = self._rows(session, table)
        assert rows[0]['username'] == 'a@example.org'
        assert rows[0]['mnethostid'] == 1
        assert rows[0]['firstname'] == 'A'
        assert rows[0]['createtimestamp'] == 5
        assert rows[0]['modifytimestamp'] == 0
        assert rows[1]['lastname'] == "O'Reilly"

    def test_first_duplicate_wins(self, session, table, sync_config):
        staged = stage_records(session, table, [
            make_record('a@example.org', firstname='first'),
            make_record('b@example.org'),
            make_record('a@example.org', firstname='second'),
        ], sync_config)
        assert staged == 2
        assert self._rows(session, table)[0]['firstname'] == 'first'

    def test_batches(self, session, table, sync_config):
        records = [make_record(f'{i:04d}@example.org') for i in range(25)]
        assert stage_records(session, table, records, sync_config, batch_size=10) == 25
        assert session.scalar(select(func.count()).select_from(table)) == 25

    def test_recreate_empties(self, session, table, sync_config):
        stage_records(session, table, [make_record('a@example.org')], sync_config)
        create_staging_table(session, table)
        assert self._rows(session, table) == []


def test_staging_into_missing_table_fails(session, sync_config):
    table = staging_table(sync_config)
    with pytest.raises(StagingError):
        stage_records(session, table, [make_record('a@example.org')], sync_config)
