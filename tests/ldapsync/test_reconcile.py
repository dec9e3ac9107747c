#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ldapsync import reconcile as reconcile_module
from ldapsync.concepts.mapping import parse_profile_fields
from ldapsync.model import Provenance
from ldapsync.reconcile import (
    FORCE_PASSWORD_CHANGE,
    FieldDecision,
    ReconcileResult,
    ReconcileState,
    Reconciler,
    decide_field,
)
from ldapsync.sources.ldap import fetch_directory_records
from lms.lib.user import set_user_preference
from lms.model.user import User
from tests.factories import ProvenanceFactory, UserFactory
from . import PagedConnection, make_entry, make_record

NOW = 1_700_000_000


def run(session, config, records, **kwargs) -> ReconcileResult:
    return Reconciler(session, config, now=NOW, **kwargs).run(records)


def users_by_name(session) -> dict[str, User]:
    return {u.username: u for u in session.scalars(select(User))}


@pytest.mark.parametrize('field, local, new, decision', [
    ('username', 'jdoe', 'jdoe', FieldDecision.SKIP),
    ('username', 'jdoe', 'JDoe', FieldDecision.SKIP_ROW),
    ('idnumber', '', '011234569', FieldDecision.APPLY),
    ('idnumber', '011234569', '999999999', FieldDecision.SKIP),
    ('idnumber', '011234569', '', FieldDecision.SKIP),
    ('email', 'jdoe@example.org', '', FieldDecision.SKIP),
    ('email', 'jdoe@example.org', 'jane@example.org', FieldDecision.APPLY),
    ('email', 'jdoe@example.org', 'jdoe@example.org', FieldDecision.SKIP),
    ('timecreated', 0, 100, FieldDecision.APPLY),
    ('timecreated', 200, 100, FieldDecision.APPLY),
    ('timecreated', 100, 200, FieldDecision.SKIP),
    ('timecreated', 100, 0, FieldDecision.SKIP),
    ('timemodified', 0, 100, FieldDecision.APPLY),
    ('timemodified', 50, 100, FieldDecision.SKIP),
    ('timemodified', 0, 0, FieldDecision.SKIP),
    ('lastname', 'Doe', 'Roe', FieldDecision.APPLY),
    ('lastname', 'Doe', '', FieldDecision.APPLY),
    ('city', 'Berlin', 'Berlin', FieldDecision.SKIP),
])
def test_decide_field(field, local, new, decision):
    assert decide_field(field, local, new) is decision


class TestInsert:
    def test_default_attributes(self, session, sync_config):
        result = run(session, sync_config, [make_record(
            'jane@example.org', uid='jane', firstname='Jane', lastname='Doe',
            email='jane@example.org', idnumber='011234569', createtimestamp=1_600_000_000,
        )])
        assert result.inserted == 1
        user = users_by_name(session)['jane@example.org']
        assert user.auth == 'shibboleth'
        assert user.confirmed is True
        assert user.trackforums is True
        assert user.deleted is False
        assert user.mnethostid == 1
        assert user.lang == 'en'
        assert (user.firstname, user.lastname) == ('Jane', 'Doe')
        assert user.email == 'jane@example.org'
        assert user.idnumber == '011234569'
        assert user.timecreated == 1_600_000_000
        assert user.timemodified == NOW
        assert FORCE_PASSWORD_CHANGE not in user.preferences

    def test_timecreated_defaults_to_now(self, session, sync_config):
        run(session, sync_config, [make_record('jane@example.org')])
        assert users_by_name(session)['jane@example.org'].timecreated == NOW

    def test_configured_auth_type(self, session, sync_config):
        run(session, sync_config._replace(auth_type='cas'), [make_record('jane@example.org')])
        assert users_by_name(session)['jane@example.org'].auth == 'cas'

    @pytest.mark.parametrize('firstname, preferred, expected', [
        ('Jane', None, 'Jane'),
        ('Jane', '', 'Jane'),
        ('Jim', 'Jimmy', 'Jimmy'),
    ])
    def test_preferred_firstname(self, session, sync_config, firstname, preferred, expected):
        run(session, sync_config, [make_record(
            'someone@example.org', firstname=firstname, preferred_firstname=preferred,
        )])
        assert users_by_name(session)['someone@example.org'].firstname == expected

    def test_special_characters(self, session, sync_config):
        run(session, sync_config, [make_record(
            "o'reilly@example.org", firstname="Mary-Kate", lastname="Doe-O'Reilly",
            email="o'reilly@example.org",
        )])
        user = users_by_name(session)["o'reilly@example.org"]
        assert (user.firstname, user.lastname, user.email) \
            == ("Mary-Kate", "Doe-O'Reilly", "o'reilly@example.org")

    def test_force_password_change(self, session, sync_config):
        run(session, sync_config._replace(force_change_password=True),
            [make_record('jane@example.org')])
        user = users_by_name(session)['jane@example.org']
        assert user.preferences[FORCE_PASSWORD_CHANGE].value == '1'

    def test_profile_fields(self, session, sync_config):
        config = sync_config._replace(profile_fields=parse_profile_fields('office=roomNumber'))
        run(session, config, [make_record('jane@example.org', profile={'office': 'S-101'})])
        user = users_by_name(session)['jane@example.org']
        assert user.preferences['profile_field_office'].value == 'S-101'

    def test_provenance_recorded(self, session, sync_config):
        run(session, sync_config, [make_record(
            'jane@example.org', uid='jane', createtimestamp=10, modifytimestamp=20,
        )])
        row = session.scalars(select(Provenance)).one()
        assert (row.cn, row.uid, row.createtimestamp, row.modifytimestamp, row.lastupdated) \
            == ('jane@example.org', 'jane', 10, 20, NOW)

    def test_keyset_batches(self, session, sync_config):
        records = [make_record(f'{i:02d}@example.org') for i in range(7)]
        result = run(session, sync_config, records, batch_size=2)
        assert result.inserted == 7
        assert len(users_by_name(session)) == 7

    def test_failure_is_isolated(self, session, sync_config, monkeypatch):
        set_user_preference = reconcile_module.set_user_preference

        def failing(session, user, name, value):
            if user.username == 'b@example.org':
                raise SQLAlchemyError("boom")
            return set_user_preference(session, user, name, value)

        monkeypatch.setattr(reconcile_module, 'set_user_preference', failing)
        result = run(session, sync_config._replace(force_change_password=True), [
            make_record('a@example.org'), make_record('b@example.org'),
            make_record('c@example.org'),
        ])
        assert (result.inserted, result.failed) == (2, 1)
        assert set(users_by_name(session)) == {'a@example.org', 'c@example.org'}
        assert {p.cn for p in session.scalars(select(Provenance))} \
            == {'a@example.org', 'c@example.org'}


class TestUpdate:
    def test_identifiers_immutable(self, session, sync_config):
        UserFactory(username='jdoe@example.org', idnumber='011234569',
                    email='jdoe@example.org', lastname='Old')
        result = run(session, sync_config, [make_record(
            'jdoe@example.org', idnumber='999999999', email=None, lastname='New',
        )])
        assert result.updated == 1
        user = users_by_name(session)['jdoe@example.org']
        assert user.idnumber == '011234569'
        assert user.email == 'jdoe@example.org'
        assert user.lastname == 'New'

    def test_blank_idnumber_filled(self, session, sync_config):
        UserFactory(username='jdoe@example.org', idnumber='')
        run(session, sync_config, [make_record('jdoe@example.org', idnumber='011234569')])
        assert users_by_name(session)['jdoe@example.org'].idnumber == '011234569'

    def test_email_changed(self, session, sync_config):
        UserFactory(username='jdoe@example.org', email='old@example.org')
        run(session, sync_config, [make_record('jdoe@example.org', email='new@example.org')])
        assert users_by_name(session)['jdoe@example.org'].email == 'new@example.org'

    def test_preferred_firstname(self, session, sync_config):
        UserFactory(username='jim@example.org', firstname='Jim')
        run(session, sync_config, [make_record(
            'jim@example.org', firstname='Jim', preferred_firstname='Jimmy',
        )])
        assert users_by_name(session)['jim@example.org'].firstname == 'Jimmy'

    def test_timecreated_only_moves_backwards(self, session, sync_config):
        UserFactory(username='old@example.org', timecreated=1_600_000_000)
        UserFactory(username='new@example.org', timecreated=1_600_000_000)
        run(session, sync_config, [
            make_record('old@example.org', createtimestamp=1_500_000_000),
            make_record('new@example.org', createtimestamp=1_650_000_000),
        ])
        users = users_by_name(session)
        assert users['old@example.org'].timecreated == 1_500_000_000
        assert users['new@example.org'].timecreated == 1_600_000_000

    def test_timemodified_only_filled(self, session, sync_config):
        UserFactory(username='set@example.org', timemodified=1_600_000_000)
        UserFactory(username='blank@example.org', timemodified=0)
        run(session, sync_config, [
            make_record('set@example.org', modifytimestamp=1_650_000_000),
            make_record('blank@example.org', modifytimestamp=1_650_000_000),
        ])
        users = users_by_name(session)
        assert users['set@example.org'].timemodified == 1_600_000_000
        assert users['blank@example.org'].timemodified == 1_650_000_000

    @pytest.mark.parametrize('attrs', [{'deleted': True}, {'manual': True}])
    def test_unmanaged_accounts_untouched(self, session, sync_config, attrs):
        UserFactory(username='jdoe@example.org', lastname='Old', **attrs)
        result = run(session, sync_config, [make_record('jdoe@example.org', lastname='New')])
        assert (result.updated, result.inserted) == (0, 0)
        users = session.scalars(select(User)).all()
        assert [(u.username, u.lastname) for u in users] == [('jdoe@example.org', 'Old')]

    def test_other_host_not_matched(self, session, sync_config):
        UserFactory(username='jdoe@example.org', mnethostid=2, lastname='Remote')
        result = run(session, sync_config, [make_record('jdoe@example.org', lastname='Local')])
        assert (result.updated, result.inserted) == (0, 1)

    def test_unmatched_accounts_untouched(self, session, sync_config):
        UserFactory(username='gone@example.org', lastname='Gone')
        run(session, sync_config, [make_record('jdoe@example.org')])
        user = users_by_name(session)['gone@example.org']
        assert (user.lastname, user.deleted, user.suspended) == ('Gone', False, False)

    def test_differing_username_skips_row(self, session, sync_config):
        user = UserFactory(username='jdoe@example.org', lastname='Old')
        reconciler = Reconciler(session, sync_config, now=NOW)
        reconciler.update_user(user, {'username': 'JDoe@example.org', 'lastname': 'New'})
        assert reconciler.result.skipped == 1
        assert user.lastname == 'Old'

    def test_profile_field_changed(self, session, sync_config):
        user = UserFactory(username='jdoe@example.org')
        set_user_preference(session, user, 'profile_field_office', 'S-100')
        config = sync_config._replace(profile_fields=parse_profile_fields('office=roomNumber'))
        run(session, config, [make_record('jdoe@example.org', profile={'office': 'S-101'})])
        assert user.preferences['profile_field_office'].value == 'S-101'

    def test_provenance_created_and_updated(self, session, sync_config):
        UserFactory(username='new@example.org')
        UserFactory(username='known@example.org')
        ProvenanceFactory(cn='known@example.org', uid='known', createtimestamp=1,
                          modifytimestamp=1, lastupdated=1)
        run(session, sync_config, [
            make_record('new@example.org', uid='new', modifytimestamp=5),
            make_record('known@example.org', uid='known', createtimestamp=1,
                        modifytimestamp=7),
        ])
        rows = {p.cn: p for p in session.scalars(select(Provenance))}
        assert (rows['new@example.org'].modifytimestamp, rows['new@example.org'].lastupdated) \
            == (5, NOW)
        assert (rows['known@example.org'].modifytimestamp,
                rows['known@example.org'].lastupdated) == (7, NOW)

    def test_batches(self, session, sync_config):
        for i in range(5):
            UserFactory(username=f'{i}@example.org', lastname='Old')
        result = run(session, sync_config,
                     [make_record(f'{i}@example.org', lastname='New') for i in range(5)],
                     batch_size=2)
        assert result.updated == 5
        assert {u.lastname for u in users_by_name(session).values()} == {'New'}


class TestPass:
    def test_empty_pass_is_done(self, session, sync_config):
        reconciler = Reconciler(session, sync_config, now=NOW)
        assert reconciler.state is ReconcileState.EMPTY
        assert reconciler.run([]) == ReconcileResult()
        assert reconciler.state is ReconcileState.DONE

    def test_idempotent(self, session, sync_config):
        UserFactory(username='existing@example.org', idnumber='')
        records = [
            make_record('existing@example.org', firstname='Ex', preferred_firstname='Exy',
                        idnumber='1', createtimestamp=100, modifytimestamp=200),
            make_record('new@example.org', firstname='New', lastname='Person',
                        email='new@example.org', createtimestamp=300),
        ]

        def snapshot():
            return {
                u.username: (u.firstname, u.lastname, u.email, u.idnumber,
                             u.timecreated, u.timemodified)
                for u in session.scalars(select(User))
            }

        first = run(session, sync_config, records)
        state = snapshot()
        second = run(session, sync_config, records)
        assert (first.updated, first.inserted) == (1, 1)
        assert (second.updated, second.inserted) == (0, 0)
        assert snapshot() == state

    def test_missing_principals_skipped(self, session, sync_config):
        connection = PagedConnection([[
            make_entry('a', givenName='A'),
            make_entry('b', givenName='B', eduPersonPrincipalName=''),
            make_entry('c', givenName='C'),
        ]])
        result = run(session, sync_config, fetch_directory_records(connection, sync_config))
        assert (result.staged, result.updated, result.inserted) == (0, 0, 0)
        assert users_by_name(session) == {}

    def test_partial_skip(self, session, sync_config):
        connection = PagedConnection([[
            make_entry('a', givenName='A'),
            make_entry('b', givenName='B', eduPersonPrincipalName='b@example.org'),
            make_entry('c', givenName='C'),
        ]])
        result = run(session, sync_config, fetch_directory_records(connection, sync_config))
        assert result.inserted == 1
        assert list(users_by_name(session)) == ['b@example.org']
