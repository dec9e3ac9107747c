#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import logging
import os

import ldap3
import pytest

from ldapsync.config import get_config, SyncConfig
from . import BASE_DN

FIELD_MAP = dict(
    field_map_firstname='givenName',
    field_map_preferred_firstname='ucsfEduPreferredGivenName',
    field_map_lastname='ucsfEduPreferredLastName,sn',
    field_map_middlename='ucsfEduPreferredMiddleName,initials',
    field_map_alternatename='displayName',
    field_map_idnumber='ucsfEduIDNumber',
    field_map_email='mail',
)


@pytest.fixture(scope="class")
def muted_ldap_logger():
    logging.getLogger("ldapsync").addHandler(logging.NullHandler())


@pytest.fixture
def clean_environ(monkeypatch):
    for key in list(os.environ):
        if key.startswith('LDAPSYNC_'):
            monkeypatch.delenv(key)


@pytest.fixture
def sync_config(clean_environ) -> SyncConfig:
    return get_config(
        db_uri='sqlite://',
        host_url='ldap://ldap.example.org',
        contexts=BASE_DN,
        user_attribute='eduPersonPrincipalName',
        objectclass='',
        auth_type='shibboleth',
        **FIELD_MAP,
    )


@pytest.fixture
def mock_connection() -> ldap3.Connection:
    """An ``ldap3`` connection to an in-memory directory containing
    just the people container."""
    server = ldap3.Server('fake_server')
    connection = ldap3.Connection(server, user='cn=test', password='pw',
                                  client_strategy=ldap3.MOCK_SYNC)
    connection.strategy.add_entry(BASE_DN, {'objectClass': ['organizationalUnit'],
                                            'ou': ['people']})
    connection.open()
    yield connection
    if not connection.closed:
        connection.strategy.close()
