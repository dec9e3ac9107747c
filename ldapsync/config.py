#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.config
~~~~~~~~~~~~~~~

The configuration is read once from ``LDAPSYNC_*`` environment variables
and then handed to every component explicitly.
"""
from __future__ import annotations

import os
import sys
from typing import NamedTuple

import ldap3

from . import logger
from .concepts import types
from .concepts.mapping import (
    DEFAULT_FIELD_MAP,
    USER_FIELDS,
    FieldMapping,
    ProfileField,
    parse_profile_fields,
)

ENV_PREFIX = 'LDAPSYNC_'
FIELD_MAP_PREFIX = f'{ENV_PREFIX}FIELD_MAP_'

DEFAULT_AUTH_TYPE = 'shibboleth'

#: ``LDAPSYNC_OPT_DEREF`` values and their ldap3 counterparts
DEREF_POLICIES: dict[str, str] = {
    'never': ldap3.DEREF_NEVER,
    'searching': ldap3.DEREF_SEARCH,
    'finding': ldap3.DEREF_BASE,
    'always': ldap3.DEREF_ALWAYS,
}

DEFAULTS: dict[str, str | None] = {
    'ldap_version': '3',
    'start_tls': 'False',
    'ca_certs_file': None,
    'ca_certs_data': None,
    'bind_dn': None,
    'bind_pw': None,
    'create_context': None,
    'search_sub': 'False',
    'opt_deref': 'never',
    'page_size': '250',
    'objectclass': '',
    'auth_type': DEFAULT_AUTH_TYPE,
    'force_change_password': 'False',
    'encoding': 'utf-8',
    'mnet_host_id': '1',
    'default_lang': 'en',
    'cache_file': None,
    'profile_fields': None,
}


class SyncConfig(NamedTuple):
    # DB-related
    db_uri: str
    # LDAP-related
    host_url: str
    ldap_version: int
    start_tls: bool
    ca_certs_file: str | None
    ca_certs_data: str | None
    bind_dn: types.DN | None
    bind_pw: str | None
    contexts: tuple[types.DN, ...]
    create_context: types.DN | None
    search_sub: bool
    opt_deref: str
    page_size: int
    user_attribute: str
    objectclass: str
    # LMS-related
    auth_type: str
    force_change_password: bool
    encoding: str
    mnet_host_id: int
    default_lang: str
    cache_file: str | None
    field_map: FieldMapping
    profile_fields: tuple[ProfileField, ...]

    @property
    def host_urls(self) -> list[str]:
        return [url.strip() for url in self.host_url.split(';') if url.strip()]

    @property
    def search_contexts(self) -> list[types.DN]:
        """The contexts to search, the create context included."""
        contexts = [*self.contexts]
        if self.create_context:
            contexts.append(self.create_context)
        return list(dict.fromkeys(contexts))


def to_bool(value: str) -> bool:
    match value.strip().lower():
        case 'y' | 'yes' | 't' | 'true' | 'on' | '1':
            return True
        case 'n' | 'no' | 'f' | 'false' | 'off' | '0' | '':
            return False
    raise ValueError(f"invalid truth value {value!r}")


def _from_environ_or_defaults(key: str, defaults: dict[str, str | None]) -> str | None:
    try:
        return os.environ[f'{ENV_PREFIX}{key.upper()}']
    except KeyError as e:
        if key not in defaults:
            raise KeyError(f'{ENV_PREFIX}{key.upper()}') from e
        return defaults[key]


def _field_map_from_environ(defaults: dict[str, str | None]) -> FieldMapping:
    fields: dict[str, str | None] = {
        field: defaults.get(f'field_map_{field}', DEFAULT_FIELD_MAP.get(field))
        for field in USER_FIELDS
    }
    for field in USER_FIELDS:
        if (value := os.environ.get(f'{FIELD_MAP_PREFIX}{field.upper()}')) is not None:
            fields[field] = value
    return FieldMapping.from_strings(fields)


def get_config(**defaults: str | None) -> SyncConfig:
    """Fetch the config from the environment, filling in defaults as specified.

    Values are converted in accordance to the types hints of :class:`SyncConfig`.

    The environment variables need to be of the format ``LDAPSYNC_$VAR``, e.g.
    ``LDAPSYNC_PAGE_SIZE``.  The field mapping is read from
    ``LDAPSYNC_FIELD_MAP_$FIELD`` (e.g. ``LDAPSYNC_FIELD_MAP_FIRSTNAME=givenName``)
    and can be defaulted with ``field_map_$field`` keyword arguments.

    :raises KeyError: if a required variable is neither set nor defaulted
    :raises ValueError: if a value cannot be converted
    """
    defaults = DEFAULTS | defaults
    config_dict: dict[str, str | None] = {
        key: _from_environ_or_defaults(key, defaults)
        for key in SyncConfig._fields if key not in ('field_map', 'profile_fields')
    }

    def _get_or_fail(dict: dict[str, str | None], key: str) -> str:
        if (str_value := dict.pop(key)) is None:
            raise KeyError(f'{ENV_PREFIX}{key.upper()}')
        return str_value

    db_uri = _get_or_fail(config_dict, 'db_uri')
    host_url = _get_or_fail(config_dict, 'host_url')
    contexts = tuple(
        types.DN(c.strip())
        for c in _get_or_fail(config_dict, 'contexts').split(';') if c.strip()
    )
    user_attribute = _get_or_fail(config_dict, 'user_attribute').strip().lower()
    opt_deref = _get_or_fail(config_dict, 'opt_deref').strip().lower()
    if opt_deref not in DEREF_POLICIES:
        raise ValueError(f"Unknown dereference policy {opt_deref!r}")
    page_size = int(_get_or_fail(config_dict, 'page_size'))
    if page_size < 1:
        raise ValueError("page_size must be positive")

    return SyncConfig(
        db_uri=db_uri,
        host_url=host_url,
        ldap_version=int(_get_or_fail(config_dict, 'ldap_version')),
        start_tls=to_bool(_get_or_fail(config_dict, 'start_tls')),
        ca_certs_file=config_dict.pop('ca_certs_file'),
        ca_certs_data=config_dict.pop('ca_certs_data'),
        bind_dn=types.DN(bind_dn) if (bind_dn := config_dict.pop('bind_dn')) else None,
        bind_pw=config_dict.pop('bind_pw'),
        contexts=contexts,
        create_context=(
            types.DN(cc.strip()) if (cc := config_dict.pop('create_context')) else None
        ),
        search_sub=to_bool(_get_or_fail(config_dict, 'search_sub')),
        opt_deref=DEREF_POLICIES[opt_deref],
        page_size=page_size,
        user_attribute=user_attribute,
        objectclass=_get_or_fail(config_dict, 'objectclass'),
        auth_type=_get_or_fail(config_dict, 'auth_type') or DEFAULT_AUTH_TYPE,
        force_change_password=to_bool(_get_or_fail(config_dict, 'force_change_password')),
        encoding=_get_or_fail(config_dict, 'encoding'),
        mnet_host_id=int(_get_or_fail(config_dict, 'mnet_host_id')),
        default_lang=_get_or_fail(config_dict, 'default_lang'),
        cache_file=config_dict.pop('cache_file'),
        field_map=_field_map_from_environ(defaults),
        profile_fields=parse_profile_fields(
            _from_environ_or_defaults('profile_fields', defaults)
        ),
    )


def get_config_or_exit(**defaults: str | None) -> SyncConfig:
    """See :func:`get_config`"""
    try:
        return get_config(**defaults)
    except KeyError as exc:
        logger.critical("%s not set, quitting", exc.args[0])
        sys.exit(1)
    except ValueError as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)
