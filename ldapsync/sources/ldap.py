#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.sources.ldap
~~~~~~~~~~~~~~~~~~~~~
"""
from __future__ import annotations

import contextlib
import ssl
import typing

import ldap3
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from .. import logger
from ..cache import UserlistCache
from ..concepts.mapping import requested_attributes
from ..concepts.record import DirectoryRecord
from ..concepts.types import DN, LdapRecord
from ..config import SyncConfig
from ..conversion import format_ldap_timestamp, ldap_entry_to_record, normalize_attributes
from ..exc import DirectoryConnectionError, DirectorySearchError

#: OID of the simple paged results control, see :rfc:`2696`
PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'

ConnectionFactory = typing.Callable[[SyncConfig], ldap3.Connection]


def establish_and_return_ldap_connection(config: SyncConfig) -> ldap3.Connection:
    """Connect and bind to the directory.

    Several ``;``-separated host URLs are combined into a server pool.

    :raises DirectoryConnectionError: if connecting or binding fails
    """
    tls = None
    if config.ca_certs_file or config.ca_certs_data:
        tls = ldap3.Tls(
            ca_certs_file=config.ca_certs_file,
            ca_certs_data=config.ca_certs_data,
            validate=ssl.CERT_REQUIRED,
        )
    servers = [ldap3.Server(url, tls=tls, get_info=ldap3.NONE) for url in config.host_urls]
    if not servers:
        raise DirectoryConnectionError("No LDAP host configured")
    server: ldap3.Server | ldap3.ServerPool = (
        servers[0] if len(servers) == 1
        else ldap3.ServerPool(servers, ldap3.FIRST, active=True, exhaust=True)
    )
    auto_bind = ldap3.AUTO_BIND_TLS_BEFORE_BIND if config.start_tls else ldap3.AUTO_BIND_NO_TLS

    logger.info("Connecting to LDAP server %s", config.host_url)
    try:
        return ldap3.Connection(
            server,
            user=config.bind_dn,
            password=config.bind_pw,
            version=config.ldap_version,
            auto_bind=auto_bind,
            read_only=True,
        )
    except LDAPException as e:
        raise DirectoryConnectionError(
            f"Could not connect to {config.host_url}: {e}"
        ) from e


@contextlib.contextmanager
def directory_connection(
    config: SyncConfig,
    factory: ConnectionFactory = establish_and_return_ldap_connection,
) -> typing.Iterator[ldap3.Connection]:
    """Provide one bound connection for the duration of a sync pass.

    The connection is unbound on exit, whether or not an error occurred.
    """
    connection = factory(config)
    try:
        yield connection
    finally:
        try:
            connection.unbind()
        except LDAPException as e:
            logger.warning("Could not unbind from LDAP server: %s", e)


def normalise_objectclass(objectclass: str | None) -> str:
    """Turn the configured objectclass into a filter fragment.

    >>> normalise_objectclass('')
    '(objectClass=*)'
    >>> normalise_objectclass('person')
    '(objectClass=person)'
    >>> normalise_objectclass('objectClass=person')
    '(objectClass=person)'
    >>> normalise_objectclass('(|(objectClass=a)(objectClass=b))')
    '(|(objectClass=a)(objectClass=b))'
    """
    objectclass = (objectclass or '').strip()
    if not objectclass:
        return '(objectClass=*)'
    if objectclass.startswith('(') and objectclass.endswith(')'):
        return objectclass
    if '=' in objectclass:
        return f'({objectclass})'
    return f'(objectClass={objectclass})'


def build_search_filter(
    user_attribute: str, objectclass: str | None, since: int | None = None
) -> str:
    """The filter selecting all (or all recently changed) persons.

    :param since: if given, only entries created or modified at or after
        this point in time (epoch seconds) are selected.
    """
    search_filter = f'(&({user_attribute}=*){normalise_objectclass(objectclass)})'
    if since is None:
        return search_filter
    ts = format_ldap_timestamp(since)
    return f'(&{search_filter}(|(createTimestamp>={ts})(modifyTimestamp>={ts})))'


def _extract_cookie(connection: ldap3.Connection) -> bytes | None:
    try:
        return connection.result['controls'][PAGED_RESULTS_OID]['value']['cookie']
    except (KeyError, TypeError):
        return None


def paged_search(
    connection: ldap3.Connection,
    base: DN,
    search_filter: str,
    attributes: typing.Collection[str] | str,
    search_sub: bool = False,
    page_size: int = 250,
    dereference: str = ldap3.DEREF_NEVER,
    strict: bool = False,
) -> typing.Iterator[LdapRecord]:
    """Search ``base``, following the paged results cookie.

    Paging ends when the server returns an empty cookie.  If a page fails
    or the paging control of a full page cannot be read, a warning is
    logged and paging ends with what has been fetched so far.

    :param strict: raise instead, for callers which must not act on a
        partial result
    :raises DirectorySearchError: in strict mode, if the search could not
        be completed
    """
    def incomplete(message: str, *args: typing.Any) -> None:
        if strict:
            raise DirectorySearchError(message % args)
        logger.warning(message, *args)

    cookie: bytes | None = None
    page = 0
    while True:
        page += 1
        try:
            connection.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=ldap3.SUBTREE if search_sub else ldap3.LEVEL,
                dereference_aliases=dereference,
                attributes=attributes,
                paged_size=page_size,
                paged_cookie=cookie,
            )
        except LDAPException as e:
            incomplete("LDAP search in %s failed on page %d: %s", base, page, e)
            return
        if connection.result.get('result') not in (0, None):
            incomplete(
                "LDAP search in %s not successful on page %d.  Result: %s",
                base, page, connection.result,
            )
            return

        entries = [
            typing.cast(LdapRecord, r) for r in connection.response or ()
            if r.get('type') == 'searchResEntry'
        ]
        logger.debug("Page %d of %s: %d entries", page, base, len(entries))
        yield from entries

        if (cookie := _extract_cookie(connection)) is None:
            if len(entries) >= page_size:
                incomplete(
                    "Could not read paging control of %s, stopping after page %d",
                    base, page,
                )
            return
        if not cookie:
            return


def fetch_directory_records(
    connection: ldap3.Connection,
    config: SyncConfig,
    since: int | None = None,
    strict: bool = False,
) -> typing.Iterator[DirectoryRecord]:
    """Yield the normalized records of all (or all recently changed) persons.

    Entries without the principal identifier are skipped.

    :param strict: see :func:`paged_search`
    """
    search_filter = build_search_filter(config.user_attribute, config.objectclass, since)
    attributes = requested_attributes(
        config.field_map, config.user_attribute, config.profile_fields
    )
    for context in config.search_contexts:
        logger.info("Searching %s for %s", context, search_filter)
        found = skipped = 0
        for entry in paged_search(
            connection,
            context,
            search_filter,
            attributes,
            search_sub=config.search_sub,
            page_size=config.page_size,
            dereference=config.opt_deref,
            strict=strict,
        ):
            if (record := ldap_entry_to_record(entry, config)) is None:
                skipped += 1
                continue
            found += 1
            yield record
        logger.info("Found %d entries in %s (%d skipped)", found, context, skipped)


def _fetch_principals(
    connection: ldap3.Connection, config: SyncConfig, search_filter: str
) -> typing.Iterator[str]:
    for context in config.search_contexts:
        for entry in paged_search(
            connection,
            context,
            search_filter,
            [config.user_attribute],
            search_sub=config.search_sub,
            page_size=config.page_size,
            dereference=config.opt_deref,
            strict=True,
        ):
            attrs = normalize_attributes(entry['attributes'], config.encoding)
            if principal := attrs.get(config.user_attribute, '').lower():
                yield principal


def fetch_userlist(
    connection: ldap3.Connection,
    config: SyncConfig,
    cache: UserlistCache | None = None,
) -> list[str]:
    """List the principal identifiers of every person in the directory.

    If a populated ``cache`` is given, it is used instead of the directory.
    Otherwise the result is stored in the cache.

    :raises DirectorySearchError: if the directory could not be searched
        completely.  Nothing is cached then.
    """
    if cache is not None and cache.exists():
        logger.info("Using cached userlist %s", cache.path)
        return cache.load()
    userlist = list(dict.fromkeys(_fetch_principals(
        connection, config, build_search_filter(config.user_attribute, config.objectclass)
    )))
    logger.info("Fetched %d principals from the directory", len(userlist))
    if cache is not None:
        cache.store(userlist)
    return userlist


def user_exists_in_directory(
    connection: ldap3.Connection, config: SyncConfig, username: str
) -> bool:
    """Whether a person with the given principal is still in the directory.

    :raises DirectorySearchError: if the directory could not be searched
    """
    search_filter = (
        f'(&({config.user_attribute}={escape_filter_chars(username)})'
        f'{normalise_objectclass(config.objectclass)})'
    )
    return any(True for _ in _fetch_principals(connection, config, search_filter))


def fake_connection(*contexts: DN) -> ldap3.Connection:
    """An in-memory directory holding just the given (empty) contexts."""
    server = ldap3.Server("mocked")
    connection = ldap3.Connection(server, client_strategy=ldap3.MOCK_SYNC)
    for context in contexts:
        connection.strategy.add_entry(context, {'objectClass': ['organizationalUnit']})
    connection.open()
    return connection
