#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import typing

from ldapsync.concepts.record import DirectoryRecord
from ldapsync.concepts.types import DN, LdapRecord
from ldapsync.sources.ldap import PAGED_RESULTS_OID

BASE_DN = DN('ou=people,dc=example,dc=org')


def make_entry(uid: str, base: DN = BASE_DN, **attributes) -> LdapRecord:
    """An entry as found in an ``ldap3`` search response."""
    attributes = {'uid': [uid], **{k: v if isinstance(v, list) else [v]
                                   for k, v in attributes.items()}}
    return typing.cast(LdapRecord, {
        'type': 'searchResEntry',
        'dn': f'uid={uid},{base}',
        'attributes': attributes,
        'raw_attributes': {k: [str(x).encode() for x in v] for k, v in attributes.items()},
    })


def make_record(username: str, **fields) -> DirectoryRecord:
    return DirectoryRecord(username=username, **fields)


class PagedConnection:
    """Stands in for an :class:`ldap3.Connection` serving fixed pages.

    :param pages: the entries of each page
    :param controls: whether responses carry the paged results control
    :param fail_on_page: answer this page (1-based) with an error
    """

    def __init__(
        self,
        pages: list[list[LdapRecord]],
        controls: bool = True,
        fail_on_page: int | None = None,
    ) -> None:
        self.pages = pages
        self.controls = controls
        self.fail_on_page = fail_on_page
        self.calls: list[dict] = []
        self.result: dict = {}
        self.response: list = []
        self.unbound = False

    def search(self, search_base, search_filter, search_scope=None,
               dereference_aliases=None, attributes=None, paged_size=None,
               paged_cookie=None, **kwargs) -> bool:
        self.calls.append(dict(
            search_base=search_base,
            search_filter=search_filter,
            search_scope=search_scope,
            attributes=attributes,
            paged_size=paged_size,
            paged_cookie=paged_cookie,
        ))
        index = int(paged_cookie) if paged_cookie else 0
        if self.fail_on_page == index + 1:
            self.result = {'result': 1, 'description': 'operationsError'}
            self.response = []
            return False
        page = self.pages[index] if index < len(self.pages) else []
        self.response = list(page)
        self.result = {'result': 0, 'description': 'success'}
        if self.controls:
            cookie = str(index + 1).encode() if index + 1 < len(self.pages) else b''
            self.result['controls'] = {PAGED_RESULTS_OID: {'value': {'size': 0, 'cookie': cookie}}}
        return bool(page)

    def unbind(self) -> bool:
        self.unbound = True
        return True


def add_person(connection, uid: str, **attributes) -> None:
    """Add a person below :data:`BASE_DN` of a ``MOCK_SYNC`` connection."""
    connection.strategy.add_entry(
        f'uid={uid},{BASE_DN}',
        {'objectClass': ['top', 'person'], 'uid': [uid], **attributes},
    )
