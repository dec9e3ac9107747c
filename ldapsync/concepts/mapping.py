#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.concepts.mapping
~~~~~~~~~~~~~~~~~~~~~~~~~

Which directory attributes feed which field of a local account.

A :class:`FieldMapping` maps a logical field name (a column of
:class:`lms.model.user.User`, or ``preferred_firstname``) to an ordered
tuple of candidate directory attributes.  The first candidate carrying a
non-blank value wins.
"""
from __future__ import annotations

import typing
from collections.abc import Iterable, Mapping

from lms.model.user import AUTH_SYNC_FIELDS

#: A virtual field.  It is never persisted, but overrides ``firstname``
#: whenever it is non-blank.
PREFERRED_FIRSTNAME = 'preferred_firstname'

#: All logical fields a mapping may name, in processing order.
USER_FIELDS: tuple[str, ...] = (*AUTH_SYNC_FIELDS, PREFERRED_FIRSTNAME)

#: Logical fields holding (parts of) a person's name
NAME_FIELDS = frozenset({
    'firstname', 'lastname', 'middlename', 'alternatename', PREFERRED_FIRSTNAME,
})
EMAIL_FIELDS = frozenset({'email'})

DEFAULT_FIELD_MAP: dict[str, str] = {
    'firstname': 'givenName',
    'lastname': 'sn',
    'email': 'mail',
    'idnumber': 'employeeNumber',
    'alternatename': 'displayName',
    'middlename': 'initials',
}

CREATE_TIMESTAMP = 'createtimestamp'
MODIFY_TIMESTAMP = 'modifytimestamp'
TIMESTAMP_ATTRIBUTES = (CREATE_TIMESTAMP, MODIFY_TIMESTAMP)


def parse_candidates(value: str | None) -> tuple[str, ...]:
    """Split a comma separated attribute list into lower-cased names.

    >>> parse_candidates("ucsfEduPreferredGivenName, givenName,")
    ('ucsfedupreferredgivenname', 'givenname')
    """
    if not value:
        return ()
    return tuple(dict.fromkeys(
        name.strip().lower() for name in value.split(',') if name.strip()
    ))


class FieldMapping(Mapping[str, tuple[str, ...]]):
    """Ordered, read-only mapping ``logical field → candidate attributes``.

    Fields without candidates are not part of the mapping.
    """

    def __init__(self, fields: Mapping[str, Iterable[str]]) -> None:
        unknown = set(fields) - set(USER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown fields in mapping: {', '.join(sorted(unknown))}")
        self._fields: dict[str, tuple[str, ...]] = {
            field: tuple(a.lower() for a in fields[field])
            for field in USER_FIELDS
            if fields.get(field)
        }

    @classmethod
    def from_strings(cls, fields: Mapping[str, str | None]) -> FieldMapping:
        """Build a mapping from ``{'firstname': 'givenName,cn', …}``."""
        return cls({field: parse_candidates(value) for field, value in fields.items()})

    def __getitem__(self, field: str) -> tuple[str, ...]:
        return self._fields[field]

    def __iter__(self) -> typing.Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._fields!r})"

    @property
    def attributes(self) -> tuple[str, ...]:
        """All candidate attributes, de-duplicated, in mapping order."""
        return tuple(dict.fromkeys(a for attrs in self._fields.values() for a in attrs))

    def is_optional_name_attribute(self, attribute: str) -> bool:
        """Whether a corrupted value of ``attribute`` should be dropped
        rather than repaired.

        This is the case for “preferred” variants, i.e. attributes with
        ``preferred`` in their name or attributes only consulted for
        :data:`PREFERRED_FIRSTNAME`.
        """
        if 'preferred' in attribute:
            return True
        return not any(
            attribute in attrs
            for field, attrs in self._fields.items()
            if field != PREFERRED_FIRSTNAME
        )

    def attributes_of(self, fields: typing.Collection[str]) -> frozenset[str]:
        return frozenset(a for field in fields for a in self._fields.get(field, ()))


class ProfileField(typing.NamedTuple):
    """A custom profile field filled from the directory."""
    shortname: str
    attributes: tuple[str, ...]

    @property
    def column(self) -> str:
        return f'profile_field_{self.shortname}'


def parse_profile_fields(value: str | None) -> tuple[ProfileField, ...]:
    """Parse ``"shortname=attr1,attr2;other=attr3"``."""
    if not value:
        return ()
    fields = []
    for spec in value.split(';'):
        if not spec.strip():
            continue
        shortname, sep, candidates = spec.partition('=')
        if not sep or not shortname.strip():
            raise ValueError(f"Invalid profile field specification {spec!r}")
        fields.append(ProfileField(shortname.strip().lower(), parse_candidates(candidates)))
    return tuple(fields)


def requested_attributes(
    mapping: FieldMapping,
    user_attribute: str,
    profile_fields: Iterable[ProfileField] = (),
) -> list[str]:
    """The attributes to request from the directory.

    Mapping candidates, the identifier attribute, the create/modify
    timestamps and ``uid``; de-duplicated with their order preserved.
    """
    return list(dict.fromkeys([
        *mapping.attributes,
        *(a for f in profile_fields for a in f.attributes),
        user_attribute.lower(),
        *TIMESTAMP_ATTRIBUTES,
        'uid',
    ]))
