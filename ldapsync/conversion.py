#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.conversion
~~~~~~~~~~~~~~~~~~~
Converts directory search results to :class:`DirectoryRecord` instances.
"""
from __future__ import annotations

import re
import typing
from datetime import datetime, timezone, timedelta

from . import logger
from .concepts.mapping import (
    CREATE_TIMESTAMP,
    EMAIL_FIELDS,
    MODIFY_TIMESTAMP,
    NAME_FIELDS,
    FieldMapping,
    ProfileField,
)
from .concepts.record import DirectoryRecord
from .concepts.types import Attributes, AttributeValues, LdapRecord, Timestamp

if typing.TYPE_CHECKING:
    from .config import SyncConfig

LDAP_TIME_FORMAT = '%Y%m%d%H%M%SZ'

_GENERALIZED_TIME = re.compile(
    r'^(?P<time>\d{14})(?:[.,]\d+)?(?P<tz>Z|[+-]\d{4})?$'
)
_EMAIL_SEPARATORS = re.compile(r'[,; ]+')


def format_ldap_timestamp(ts: int) -> str:
    """Format epoch seconds as LDAP generalized time (UTC)."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime(LDAP_TIME_FORMAT)


def parse_ldap_timestamp(value: AttributeValues) -> Timestamp:
    """Parse a generalized time value to epoch seconds.

    Missing or unparsable values yield ``0``.

    >>> parse_ldap_timestamp("20240102030405Z")
    1704164645
    >>> parse_ldap_timestamp("yesterday")
    0
    """
    value = first_value(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return Timestamp(int(value.timestamp()))
    if not isinstance(value, str) or not (match := _GENERALIZED_TIME.match(value.strip())):
        return Timestamp(0)
    try:
        parsed = datetime.strptime(match['time'], '%Y%m%d%H%M%S')
    except ValueError:
        return Timestamp(0)
    tz = timezone.utc
    if (offset := match['tz']) and offset != 'Z':
        sign = -1 if offset[0] == '-' else 1
        tz = timezone(sign * timedelta(hours=int(offset[1:3]), minutes=int(offset[3:5])))
    return Timestamp(int(parsed.replace(tzinfo=tz).timestamp()))


def first_value(value: AttributeValues) -> typing.Any:
    """Collapse a (possibly multi-valued) attribute to its first value."""
    if isinstance(value, (str, bytes, int, datetime)) or value is None:
        return value
    for v in value:
        return v
    return None


def to_text(value: typing.Any, encoding: str = 'utf-8') -> str:
    if value is None:
        return ''
    if isinstance(value, bytes):
        value = value.decode(encoding, errors='replace')
    return str(value).strip()


def normalize_attributes(attrs: Attributes, encoding: str = 'utf-8') -> dict[str, str]:
    """Lower-case keys and collapse every attribute to a single string.

    ``uid`` is lower-cased as well.
    """
    normalized = {
        key.lower(): to_text(first_value(value), encoding)
        for key, value in attrs.items()
    }
    if 'uid' in normalized:
        normalized['uid'] = normalized['uid'].lower()
    return normalized


def first_email(value: str) -> str:
    """Keep the first of several addresses.

    >>> first_email("a@example.org; b@example.org")
    'a@example.org'
    """
    for token in _EMAIL_SEPARATORS.split(value.strip()):
        if token:
            return token
    return ''


def sanitize_name(value: str, optional: bool) -> str:
    """Repair a name containing the replacement character ``?``.

    Mandatory names get the ``?`` stripped, optional ones are dropped.
    """
    if '?' not in value:
        return value
    return '' if optional else value.replace('?', '')


def _pick(attrs: dict[str, str], candidates: typing.Iterable[str]) -> str | None:
    for attribute in candidates:
        if value := attrs.get(attribute):
            return value
    return None


def _sanitize(attrs: dict[str, str], mapping: FieldMapping) -> dict[str, str]:
    attrs = dict(attrs)
    for attribute in mapping.attributes_of(NAME_FIELDS):
        if attribute in attrs:
            attrs[attribute] = sanitize_name(
                attrs[attribute], optional=mapping.is_optional_name_attribute(attribute)
            )
    for attribute in mapping.attributes_of(EMAIL_FIELDS):
        if attribute in attrs:
            attrs[attribute] = first_email(attrs[attribute])
    return attrs


def attributes_to_record(
    attrs: Attributes,
    user_attribute: str,
    mapping: FieldMapping,
    profile_fields: typing.Iterable[ProfileField] = (),
    encoding: str = 'utf-8',
    dn: str | None = None,
) -> DirectoryRecord | None:
    """Build a record from the attributes of a directory entry.

    :returns: ``None`` if the entry lacks the principal identifier.
    """
    attrs_lower = {key.lower(): value for key, value in attrs.items()}
    normalized = _sanitize(normalize_attributes(attrs, encoding), mapping)

    if not (username := normalized.get(user_attribute.lower(), '').lower()):
        logger.debug("Skipping %s: no %s", dn or "entry", user_attribute)
        return None

    fields = {field: _pick(normalized, candidates) for field, candidates in mapping.items()}
    return DirectoryRecord(
        username=username,
        dn=dn,
        uid=normalized.get('uid') or None,
        createtimestamp=parse_ldap_timestamp(attrs_lower.get(CREATE_TIMESTAMP)),
        modifytimestamp=parse_ldap_timestamp(attrs_lower.get(MODIFY_TIMESTAMP)),
        profile={f.shortname: _pick(normalized, f.attributes) for f in profile_fields},
        **fields,
    )


def ldap_entry_to_record(record: LdapRecord, config: SyncConfig) -> DirectoryRecord | None:
    return attributes_to_record(
        record['attributes'],
        user_attribute=config.user_attribute,
        mapping=config.field_map,
        profile_fields=config.profile_fields,
        encoding=config.encoding,
        dn=record['dn'],
    )
