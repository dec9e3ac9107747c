#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import datetime
import typing
from typing import Union

AttributeValues = Union[
    str, bytes, int, datetime.datetime,
    typing.Collection[str], typing.Collection[bytes], typing.Collection[int],
    None
]
Attributes = dict[str, AttributeValues]

#: An LDAP Distinguished Name
DN = typing.NewType('DN', str)

#: Seconds since the epoch.  ``0`` stands for “unknown”.
Timestamp = typing.NewType('Timestamp', int)


# an ldap record, as represented by the `ldap3` response dict.
# see https://ldap3.readthedocs.io/en/latest/connection.html#responses
class LdapRecord(typing.TypedDict):
    dn: DN
    attributes: Attributes
    raw_attributes: dict[str, list[bytes]]
