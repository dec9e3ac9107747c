"""
ldapsync.concepts.record
~~~~~~~~~~~~~~~~~~~~~~~~
"""
#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details

from __future__ import annotations

import dataclasses
import typing

from .mapping import USER_FIELDS
from .types import DN, Timestamp


@dataclasses.dataclass(frozen=True)
class DirectoryRecord:
    """A person as found in the directory, normalized.

    Every logical field is a plain string or ``None`` if the directory did
    not provide a (non-blank) value.  Records only live for one sync pass.

    :param username: The value of the principal identifier attribute.
        Always non-blank and lower-cased.
    :param profile: Values of the custom profile fields by shortname.
    """

    username: str
    dn: DN | None = None
    uid: str | None = None
    firstname: str | None = None
    preferred_firstname: str | None = None
    lastname: str | None = None
    middlename: str | None = None
    alternatename: str | None = None
    firstnamephonetic: str | None = None
    lastnamephonetic: str | None = None
    email: str | None = None
    idnumber: str | None = None
    city: str | None = None
    country: str | None = None
    lang: str | None = None
    institution: str | None = None
    department: str | None = None
    phone1: str | None = None
    phone2: str | None = None
    address: str | None = None
    description: str | None = None
    url: str | None = None
    createtimestamp: Timestamp = Timestamp(0)
    modifytimestamp: Timestamp = Timestamp(0)
    profile: typing.Mapping[str, str | None] = dataclasses.field(
        default_factory=dict, hash=False, compare=True
    )

    def __post_init__(self) -> None:
        if not self.username:
            raise ValueError("A DirectoryRecord needs a username")

    @property
    def resolved_firstname(self) -> str | None:
        """The preferred first name if there is one, else the first name."""
        return self.preferred_firstname or self.firstname

    def get(self, field: str) -> str | None:
        """Return the value of a logical field."""
        if field not in USER_FIELDS:
            raise KeyError(field)
        return getattr(self, field)
