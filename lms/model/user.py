#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
    lms.model.user
    ~~~~~~~~~~~~~~

    This module contains the host's user account table and the
    per-user preferences.
"""
from __future__ import annotations

import typing as t

from sqlalchemy import ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.orm.collections import attribute_keyed_dict

from lms.model.base import IntegerIdModel
from .type_aliases import str100, str255, timestamp

#: the column names of :class:`User` which an authentication backend may
#: keep in sync with an external source.
AUTH_SYNC_FIELDS: tuple[str, ...] = (
    "firstname",
    "lastname",
    "email",
    "city",
    "country",
    "lang",
    "description",
    "url",
    "idnumber",
    "institution",
    "department",
    "phone1",
    "phone2",
    "address",
    "firstnamephonetic",
    "lastnamephonetic",
    "middlename",
    "alternatename",
)

str_empty = t.Annotated[str, mapped_column(default="", server_default="")]
str100_empty = t.Annotated[str100, mapped_column(default="", server_default="")]
str255_empty = t.Annotated[str255, mapped_column(default="", server_default="")]
flag = t.Annotated[bool, mapped_column(default=False, server_default="0")]


class User(IntegerIdModel):
    __table_args__ = (UniqueConstraint("mnethostid", "username"),)

    auth: Mapped[str100] = mapped_column(default="manual", index=True)
    confirmed: Mapped[flag]
    deleted: Mapped[flag]
    suspended: Mapped[flag]
    mnethostid: Mapped[int] = mapped_column(default=1, index=True)
    username: Mapped[str100]
    idnumber: Mapped[str255_empty]
    firstname: Mapped[str100_empty]
    lastname: Mapped[str100_empty]
    middlename: Mapped[str255_empty]
    alternatename: Mapped[str255_empty]
    firstnamephonetic: Mapped[str255_empty]
    lastnamephonetic: Mapped[str255_empty]
    email: Mapped[str100_empty]
    phone1: Mapped[str255_empty]
    phone2: Mapped[str255_empty]
    institution: Mapped[str255_empty]
    department: Mapped[str255_empty]
    address: Mapped[str255_empty]
    city: Mapped[str255_empty]
    country: Mapped[str255_empty]
    lang: Mapped[str255] = mapped_column(default="en", server_default="en")
    url: Mapped[str255_empty]
    description: Mapped[str | None] = mapped_column(Text)
    trackforums: Mapped[flag]
    lastlogin: Mapped[timestamp]
    timecreated: Mapped[timestamp]
    timemodified: Mapped[timestamp]

    preferences: Mapped[dict[str, UserPreference]] = relationship(
        back_populates="user",
        collection_class=attribute_keyed_dict("name"),
        cascade="all, delete-orphan",
    )

    @property
    def fullname(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()


class UserPreference(IntegerIdModel):
    __table_args__ = (UniqueConstraint("user_id", "name"),)

    user_id: Mapped[int] = mapped_column(
        ForeignKey(User.id, ondelete="CASCADE"), index=True
    )
    user: Mapped[User] = relationship(back_populates="preferences")
    name: Mapped[str255]
    value: Mapped[str_empty]
