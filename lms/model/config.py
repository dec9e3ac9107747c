#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
    lms.model.config
    ~~~~~~~~~~~~~~~~

    Generic key/value configuration store, one namespace per plugin.
"""
from sqlalchemy import Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lms.model.base import IntegerIdModel
from lms.model.type_aliases import str100


class ConfigPlugin(IntegerIdModel):
    __table_args__ = (UniqueConstraint("plugin", "name"),)

    plugin: Mapped[str100] = mapped_column(index=True)
    name: Mapped[str100]
    value: Mapped[str | None] = mapped_column(Text)
