#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
    lms.model.base
    ~~~~~~~~~~~~~~

    This module contains base stuff for all models.
"""
import re
import typing as t

from sqlalchemy import String
from sqlalchemy.orm import (
    declared_attr,
    DeclarativeBase,
    Mapped,
    mapped_column,
)

from lms.model.type_aliases import str100, str255


class ModelBase(DeclarativeBase):
    """Base class for all database models."""

    type_annotation_map = {
        str100: String(100),
        str255: String(255),
    }

    @declared_attr.directive
    def __tablename__(cls) -> str:
        """Autogenerate the tablename for the mapped objects."""
        return cls._to_snake_case(cls.__name__)

    @staticmethod
    def _to_snake_case(name: str) -> str:
        name = re.sub(r"([A-Z]+)([A-Z][a-z])", r'\1_\2', name)
        name = re.sub(r"([a-z\d])([A-Z])", r'\1_\2', name)
        return name.lower()

    def __repr__(self) -> str:
        return "{}({})".format(
            self.__class__.__name__,
            ", ".join(f"{key}={getattr(self, key, '<unknown>')!r}"
                      for key in self.__mapper__.columns.keys())
        )

    if t.TYPE_CHECKING:
        __table__: t.Any


class IntegerIdModel(ModelBase):
    """
    Abstract base class for database models with an Integer primary column,
    named ``id``.
    """

    __abstract__ = True

    id: Mapped[int] = mapped_column(primary_key=True)
