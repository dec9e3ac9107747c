#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.model
~~~~~~~~~~~~~~

The tables owned by the syncer.  They live in the host's metadata, so
:func:`lms.model.create_db_model` creates them once this module has been
imported.
"""
from sqlalchemy.orm import Mapped, mapped_column

from lms.model.base import IntegerIdModel
from lms.model.type_aliases import str100, str255, timestamp


class Provenance(IntegerIdModel):
    """Where a local account came from.

    One row per synced directory identity, keyed by the account's
    username (``cn``).
    """
    __tablename__ = 'tool_ldapsync'

    uid: Mapped[str255] = mapped_column(default="", server_default="")
    cn: Mapped[str100] = mapped_column(unique=True)
    createtimestamp: Mapped[timestamp]
    modifytimestamp: Mapped[timestamp]
    lastupdated: Mapped[timestamp]
