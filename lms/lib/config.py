#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
lms.lib.config
~~~~~~~~~~~~~~

Access to the plugin key/value configuration store.
"""
from sqlalchemy import select
from sqlalchemy.orm import Session

from lms.model.config import ConfigPlugin


def _get_entry(session: Session, plugin: str, name: str) -> ConfigPlugin | None:
    return session.scalars(
        select(ConfigPlugin).filter_by(plugin=plugin, name=name)
    ).one_or_none()


def get_config(
    session: Session, plugin: str, name: str, default: str | None = None
) -> str | None:
    """Return the stored value of ``name`` in the ``plugin`` namespace.

    :param default: returned if nothing has been stored yet.
    """
    if (entry := _get_entry(session, plugin, name)) is None:
        return default
    return entry.value


def set_config(session: Session, plugin: str, name: str, value: str | None) -> None:
    """Store ``value`` under ``name``; ``None`` removes the entry."""
    entry = _get_entry(session, plugin, name)
    if value is None:
        if entry is not None:
            session.delete(entry)
        return
    if entry is None:
        session.add(ConfigPlugin(plugin=plugin, name=name, value=value))
    else:
        entry.value = value
    session.flush()
