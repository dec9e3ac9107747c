#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.provenance
~~~~~~~~~~~~~~~~~~~

Reading and writing :class:`ldapsync.model.Provenance` rows.
"""
import typing

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from . import logger
from .concepts.record import DirectoryRecord
from .model import Provenance


def get(session: Session, cn: str) -> Provenance | None:
    return session.scalars(select(Provenance).filter_by(cn=cn)).one_or_none()


def upsert(
    session: Session,
    cn: str,
    uid: str | None,
    createtimestamp: int,
    modifytimestamp: int,
    now: int,
) -> Provenance:
    """Create the row for ``cn`` or update its timestamps."""
    if (row := get(session, cn)) is None:
        row = Provenance(cn=cn)
        session.add(row)
    row.uid = uid or ""
    row.createtimestamp = createtimestamp
    row.modifytimestamp = modifytimestamp
    row.lastupdated = now
    session.flush()
    return row


def is_current(
    row: Provenance | None, uid: str | None, createtimestamp: int, modifytimestamp: int
) -> bool:
    """Whether ``row`` already holds the given directory values."""
    return row is not None and (
        row.uid == (uid or "")
        and row.createtimestamp == createtimestamp
        and row.modifytimestamp == modifytimestamp
    )


def exists(session: Session, cn: str) -> bool:
    return session.scalar(select(select(Provenance).filter_by(cn=cn).exists())) or False


def count_older_than(session: Session, cutoff: int) -> int:
    return session.scalar(
        select(func.count()).select_from(Provenance).where(Provenance.lastupdated < cutoff)
    ) or 0


def delete_older_than(session: Session, cutoff: int) -> int:
    """Delete rows not touched since ``cutoff``.  Returns their number."""
    result = session.execute(
        delete(Provenance)
        .where(Provenance.lastupdated < cutoff)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount


def refresh_provenance(
    session: Session, records: typing.Iterable[DirectoryRecord], now: int
) -> tuple[int, int]:
    """Rebuild the table from a full directory scan.

    Every row seen in ``records`` is stamped with ``now``, all others are
    deleted afterwards.  ``records`` must therefore stem from a complete
    scan; if iterating them raises, nothing is deleted.

    :returns: the number of touched and of deleted rows
    """
    touched = 0
    for record in records:
        upsert(
            session,
            cn=record.username,
            uid=record.uid,
            createtimestamp=record.createtimestamp,
            modifytimestamp=record.modifytimestamp,
            now=now,
        )
        touched += 1
    deleted = delete_older_than(session, now)
    logger.info("Refreshed %d provenance rows, deleted %d stale ones", touched, deleted)
    return touched, deleted
