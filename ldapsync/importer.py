#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.importer
~~~~~~~~~~~~~~~~~

The entry point of a sync pass.  See :meth:`Importer.run`.
"""
from __future__ import annotations

import contextlib
import time
import typing
import zlib
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lms.lib.config import get_config as get_plugin_config, set_config as set_plugin_config
from . import logger
from .config import SyncConfig
from .exc import SyncAlreadyRunning
from .reconcile import ReconcileResult, Reconciler
from .sources.ldap import (
    ConnectionFactory,
    directory_connection,
    establish_and_return_ldap_connection,
    fetch_directory_records,
)

PLUGIN_NAME = 'tool_ldapsync'
WATERMARK_KEY = 'last_synced_on'
LOCK_NAME = 'ldapsync.import_ldap_users'


def load_watermark(session: Session) -> int | None:
    """The start of the last successful pass, if any."""
    if not (value := get_plugin_config(session, PLUGIN_NAME, WATERMARK_KEY)):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring unparsable %s %r, doing a full sync", WATERMARK_KEY, value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def store_watermark(session: Session, ts: int) -> None:
    set_plugin_config(
        session, PLUGIN_NAME, WATERMARK_KEY,
        datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(),
    )


@contextlib.contextmanager
def sync_lock(session: Session, name: str = LOCK_NAME) -> typing.Iterator[None]:
    """Prevent two sync passes from running at the same time.

    On PostgreSQL, this takes an advisory lock on a dedicated connection.
    Other databases are not guarded.

    :raises SyncAlreadyRunning: if the lock is held elsewhere
    """
    engine = session.get_bind().engine
    if engine.dialect.name != 'postgresql':
        yield
        return
    key = zlib.crc32(name.encode())
    with engine.connect() as connection:
        if not connection.scalar(select(func.pg_try_advisory_lock(key))):
            raise SyncAlreadyRunning(name)
        try:
            yield
        finally:
            connection.scalar(select(func.pg_advisory_unlock(key)))
            connection.commit()


class Importer:
    """Import the persons of the directory into the user table.

    :param since: only consider entries created or modified since then
        (epoch seconds).  Defaults to the start of the last successful
        pass, or a full scan if there was none.
    :param connection_factory: how to obtain the directory connection
    :param clock: returns the current time in epoch seconds
    """

    def __init__(
        self,
        session: Session,
        config: SyncConfig,
        since: int | None = None,
        connection_factory: ConnectionFactory = establish_and_return_ldap_connection,
        clock: typing.Callable[[], float] = time.time,
    ) -> None:
        self.session = session
        self.config = config
        self.since = since if since is not None else load_watermark(session)
        self.connection_factory = connection_factory
        self.clock = clock

    def run(self) -> ReconcileResult:
        """Run one sync pass.

        The new watermark is committed together with the changed accounts.
        If the directory cannot be queried or the records cannot be staged,
        everything is rolled back and the watermark stays where it was.
        """
        with sync_lock(self.session):
            started = int(self.clock())
            if self.since is None:
                logger.info("Starting full sync")
            else:
                logger.info(
                    "Starting sync of changes since %s",
                    datetime.fromtimestamp(self.since, tz=timezone.utc).isoformat(),
                )
            try:
                with directory_connection(self.config, self.connection_factory) as connection:
                    records = list(fetch_directory_records(
                        connection, self.config, since=self.since
                    ))
                logger.info("Found %d directory records", len(records))
                result = Reconciler(self.session, self.config, now=started).run(records)
                store_watermark(self.session, started)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
            self.since = started
            return result
