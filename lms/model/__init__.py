#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
    lms.model
    ~~~~~~~~~

    This package contains the host tables the syncer works against and
    basic stuff for db actions.
"""
from . import base
from . import session
from . import user
from . import config

from sqlalchemy import create_engine as sqa_create_engine, event
from sqlalchemy.engine import Engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy emit ``BEGIN`` itself so that ``SAVEPOINT`` works.

    pysqlite's own transaction handling defers ``BEGIN`` and breaks
    nested transactions.
    """

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_engine(connection_string, **kwargs) -> Engine:
    if connection_string.startswith("postgresql"):
        kwargs.setdefault('connect_args', {}).update(
            options="-c TimeZone=UTC",
        )
    engine = sqa_create_engine(connection_string, **kwargs)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    return engine


def create_db_model(bind):
    """Create all models in the database.
    """
    base.ModelBase.metadata.create_all(bind)


def drop_db_model(bind):
    """Drop all models from the database.
    """
    base.ModelBase.metadata.drop_all(bind)
