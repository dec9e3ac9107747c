#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
import os
from typing import cast

import pytest
from sqlalchemy.orm import scoped_session, sessionmaker, Session
from sqlalchemy.pool import StaticPool

import ldapsync.model  # noqa: F401  (registers the provenance table)
from lms.model import create_engine, drop_db_model, create_db_model
from lms.model.session import set_scoped_session, Session as ScopedSession


@pytest.fixture
def engine():
    """A freshly created database.

    In-memory SQLite unless ``LDAPSYNC_TEST_DB_URI`` says otherwise.
    """
    uri = os.environ.get('LDAPSYNC_TEST_DB_URI', 'sqlite://')
    kwargs = {}
    if uri.startswith('sqlite'):
        # one connection, so that everybody sees the same in-memory database
        kwargs = dict(poolclass=StaticPool, connect_args={'check_same_thread': False})
    engine = create_engine(uri, **kwargs)
    with engine.begin() as connection:
        drop_db_model(connection)
        create_db_model(connection)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine) -> Session:
    """Provides a session to a created database.

    The session is also installed as the scoped session the factories use.
    """
    s = scoped_session(sessionmaker(bind=engine))
    set_scoped_session(s)
    session = cast(Session, s())

    yield session

    session.rollback()
    ScopedSession.remove()
