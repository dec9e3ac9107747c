#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.sources.db
~~~~~~~~~~~~~~~~~~~

This module is responsible for the database side: the session and the
local accounts the syncer manages.
"""
import typing

from sqlalchemy import select
from sqlalchemy.orm import scoped_session, sessionmaker, Session

from lms.model import create_engine
from lms.model.session import set_scoped_session, session as global_session
from lms.model.user import User


def establish_and_return_session(connection_string: str) -> Session:
    engine = create_engine(connection_string)
    set_scoped_session(typing.cast(Session, scoped_session(sessionmaker(bind=engine))))
    return typing.cast(Session, global_session)  # from lms.model.session


def fetch_managed_users(
    session: Session, auth_type: str, mnet_host_id: int
) -> typing.Sequence[User]:
    """The not deleted accounts authenticated by ``auth_type``."""
    return session.scalars(
        select(User)
        .where(
            User.auth == auth_type,
            User.mnethostid == mnet_host_id,
            User.deleted.is_(False),
        )
        .order_by(User.username)
    ).all()
