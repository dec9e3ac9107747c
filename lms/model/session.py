#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
    lms.model.session
    ~~~~~~~~~~~~~~~~~

    This module contains the session stuff for db actions.
"""
import typing as t

from sqlalchemy import orm
from sqlalchemy.orm import scoped_session
from werkzeug.local import LocalProxy


class NullScopedSession:
    def __getattr__(self, item):
        raise AttributeError("Session has not been initialized.")

    def __call__(self, *args, **kwargs):
        raise AttributeError("Session has not been initialized.")

    def remove(self):
        pass


Session: scoped_session[orm.Session] = t.cast(
    scoped_session[orm.Session], LocalProxy(lambda: NullScopedSession())
)
session: orm.Session = t.cast(orm.Session, LocalProxy(lambda: Session()))


def set_scoped_session(scoped_session: scoped_session[orm.Session]) -> None:
    Session.remove()
    object.__setattr__(Session, "_LocalProxy__wrapped", lambda: scoped_session)
    object.__setattr__(Session, "_get_current_object", lambda: scoped_session)
