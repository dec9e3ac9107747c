#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
lms.lib.user
~~~~~~~~~~~~

User lifecycle primitives of the host.
"""
import time

from sqlalchemy.orm import Session

from lms.model.user import User, UserPreference


def set_user_preference(session: Session, user: User, name: str, value: str) -> None:
    """Create or update the preference ``name`` of ``user``."""
    if (pref := user.preferences.get(name)) is None:
        user.preferences[name] = UserPreference(name=name, value=value)
    else:
        pref.value = value
    session.flush()


def delete_user(session: Session, user: User) -> User:
    """Soft-delete a user.

    The row is kept, but the user is flagged as deleted and the
    preferences are dropped.
    """
    user.deleted = True
    user.preferences.clear()
    user.timemodified = int(time.time())
    session.flush()
    return user


def suspend_user(session: Session, user: User) -> User:
    """Prevent a user from logging in without deleting them."""
    user.suspended = True
    user.timemodified = int(time.time())
    session.flush()
    return user
