#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.purge
~~~~~~~~~~~~~~

Getting rid of accounts whose person has left the directory.  This never
happens as part of a sync pass; it has to be invoked explicitly.
"""
from __future__ import annotations

import dataclasses
import typing

from sqlalchemy.orm import Session

from lms.lib.user import delete_user, suspend_user
from lms.model.user import User
from . import logger
from .sources.db import fetch_managed_users

if typing.TYPE_CHECKING:
    from .config import SyncConfig


def delete_never_logged_in(session: Session, user: User) -> bool:
    """Delete ``user`` if they never logged in.

    :returns: whether the user has been deleted
    """
    if user.lastlogin:
        return False
    delete_user(session, user)
    logger.info("Deleted user %s, who never logged in", user.username)
    return True


def find_accounts_missing_from_directory(
    session: Session, config: SyncConfig, userlist: typing.Iterable[str]
) -> list[User]:
    """The managed accounts whose username is not in ``userlist``."""
    present = {u.lower() for u in userlist}
    return [
        user
        for user in fetch_managed_users(session, config.auth_type, config.mnet_host_id)
        if user.username.lower() not in present
    ]


@dataclasses.dataclass
class PurgeResult:
    deleted: list[str] = dataclasses.field(default_factory=list)
    suspended: list[str] = dataclasses.field(default_factory=list)


def purge_accounts(
    session: Session, users: typing.Iterable[User], execute: bool = False
) -> PurgeResult:
    """Delete the accounts which never logged in, suspend the others.

    :param execute: if false, only report what would be done
    """
    result = PurgeResult()
    for user in users:
        if not user.lastlogin:
            if execute:
                delete_never_logged_in(session, user)
            result.deleted.append(user.username)
        elif not user.suspended:
            if execute:
                suspend_user(session, user)
                logger.info("Suspended user %s", user.username)
            result.suspended.append(user.username)
    if not execute:
        logger.info(
            "Dry run: would delete %d and suspend %d accounts",
            len(result.deleted), len(result.suspended),
        )
    return result
