#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.reconcile
~~~~~~~~~~~~~~~~~~

Merging a pass' directory records into the user table.

The merge runs in phases, each of which completes before the next one
starts:

1. Stage the records (:mod:`ldapsync.staging`)
2. Update the local accounts matching a staged row, field by field
   (see :func:`decide_field` for the rules)
3. Create accounts for the staged rows without a local account
4. Drop the staging table

Local accounts without a staged row are never touched.  Every single
write happens in its own savepoint; if it fails, the error is logged and
the merge carries on with the next one.
"""
from __future__ import annotations

import dataclasses
import enum
import typing

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lms.lib.user import set_user_preference
from lms.model.user import User
from . import logger, provenance
from .concepts.mapping import PREFERRED_FIRSTNAME
from .concepts.record import DirectoryRecord
from .staging import (
    DB_BATCH_LIMIT,
    create_staging_table,
    drop_staging_table,
    stage_records,
    staging_table,
)

if typing.TYPE_CHECKING:
    from .config import SyncConfig

#: The user preference making the user pick a new password on next login
FORCE_PASSWORD_CHANGE = 'auth_forcepasswordchange'

#: local column → staged directory timestamp
TIMESTAMP_COLUMNS: dict[str, str] = {
    'timecreated': 'createtimestamp',
    'timemodified': 'modifytimestamp',
}

_STAGED_PREFIX = 'staged_'


class ReconcileState(enum.Enum):
    EMPTY = enum.auto()
    STAGED = enum.auto()
    UPDATES_APPLIED = enum.auto()
    INSERTS_APPLIED = enum.auto()
    DONE = enum.auto()


class FieldDecision(enum.Enum):
    #: write the new value
    APPLY = enum.auto()
    #: leave this field alone
    SKIP = enum.auto()
    #: leave the whole account alone
    SKIP_ROW = enum.auto()


def decide_field(field: str, local: typing.Any, new: typing.Any) -> FieldDecision:
    """Decide whether the staged value ``new`` may replace ``local``.

    * ``username`` is never written.  If the staged username differs at
      all (e.g. the database matched case-insensitively), the account is
      left alone entirely.
    * ``idnumber`` is only ever filled in, never changed or blanked.
    * ``email`` is never blanked.
    * ``timecreated`` may only be filled in or moved backwards.
    * ``timemodified`` may only be filled in.
    * Everything else is overwritten if it differs.
    """
    match field:
        case 'username':
            return FieldDecision.SKIP if local == new else FieldDecision.SKIP_ROW
        case _ if local == new:
            return FieldDecision.SKIP
        case 'idnumber':
            return FieldDecision.APPLY if new and not local else FieldDecision.SKIP
        case 'email':
            return FieldDecision.APPLY if new else FieldDecision.SKIP
        case 'timecreated':
            return (
                FieldDecision.APPLY if not local or (new and local > new)
                else FieldDecision.SKIP
            )
        case 'timemodified':
            return FieldDecision.APPLY if not local and new else FieldDecision.SKIP
    return FieldDecision.APPLY


@dataclasses.dataclass
class ReconcileResult:
    staged: int = 0
    updated: int = 0
    inserted: int = 0
    skipped: int = 0
    failed: int = 0


def _text(value: typing.Any) -> str:
    return "" if value is None else str(value)


def _local_value(user: User, field: str) -> typing.Any:
    value = getattr(user, field)
    if field in TIMESTAMP_COLUMNS:
        return value or 0
    return _text(value)


class Reconciler:
    """Merge directory records into the user table.

    :param now: the point in time to stamp new accounts and provenance
        rows with (epoch seconds)
    """

    def __init__(
        self,
        session: Session,
        config: SyncConfig,
        now: int,
        batch_size: int = DB_BATCH_LIMIT,
    ) -> None:
        self.session = session
        self.config = config
        self.now = now
        self.batch_size = batch_size
        self.table = staging_table(config)
        self.state = ReconcileState.EMPTY
        self.result = ReconcileResult()

    def run(self, records: typing.Iterable[DirectoryRecord]) -> ReconcileResult:
        """Run all phases.

        :raises StagingError: if staging fails.  No account has been
            touched then.
        """
        create_staging_table(self.session, self.table)
        self.result.staged = stage_records(self.session, self.table, records, self.config)
        self.state = ReconcileState.STAGED
        logger.info("Staged %d directory records", self.result.staged)

        self.update_matches()
        self.state = ReconcileState.UPDATES_APPLIED

        self.insert_new()
        self.state = ReconcileState.INSERTS_APPLIED

        drop_staging_table(self.session, self.table)
        self.state = ReconcileState.DONE
        logger.info(
            "Reconciled: %(updated)d updated, %(inserted)d created,"
            " %(skipped)d skipped, %(failed)d failures",
            dataclasses.asdict(self.result),
        )
        return self.result

    def new_values(self, staged: typing.Mapping[str, typing.Any]) -> dict[str, typing.Any]:
        """The local column values a staged row asks for."""
        mapping = self.config.field_map
        values: dict[str, typing.Any] = {
            field: _text(staged[field])
            for field in mapping if field != PREFERRED_FIRSTNAME
        }
        firstname = _text(staged.get(PREFERRED_FIRSTNAME) or staged.get('firstname'))
        if firstname or 'firstname' in mapping:
            values['firstname'] = firstname
        for column, attribute in TIMESTAMP_COLUMNS.items():
            values[column] = staged[attribute] or 0
        return values

    # Phase B

    def _match_query(self):
        t = self.table
        return (
            select(User, *(c.label(f'{_STAGED_PREFIX}{c.name}') for c in t.c))
            .join(t, and_(t.c.username == User.username, t.c.mnethostid == User.mnethostid))
            .where(User.deleted.is_(False), User.auth == self.config.auth_type)
            .order_by(User.id)
        )

    def update_matches(self) -> None:
        query = self._match_query()
        offset = 0
        while rows := self.session.execute(
            query.offset(offset).limit(self.batch_size)
        ).all():
            for row in rows:
                staged = {
                    c.name: getattr(row, f'{_STAGED_PREFIX}{c.name}') for c in self.table.c
                }
                self.update_user(row[0], staged)
            offset += len(rows)
            logger.info("Processed %d matching accounts", offset)

    def update_user(self, user: User, staged: typing.Mapping[str, typing.Any]) -> None:
        username = staged['username']
        if decide_field('username', user.username, username) is FieldDecision.SKIP_ROW:
            logger.debug("Skipping %s: directory has %s", user.username, username)
            self.result.skipped += 1
            return

        changes = {
            field: value
            for field, value in self.new_values(staged).items()
            if decide_field(field, _local_value(user, field), value) is FieldDecision.APPLY
        }
        changed = False
        for field, value in changes.items():
            if self._write(f"update {field} of {username}", setattr, user, field, value):
                logger.debug("Updated %s of %s", field, username)
                changed = True
        if self._write_profile(user, staged, only_changed=True):
            changed = True
        if changed:
            self.result.updated += 1
            logger.info("Updated user %s", username)

        self._track(staged)

    # Phase C

    def _new_query(self):
        t = self.table
        return (
            select(t)
            .outerjoin(User, and_(User.username == t.c.username,
                                  User.mnethostid == t.c.mnethostid))
            .where(User.id.is_(None))
            .order_by(t.c.username)
            .limit(self.batch_size)
        )

    def insert_new(self) -> None:
        query = self._new_query()
        last_username = ''
        processed = 0
        while rows := self.session.execute(
            query.where(self.table.c.username > last_username)
        ).mappings().all():
            for staged in rows:
                self.insert_user(staged)
            last_username = rows[-1]['username']
            processed += len(rows)
            logger.info("Processed %d new accounts", processed)

    def build_user(self, staged: typing.Mapping[str, typing.Any]) -> User:
        user = User(
            auth=self.config.auth_type,
            confirmed=True,
            mnethostid=self.config.mnet_host_id,
            username=staged['username'],
            trackforums=True,
            lang=self.config.default_lang,
        )
        values = self.new_values(staged)
        for field, value in values.items():
            if field in TIMESTAMP_COLUMNS or (field == 'lang' and not value):
                continue
            setattr(user, field, value)
        user.timecreated = values['timecreated'] or self.now
        user.timemodified = self.now
        return user

    def insert_user(self, staged: typing.Mapping[str, typing.Any]) -> None:
        username = staged['username']
        user = self.build_user(staged)
        try:
            with self.session.begin_nested():
                self.session.add(user)
                self.session.flush()
                if self.config.force_change_password:
                    set_user_preference(self.session, user, FORCE_PASSWORD_CHANGE, '1')
                self._write_profile(user, staged, only_changed=False, savepoint=False)
        except SQLAlchemyError as e:
            logger.error("Could not create user %s: %s", username, e)
            self.result.failed += 1
            return
        self.result.inserted += 1
        logger.info("Created user %s", username)

        self._track(staged)

    # Helpers

    def _write(self, what: str, func: typing.Callable[..., typing.Any], *args) -> bool:
        try:
            with self.session.begin_nested():
                func(*args)
                self.session.flush()
        except SQLAlchemyError as e:
            logger.warning("Could not %s: %s", what, e)
            self.result.failed += 1
            return False
        return True

    def _write_profile(
        self,
        user: User,
        staged: typing.Mapping[str, typing.Any],
        only_changed: bool,
        savepoint: bool = True,
    ) -> bool:
        """Store the custom profile fields as user preferences."""
        changed = False
        for field in self.config.profile_fields:
            if not (value := _text(staged.get(field.column))):
                continue
            pref = user.preferences.get(field.column) if only_changed else None
            if pref is not None and pref.value == value:
                continue
            if not savepoint:
                set_user_preference(self.session, user, field.column, value)
            elif not self._write(f"set {field.column} of {user.username}",
                                 set_user_preference, self.session, user, field.column, value):
                continue
            changed = True
        return changed

    def _track(self, staged: typing.Mapping[str, typing.Any]) -> None:
        """Create or refresh the provenance row of a staged account."""
        cn = staged['username']
        row = provenance.get(self.session, cn)
        if provenance.is_current(
            row, staged['uid'], staged['createtimestamp'], staged['modifytimestamp']
        ):
            return
        self._write(
            f"record provenance of {cn}",
            provenance.upsert,
            self.session,
            cn,
            staged['uid'],
            staged['createtimestamp'],
            staged['modifytimestamp'],
            self.now,
        )


def reconcile(
    session: Session,
    records: typing.Iterable[DirectoryRecord],
    config: SyncConfig,
    now: int,
) -> ReconcileResult:
    """See :class:`Reconciler`"""
    return Reconciler(session, config, now).run(records)
