#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.staging
~~~~~~~~~~~~~~~~

The staging table holds one pass' directory records so that they can be
merged into the user table in batches.  Its columns follow the
configured field mapping.
"""
from __future__ import annotations

import typing

from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    insert,
)
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.schema import CreateTable, DropTable
from sqlalchemy.sql.dml import Insert

from . import logger
from .concepts.mapping import TIMESTAMP_ATTRIBUTES
from .concepts.record import DirectoryRecord
from .exc import StagingError

if typing.TYPE_CHECKING:
    from .config import SyncConfig

STAGING_TABLE_NAME = 'ldapsync_extuser'

#: Maximum number of rows per statement or query
DB_BATCH_LIMIT = 1000

UnsignedTimestamp = BigInteger().with_variant(mysql.INTEGER(unsigned=True), "mysql", "mariadb")

_TEXT_COLUMNS = frozenset({'description'})


def staged_fields(config: SyncConfig) -> list[str]:
    """The logical fields with a column in the staging table."""
    return [*config.field_map]


def staging_table(config: SyncConfig, metadata: MetaData | None = None) -> Table:
    """Describe the staging table for the given configuration."""
    columns: list[Column] = [
        Column('username', String(100), primary_key=True),
        Column('mnethostid', Integer, primary_key=True, autoincrement=False),
        Column('uid', String(255)),
    ]
    for field in staged_fields(config):
        type_ = Text if field in _TEXT_COLUMNS else String(255)
        columns.append(Column(field, type_))
    columns.extend(
        Column(ts, UnsignedTimestamp, nullable=False, default=0)
        for ts in TIMESTAMP_ATTRIBUTES
    )
    columns.extend(Column(f.column, Text) for f in config.profile_fields)
    return Table(
        STAGING_TABLE_NAME,
        metadata if metadata is not None else MetaData(),
        *columns,
        prefixes=['TEMPORARY'],
    )


def record_to_row(
    record: DirectoryRecord, config: SyncConfig
) -> dict[str, typing.Any]:
    row: dict[str, typing.Any] = {
        'username': record.username,
        'mnethostid': config.mnet_host_id,
        'uid': record.uid,
        'createtimestamp': record.createtimestamp,
        'modifytimestamp': record.modifytimestamp,
    }
    for field in staged_fields(config):
        row[field] = record.get(field)
    for f in config.profile_fields:
        row[f.column] = record.profile.get(f.shortname)
    return row


def insert_ignore(table: Table, dialect_name: str) -> Insert:
    """An ``INSERT`` which silently skips rows violating the primary key."""
    match dialect_name:
        case 'postgresql':
            return postgresql.insert(table).on_conflict_do_nothing()
        case 'sqlite':
            return sqlite.insert(table).on_conflict_do_nothing()
        case 'mysql' | 'mariadb':
            return insert(table).prefix_with('IGNORE')
    return insert(table)


T = typing.TypeVar('T')


def _batches(items: typing.Iterable[T], size: int) -> typing.Iterator[list[T]]:
    batch: list[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def create_staging_table(session: Session, table: Table) -> None:
    """Drop and recreate the staging table.

    :raises StagingError: if the table cannot be created
    """
    try:
        connection = session.connection()
        connection.execute(DropTable(table, if_exists=True))
        connection.execute(CreateTable(table))
    except SQLAlchemyError as e:
        raise StagingError(f"Could not create staging table {table.name}: {e}") from e


def drop_staging_table(session: Session, table: Table) -> None:
    session.connection().execute(DropTable(table, if_exists=True))


def stage_records(
    session: Session,
    table: Table,
    records: typing.Iterable[DirectoryRecord],
    config: SyncConfig,
    batch_size: int = DB_BATCH_LIMIT,
) -> int:
    """Insert the records into the (freshly created) staging table.

    Of several records with the same username, the first one wins.

    :returns: the number of staged rows
    :raises StagingError: on any database error
    """
    connection = session.connection()
    stmt = insert_ignore(table, connection.dialect.name)
    seen: set[str] = set()

    def unique_rows() -> typing.Iterator[dict[str, typing.Any]]:
        for record in records:
            if not record.username:
                continue
            if record.username in seen:
                logger.debug("Ignoring duplicate directory entry for %s", record.username)
                continue
            seen.add(record.username)
            yield record_to_row(record, config)

    staged = 0
    try:
        for batch in _batches(unique_rows(), batch_size):
            connection.execute(stmt, batch)
            staged += len(batch)
            logger.info("Staged %d records", staged)
    except SQLAlchemyError as e:
        raise StagingError(f"Could not populate staging table: {e}") from e
    return staged
