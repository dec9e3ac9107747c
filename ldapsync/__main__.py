"""
ldapsync.__main__
~~~~~~~~~~~~~~~~~
"""
import argparse
import logging
import time
from datetime import datetime, timezone

import ldap3
from sqlalchemy.orm import Session

from lms.model import create_db_model
from . import logger
from .cache import UserlistCache
from .config import SyncConfig, get_config_or_exit
from .exc import LdapSyncException
from .importer import Importer
from .provenance import refresh_provenance
from .purge import find_accounts_missing_from_directory, purge_accounts
from .sources.db import establish_and_return_session
from .sources.ldap import (
    ConnectionFactory,
    directory_connection,
    establish_and_return_ldap_connection,
    fake_connection,
    fetch_directory_records,
    fetch_userlist,
)


def _parse_since(value: str) -> int:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def _fake_factory(config: SyncConfig) -> ldap3.Connection:
    return fake_connection(*config.search_contexts)


def _setup(args: argparse.Namespace) -> tuple[SyncConfig, Session, ConnectionFactory]:
    if args.fake:
        logger.info("Using a mocked LDAP backend. See --help for other options.")
        config = get_config_or_exit(host_url='mocked', contexts='ou=people,dc=example,dc=org',
                                    user_attribute='uid')
        factory: ConnectionFactory = _fake_factory
    else:
        config = get_config_or_exit()
        factory = establish_and_return_ldap_connection
    session = establish_and_return_session(config.db_uri)
    # also creates the provenance table, which `ldapsync.model` registers
    create_db_model(session.get_bind())
    return config, session, factory


def sync(args: argparse.Namespace) -> None:
    logger.info("Starting the LDAP import. See --help for other options.")
    config, session, factory = _setup(args)
    importer = Importer(session, config, since=args.since, connection_factory=factory)
    if args.full:
        importer.since = None
    importer.run()


def prefetch(args: argparse.Namespace) -> None:
    config, _, factory = _setup(args)
    if not config.cache_file:
        raise LdapSyncException("LDAPSYNC_CACHE_FILE is not set")
    with directory_connection(config, factory) as connection:
        userlist = fetch_userlist(connection, config)
    UserlistCache(config.cache_file).store(userlist)


def refresh(args: argparse.Namespace) -> None:
    config, session, factory = _setup(args)
    now = int(time.time())
    with directory_connection(config, factory) as connection:
        refresh_provenance(
            session, fetch_directory_records(connection, config, strict=True), now
        )
    session.commit()


def purge(args: argparse.Namespace) -> None:
    config, session, factory = _setup(args)
    cache = UserlistCache(config.cache_file) if config.cache_file else None
    with directory_connection(config, factory) as connection:
        userlist = fetch_userlist(connection, config, cache=cache)
    if not userlist:
        raise LdapSyncException("The directory returned no users, refusing to purge")
    missing = find_accounts_missing_from_directory(session, config, userlist)
    logger.info("%d accounts are missing from the directory", len(missing))
    result = purge_accounts(session, missing, execute=args.execute)
    for username in result.deleted:
        logger.info("delete %s", username)
    for username in result.suspended:
        logger.info("suspend %s", username)
    session.commit()


NAME_LEVEL_MAPPING: dict[str, int] = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL,
}


parser = argparse.ArgumentParser(description="LDAP to LMS user importer")
parser.add_argument('--fake', dest='fake', action='store_true', default=False,
                    help="Use a mocked LDAP backend")
parser.add_argument("-l", "--log", dest='loglevel', type=str,
                    choices=list(NAME_LEVEL_MAPPING.keys()), default='info',
                    help="Set the loglevel")
parser.add_argument("-d", "--debug", dest='loglevel', action='store_const',
                    const='debug', help="Short for --log=debug")
parser.set_defaults(func=sync, since=None, full=False)
subparsers = parser.add_subparsers(title="commands")

sync_parser = subparsers.add_parser('sync', help="Import new and changed users (default)")
sync_parser.add_argument('--since', type=_parse_since, default=None,
                         help="Import changes since this ISO-8601 timestamp")
sync_parser.add_argument('--full', action='store_true', default=False,
                         help="Ignore the last sync time and import everybody")
sync_parser.set_defaults(func=sync)

prefetch_parser = subparsers.add_parser(
    'prefetch', help="Write the list of directory users to LDAPSYNC_CACHE_FILE"
)
prefetch_parser.set_defaults(func=prefetch)

refresh_parser = subparsers.add_parser(
    'refresh-provenance', help="Rebuild the provenance table from a full directory scan"
)
refresh_parser.set_defaults(func=refresh)

purge_parser = subparsers.add_parser(
    'purge', help="Delete or suspend accounts which left the directory"
)
purge_parser.add_argument('--execute', action='store_true', default=False,
                          help="Actually purge instead of a dry run")
purge_parser.set_defaults(func=purge)


def main(argv: list[str] | None = None) -> int:
    args = parser.parse_args(argv)

    add_stdout_logging(logger, level=NAME_LEVEL_MAPPING[args.loglevel])

    try:
        args.func(args)
    except LdapSyncException as e:
        logger.critical("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.fatal("SIGINT received, stopping.")
        logger.info("Re-run the syncer to retain a consistent state.")
        return 1
    return 0


def add_stdout_logging(logger: logging.Logger, level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    fmt = logging.Formatter("%(levelname)s %(asctime)s %(name)s %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    logger.setLevel(level)


if __name__ == '__main__':
    exit(main())
