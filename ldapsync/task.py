"""
ldapsync.task
~~~~~~~~~~~~~

Celery tasks running the import periodically.  Start a worker with beat
using ``celery -A ldapsync.task worker -B``.
"""
import dataclasses
import logging
import os
import sys
import typing as t
from datetime import timedelta

import sentry_sdk
from celery import Celery, Task as CeleryTask
from celery.utils.log import get_task_logger
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from lms.model import create_engine, session
from lms.model.session import set_scoped_session
from .cache import UserlistCache
from .config import get_config
from .importer import Importer
from .sources.ldap import (
    directory_connection,
    establish_and_return_ldap_connection,
    fetch_userlist,
)

if dsn := os.getenv('LDAPSYNC_SENTRY_DSN'):
    logging_integration = LoggingIntegration(
        level=logging.INFO,  # INFO / WARN create breadcrumbs, just as SQL queries
        event_level=logging.ERROR,  # errors and above create breadcrumbs
    )

    sentry_sdk.init(
        dsn=dsn,
        integrations=[CeleryIntegration(), logging_integration],
        traces_sample_rate=1.0,
    )

app = Celery('ldapsync', backend=os.getenv('LDAPSYNC_CELERY_RESULT_BACKEND_URI'),
             broker=os.getenv('LDAPSYNC_CELERY_BROKER_URI'))

logger = get_task_logger(__name__)


class DBTask(CeleryTask):
    """
    Base class for tasks which use the database.
    """

    engine = None

    def run(self, *args: t.Any, **kwargs: t.Any) -> None:
        pass

    def after_return(
        self,
        status: str,
        retval: t.Any,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: t.Any = None,
    ) -> None:
        session.session.close()

    def __init__(self) -> None:
        in_celery = sys.argv and sys.argv[0].endswith("celery") and "worker" in sys.argv
        if not in_celery:
            return
        try:
            connection_string = os.environ["LDAPSYNC_DB_URI"]
        except KeyError:
            raise RuntimeError(
                "Environment variable LDAPSYNC_DB_URI must be "
                "set to an SQLAlchemy connection string."
            ) from None

        self.engine = create_engine(connection_string)
        set_scoped_session(
            t.cast(Session, scoped_session(sessionmaker(bind=self.engine)))
        )


def refresh_userlist_cache(config) -> int | None:
    """Rebuild the userlist cache, if one is configured.

    The cache is only replaced once the directory has been searched
    completely.
    """
    if not config.cache_file:
        return None
    with directory_connection(config, establish_and_return_ldap_connection) as connection:
        userlist = fetch_userlist(connection, config)
    UserlistCache(config.cache_file).store(userlist)
    return len(userlist)


@app.task(base=DBTask)
def import_ldap_users() -> dict[str, int]:
    """Run an incremental import, then refresh the userlist cache."""
    config = get_config()
    result = Importer(
        session.session, config, connection_factory=establish_and_return_ldap_connection
    ).run()
    logger.info("Imported LDAP users: %s", result)
    refresh_userlist_cache(config)
    return dataclasses.asdict(result)


app.conf.update(
    beat_schedule={
        'import-ldap-users': {
            'task': 'ldapsync.task.import_ldap_users',
            'schedule': timedelta(days=1)
        },
    },
    enable_utc=True,
    broker_transport_options={
        "client_properties": {"connection_name": "ldapsync celery worker"},
    },
)
