#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.exc
~~~~~~~~~~~~

Errors which abort a whole sync pass.  Failures concerning a single
account are logged and never raised.
"""


class LdapSyncException(Exception):
    pass


class DirectoryConnectionError(LdapSyncException):
    """The directory could not be reached or the bind failed."""


class StagingError(LdapSyncException):
    """The staging table could not be created or populated."""


class SyncAlreadyRunning(LdapSyncException):
    def __init__(self, name: str) -> None:
        super().__init__(f"Another sync pass ({name}) holds the lock")
        self.name = name


class DirectorySearchError(LdapSyncException):
    """A search could not be completed, so its result is partial."""
