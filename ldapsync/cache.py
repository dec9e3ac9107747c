#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
ldapsync.cache
~~~~~~~~~~~~~~

A JSON file holding the principal identifiers of the whole directory.
It never expires; it has to be invalidated explicitly.
"""
import json
import os
from pathlib import Path

from . import logger


class UserlistCache:
    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.path)!r})"

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> list[str]:
        with self.path.open(encoding='utf-8') as f:
            userlist = json.load(f)
        if not isinstance(userlist, list):
            raise ValueError(f"{self.path} does not contain a list")
        return [str(u) for u in userlist]

    def store(self, userlist: list[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f'.{self.path.name}.tmp')
        with tmp.open('w', encoding='utf-8') as f:
            json.dump(userlist, f)
        tmp.replace(self.path)
        logger.info("Wrote %d principals to %s", len(userlist), self.path)

    def invalidate(self) -> bool:
        """Remove the cache file.  Returns whether there was one."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Invalidated userlist cache %s", self.path)
        return True
