#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details

import typing as t

from sqlalchemy import BigInteger
from sqlalchemy.orm import mapped_column

str100 = t.Annotated[str, 100]
str255 = t.Annotated[str, 255]

#: seconds since the epoch, ``0`` meaning “never” / “unknown”
timestamp = t.Annotated[int, mapped_column(BigInteger, default=0, server_default="0")]
