#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details.
from lms.model.config import ConfigPlugin
from .base import BaseFactory


class ConfigPluginFactory(BaseFactory):
    class Meta:
        model = ConfigPlugin

    plugin = 'tool_ldapsync'
    name = 'last_synced_on'
    value = '2024-01-01T00:00:00+00:00'
