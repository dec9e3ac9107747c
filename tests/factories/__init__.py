#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details

from .config import ConfigPluginFactory
from .provenance import ProvenanceFactory
from .user import UserFactory, UserPreferenceFactory
