#  Copyright (c) 2024. The ldapsync Authors. See the AUTHORS file.
#  This file is part of the ldapsync project and licensed under the terms of
#  the Apache License, Version 2.0. See the LICENSE file for details
"""
lms
~~~

The parts of the host learning-management platform the LDAP import relies
on: the user table, user preferences and the plugin configuration store.
"""
