"""
This package provides a standalone LDAP to LMS user importer.  For more
information on how to execute it, run ``python -m ldapsync --help``.

The process is separated into the following steps:

1. Fetch the (changed) person entries from the directory
   (:mod:`ldapsync.sources.ldap`), normalizing them on the fly
   (:mod:`ldapsync.conversion`)
2. Load them into a staging table (:mod:`ldapsync.staging`)
3. Merge the staging table into the local user table
   (:mod:`ldapsync.reconcile`), keeping the provenance table
   (:mod:`ldapsync.provenance`) up to date
4. Remember when the pass started (:mod:`ldapsync.importer`)
"""
import logging

logger = logging.getLogger('ldapsync')
