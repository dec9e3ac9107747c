"""
ldapsync
--------

ldapsync imports the persons of an LDAP directory into the user table of
a learning management system, creating and updating accounts.

Notes for developers
--------------------

On a running system, you can just execute ``pip install -e .`` to update
e.g. console script names.  Run the tests with ``pip install -e .[test]``
and ``pytest``.
"""

from setuptools import setup, find_packages

setup(
    name="ldapsync",
    author="The ldapsync Authors",
    description="LDAP to LMS user importer",
    long_description=__doc__,
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    zip_safe=False,
    python_requires=">= 3.11",
    install_requires=[
        'celery',
        'ldap3',
        'sentry-sdk',
        'SQLAlchemy >= 2.0',
        'Werkzeug',
    ],
    extras_require={
        'postgres': [
            'psycopg2-binary',
        ],
        'test': [
            'factory-boy',
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'ldapsync = ldapsync.__main__:main',
        ]
    },
    license="Apache Software License",
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3.12',
        'Topic :: System :: Systems Administration :: Authentication/Directory :: LDAP',
    ],
)
