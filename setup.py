# -*- coding: utf-8 -*-
"""gcp_autosecret a module turning declarative credential requests into generated secrets.

Passwords and identifiers are generated once, stored in Google Cloud Secret Manager and kept in
line with the request that asked for them. Database secrets can be propagated into alternate
connection string formats (JDBC, ODBC, ADO.NET) whenever the source secret changes.

"""

import setuptools
import re
from io import open

VERSIONFILE="gcp_autosecret/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))

with open("README.md", "r", encoding='utf-8') as fh:
    long_description = fh.read()

setuptools.setup(
    name='gcp_autosecret',
    version=verstr,
    author="Mike Moore",
    author_email="z_z_zebra@yahoo.com",
    description="Generate-once credentials from declarative requests, stored in google cloud platform secret manager, with database secret propagation",
    long_description_content_type="text/markdown",
    long_description=long_description,
    url="https://github.com/Mikemoore63/gcp-autosecret",
    packages=setuptools.find_packages(),
    tests_require=['pytest'],
    extras_require={
        "test": ["pytest"],
    },
    include_package_data=True,
    license="MIT",
    scripts=[],
    python_requires=">=3.7",
    install_requires=[
        "google-cloud-secret-manager~=2.0",
        "google-cloud-storage>1.0,<4.0",
        "google-api-core>=1.0,<3.0",
        "google-auth>=1.0,<3.0",
        "google-crc32c~=1.0",
        "grpcio~=1.0",
        "python-dateutil~=2.0"
    ],
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],

)
