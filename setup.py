#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='ldifsplit',
    version='1.0.0',
    description='Split an LDIF directory tree into balanced sets for distributed deployments',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['ldap', 'ldif', 'django'],
    author="Caltech IMSS ADS",
    author_email="imss-ads-staff@caltech.edu",
    packages=find_packages(exclude=['bin', 'doc', 'sandbox']),
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'django',
        'ldap_filter',
        'python-ldap',
        'cryptography',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
