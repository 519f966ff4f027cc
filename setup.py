#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""A setuptools based setup module.
See:
https://packaging.python.org/en/latest/distributing.html
https://github.com/pypa/sampleproject
"""


# Always prefer setuptools over distutils
from setuptools import setup
# To use a consistent encoding
from codecs import open
from os import path

__version__ = "1.0.0"

description = "A Python package and CLI for extracting DMARC aggregate " \
              "reports from a mailbox"

here = path.abspath(path.dirname(__file__))

# Get the long description from the README file
with open(path.join(here, 'README.rst'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='dmarcextractor',

    version=__version__,

    description=description,
    long_description=long_description,

    license='Apache 2.0',

    # See https://pypi.python.org/pypi?%3Aaction=list_classifiers
    classifiers=[
        'Development Status :: 5 - Production/Stable',

        'Intended Audience :: Developers',
        "Intended Audience :: Information Technology",
        'Operating System :: OS Independent',

        'License :: OSI Approved :: Apache Software License',

        'Programming Language :: Python :: 3 :: Only',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],

    keywords='DMARC, reporting, IMAP, extractor',

    packages=["dmarcextractor", "dmarcextractor.mail"],

    python_requires='>=3.9',

    # List run-time dependencies here.  These will be installed by pip when
    # your project is installed.
    install_requires=['xmltodict>=0.12.0',
                      'lxml>=4.4.0',
                      'mail-parser>=3.15.0',
                      'mailsuite>=1.6.1',
                      'imapclient>=2.1.0',
                      'tqdm>=4.31.1',
                      ],

    entry_points={
        'console_scripts': ['dmarcextractor=dmarcextractor.cli:_main'],
    }
)
