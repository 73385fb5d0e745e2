#!/usr/bin/env python

import os
import re
from setuptools import setup

version_file = os.path.join('parse_multipart', '__init__.py')
with open(version_file, 'rb') as f:
    version_data = f.read().strip().decode('ascii')

version_re = re.compile(r'((?:\d+)\.(?:\d+)\.(?:\d+))')
version = version_re.search(version_data).group(0)

tests_require = [
    'pytest',
    'pytest-cov',
    'pytest-timeout',
    'PyYAML',
]

setup(name='parse-multipart',
      version=version,
      description='A buffered multipart/form-data parser for Python',
      license='Apache',
      platforms='any',
      zip_safe=False,
      packages=[
          'parse_multipart',
      ],
      python_requires='>=3.9',
      extras_require={
          'test': tests_require,
          'dev': tests_require + ['invoke', 'twine', 'wheel'],
          'fuzz': ['atheris'],
      },
      classifiers=[
        'Development Status :: 4 - Beta',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3 :: Only',
        'Programming Language :: Python :: 3',
        'Topic :: Software Development :: Libraries :: Python Modules'
      ],
     )
