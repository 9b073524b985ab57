#!/usr/bin/env python
"""
Setup script for the chatwire package.
"""

import os
import re
from setuptools import setup, find_packages

# Get version from chatwire/version.py
with open(os.path.join('chatwire', 'version.py'), 'r') as f:
    version_file = f.read()
    version_match = re.search(r"__version__ = ['\"]([^'\"]*)['\"]", version_file)
    if version_match:
        version = version_match.group(1)
    else:
        raise RuntimeError("Unable to find version string.")

# Read long description from README.md
with open('README.md', 'r') as f:
    long_description = f.read()

setup(
    name='chatwire',
    version=version,
    description='Resilient client core for a Messenger-style chat platform',
    long_description=long_description,
    long_description_content_type='text/markdown',
    author='Chatwire Team',
    packages=find_packages(exclude=['tests', 'tests.*', 'examples', 'examples.*']),
    include_package_data=True,
    python_requires='>=3.8',
    install_requires=[
        'requests>=2.25.0',
        'websocket-client>=1.2.0',
    ],
    extras_require={
        'dev': [
            'pytest>=6.0.0',
            'pytest-cov>=2.12.0',
            'black>=21.5b2',
            'isort>=5.9.0',
            'mypy>=0.812',
            'flake8>=3.9.0',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Topic :: Communications :: Chat',
        'Topic :: Software Development :: Libraries :: Python Modules',
    ],
    keywords='messenger, messaging, chat, websocket, client',
)
