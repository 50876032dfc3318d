#!/usr/bin/env python
# -*- coding: utf-8 -*-
import os

from setuptools import find_packages, setup

ROOT = os.path.dirname(os.path.abspath(__file__))

with open(os.path.join(ROOT, 'README.md'), encoding='utf8') as readme_file:
    readme = readme_file.read()
with open(os.path.join(ROOT, 'tracebeam', 'VERSION'), encoding='utf8') as version_file:
    version = version_file.read().strip()


setup(
    name='tracebeam',
    version=version,
    description="Batching, retrying trace delivery for LLM applications.",
    long_description=readme,
    long_description_content_type="text/markdown",
    author="tracebeam",
    author_email='support@tracebeam.dev',
    url='https://github.com/tracebeam/tracebeam-python',
    packages=find_packages(include=['tracebeam', 'tracebeam.*']),
    package_data={'tracebeam': ['VERSION']},
    entry_points={
        'console_scripts': [
            'tracebeam=tracebeam.cli:app'
        ]
    },
    include_package_data=True,
    install_requires=[
        'httpx>=0.24',
        'tenacity>=8.2',
        'pydantic>=2.0',
        'filelock>=3.12',
        'typer>=0.9',
        'rich',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    python_requires=">=3.10",
    license="MIT license",
    zip_safe=False,
    keywords='tracebeam llm tracing observability',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Natural Language :: English',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
    ]
)
