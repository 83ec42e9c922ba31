#!/usr/bin/env python
# -*- coding: utf-8 -*-
from setuptools import setup, find_packages


deps = {
    'remote-validator': [
        "asks>=3.0.0,<4",
        "cached-property>=1.5.1,<2",
        "eth-typing>=2.2.2,<6",
        "eth-utils>=1.9.3,<6",
        "quart-trio>=0.10.0,<1",
        "ssz>=0.2.4,<1",
        'trio>=0.23.0',
    ],
    'test': [
        "hypothesis>=6.0.0,<7",
        "pytest>=7.0.0,<9",
        "pytest-mock>=3.6.0,<4",
    ],
    # trio based tests live in `tests-trio`
    'test-trio': [
        "pytest-trio>=0.8.0,<1",
    ],
    'lint': [
        "flake8>=6.0.0,<8",
        "flake8-bugbear>=23.0.0",
        "mypy>=1.0.0",
    ],
    'dev': [
        "bumpversion>=0.5.3,<1",
        "wheel",
        "setuptools>=36.2.0",
        "tox>=4,<5",
        "twine",
    ],
}

deps['test'] = deps['test'] + deps['test-trio']

deps['dev'] = (
    deps['dev'] +
    deps['remote-validator'] +
    deps['test'] +
    deps['lint']
)


install_requires = deps['remote-validator']


with open('./README.md') as readme:
    long_description = readme.read()


setup(
    name='remote-validator',
    # *IMPORTANT*: Don't manually change the version here. Use the 'bumpversion' utility.
    version='0.1.0-alpha.1',
    description='A validator client driving its duties through a remote beacon node',
    long_description=long_description,
    long_description_content_type='text/markdown',
    author='Ethereum Foundation',
    author_email='piper@pipermerriam.com',
    url='https://github.com/ethereum/trinity',
    include_package_data=True,
    python_requires=">=3.8,<4",
    install_requires=install_requires,
    extras_require=deps,
    license='MIT',
    zip_safe=False,
    keywords='ethereum eth2 beacon validator',
    packages=find_packages(exclude=["tests", "tests.*", "tests-trio", "tests-trio.*"]),
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Natural Language :: English',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
    ],
)
