#
# This source file is part of the sqlshape open source project.
#
# Copyright 2024-present the sqlshape authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#


import pathlib
import re

import setuptools


ROOT_PATH = pathlib.Path(__file__).parent.resolve()

RUNTIME_DEPS = [
    'click~=8.1',
    'immutables>=0.18',
]

TEST_DEPS = [
    'async-solipsism>=0.5',
    'pytest',
]


def _version():
    init = (ROOT_PATH / 'sqlshape' / '__init__.py').read_text()
    m = re.search(r"^__version__ = '([^']+)'", init, re.M)
    if m is None:
        raise RuntimeError('cannot determine sqlshape version')
    return m.group(1)


setuptools.setup(
    name='sqlshape',
    version=_version(),
    description='Typed Python wrappers for PostgreSQL queries',
    license='Apache-2.0',
    python_requires='>=3.11',
    packages=setuptools.find_packages(include=['sqlshape', 'sqlshape.*']),
    install_requires=RUNTIME_DEPS,
    extras_require={
        'test': TEST_DEPS,
    },
    entry_points={
        'console_scripts': [
            'sqlshape = sqlshape.cli:main',
        ],
    },
)
