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


"""PostgreSQL type names to Python annotations, as asyncpg decodes them."""

from __future__ import annotations
from typing import Optional

import dataclasses

from sqlshape import catalog


@dataclasses.dataclass(frozen=True)
class PyType:
    annotation: str
    module: Optional[str] = None


_ANY = PyType('typing.Any', 'typing')

_name_to_type: dict[str, PyType] = {
    'bool': PyType('bool'),
    'int2': PyType('int'),
    'int4': PyType('int'),
    'int8': PyType('int'),
    'oid': PyType('int'),
    'float4': PyType('float'),
    'float8': PyType('float'),
    'numeric': PyType('decimal.Decimal', 'decimal'),
    'money': PyType('str'),
    'date': PyType('datetime.date', 'datetime'),
    'time': PyType('datetime.time', 'datetime'),
    'timetz': PyType('datetime.time', 'datetime'),
    'timestamp': PyType('datetime.datetime', 'datetime'),
    'timestamptz': PyType('datetime.datetime', 'datetime'),
    'interval': PyType('datetime.timedelta', 'datetime'),
    'char': PyType('str'),
    'bpchar': PyType('str'),
    'varchar': PyType('str'),
    'text': PyType('str'),
    'name': PyType('str'),
    'citext': PyType('str'),
    'xml': PyType('str'),
    'bytea': PyType('bytes'),
    'json': PyType('runtime.Json'),
    'jsonb': PyType('runtime.Json'),
    'uuid': PyType('uuid.UUID', 'uuid'),
    'inet': PyType(
        'ipaddress.IPv4Interface | ipaddress.IPv6Interface', 'ipaddress'),
    'cidr': PyType(
        'ipaddress.IPv4Network | ipaddress.IPv6Network', 'ipaddress'),
    'void': PyType('None'),
}


def lookup(name: str) -> PyType:
    return _name_to_type.get(name, _ANY)


def resolve(
    cat: catalog.Catalog,
    type_oid: int,
    *,
    nullable: bool = False,
) -> PyType:
    """Python annotation for a described type OID.

    Arrays resolve one level deep, so ``int4[][]`` is ``list[int]``.
    """
    info = cat.get_type(type_oid)
    if info is None:
        pytype = _ANY
    else:
        pytype = lookup(info.name)
        if info.is_array:
            pytype = PyType(f'list[{pytype.annotation}]', pytype.module)

    if nullable and pytype.annotation not in {_ANY.annotation, 'None'}:
        pytype = PyType(f'{pytype.annotation} | None', pytype.module)
    return pytype
