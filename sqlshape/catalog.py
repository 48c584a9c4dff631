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


"""Type and table catalogs used to name and qualify described columns.

Both catalogs are loaded with one bulk query each, through the same
introspection session the describe calls use.
"""

from __future__ import annotations
from typing import Optional

import dataclasses
import logging

import immutables

from sqlshape.introspect import engine
from sqlshape.introspect import results


logger = logging.getLogger('sqlshape.catalog')


TYPES_QUERY = '''\
SELECT oid, typname, typcategory, typelem
FROM pg_catalog.pg_type
'''

TABLES_QUERY = '''\
SELECT
    (quote_ident(table_schema) || '.' || quote_ident(table_name))
        ::regclass::oid,
    table_schema,
    table_name,
    ordinal_position,
    column_name,
    is_nullable
FROM information_schema.columns
WHERE table_schema NOT IN ('information_schema', 'pg_catalog')
ORDER BY 1, 4
'''


@dataclasses.dataclass(frozen=True)
class TypeInfo:
    oid: int
    # For arrays this is the element type's name.
    name: str
    is_array: bool = False
    element_oid: int = 0


@dataclasses.dataclass(frozen=True)
class ColumnInfo:
    name: str
    nullable: bool


@dataclasses.dataclass(frozen=True)
class TableInfo:
    oid: int
    schema: str
    name: str
    columns: immutables.Map[int, ColumnInfo]

    @property
    def qualname(self) -> str:
        return f'{self.schema}.{self.name}'


@dataclasses.dataclass(frozen=True)
class Catalog:
    types: immutables.Map[int, TypeInfo]
    tables: immutables.Map[int, TableInfo]

    def get_type(self, oid: int) -> Optional[TypeInfo]:
        return self.types.get(oid)

    def get_column(
        self,
        table_oid: int,
        column_ordinal: int,
    ) -> Optional[ColumnInfo]:
        table = self.tables.get(table_oid)
        if table is None:
            return None
        return table.columns.get(column_ordinal)

    def is_nullable(self, column: results.ColumnDescriptor) -> bool:
        """Whether a described output column may be NULL.

        Only plain table columns can be proven non-nullable; computed
        expressions and unknown columns are nullable.
        """
        if not column.is_table_column:
            return True
        info = self.get_column(column.table_oid, column.column_ordinal)
        if info is None:
            return True
        return info.nullable


def build_types(rows) -> immutables.Map[int, TypeInfo]:
    raw = {}
    for oid, typname, typcategory, typelem in rows:
        raw[int(oid)] = (typname, typcategory, int(typelem or 0))

    types: immutables.Map[int, TypeInfo] = immutables.Map()
    with types.mutate() as mm:
        for oid, (typname, typcategory, typelem) in raw.items():
            is_array = typcategory == 'A' and typelem in raw
            if is_array:
                mm[oid] = TypeInfo(oid=oid, name=raw[typelem][0],
                                   is_array=True, element_oid=typelem)
            else:
                mm[oid] = TypeInfo(oid=oid, name=typname)
        types = mm.finish()
    return types


def build_tables(rows) -> immutables.Map[int, TableInfo]:
    grouped: dict[int, tuple[str, str, dict[int, ColumnInfo]]] = {}
    for oid, schema, table, ordinal, column, is_nullable in rows:
        entry = grouped.setdefault(int(oid), (schema, table, {}))
        entry[2][int(ordinal)] = ColumnInfo(
            name=column, nullable=is_nullable == 'YES')

    return immutables.Map(
        (oid, TableInfo(oid=oid, schema=schema, name=table,
                        columns=immutables.Map(columns)))
        for oid, (schema, table, columns) in grouped.items()
    )


async def load_types(
    session: engine.Session,
) -> immutables.Map[int, TypeInfo]:
    types = build_types(await session.fetch(TYPES_QUERY))
    logger.debug('loaded %d types', len(types))
    return types


async def load_tables(
    session: engine.Session,
) -> immutables.Map[int, TableInfo]:
    tables = build_tables(await session.fetch(TABLES_QUERY))
    logger.debug('loaded %d tables', len(tables))
    return tables


async def load_catalog(session: engine.Session) -> Catalog:
    return Catalog(
        types=await load_types(session),
        tables=await load_tables(session),
    )
