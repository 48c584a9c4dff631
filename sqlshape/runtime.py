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


"""Runtime support imported by generated query modules.

Query sources are written with named ``{placeholders}``::

    from sqlshape.runtime import sql

    find_widget = sql('''
        SELECT * FROM widgets WHERE id = {id} OR parent = {id}
    ''')

`sqlshape generate` turns every such definition into a typed `Query`
that can be run against an asyncpg-style connection.
"""

from __future__ import annotations
from typing import (
    Any, AsyncIterator, Generic, Mapping, Optional, Sequence,
    TypeVar, Union,
)

import dataclasses
import string
import textwrap


__all__ = ('sql', 'QueryDef', 'Query', 'Json', 'compile_placeholders')


Json = Union[
    str, int, float, bool, None, list['Json'], dict[str, 'Json']
]

P = TypeVar('P', bound=Mapping[str, Any])
R = TypeVar('R', bound=Mapping[str, Any])
T = TypeVar('T', bound=Mapping[str, Any])

_formatter = string.Formatter()


def compile_placeholders(text: str) -> tuple[str, tuple[str, ...]]:
    """Replace ``{name}`` placeholders with ``$n`` positional ones.

    Repeated names reuse their first number.  ``{{`` and ``}}`` stand
    for literal braces.  Returns the SQL and the placeholder names in
    positional order.
    """
    keys: list[str] = []
    out: list[str] = []
    for literal, field, spec, conversion in _formatter.parse(text):
        out.append(literal)
        if field is None:
            continue
        if spec or conversion or not field.isidentifier():
            raise ValueError(
                f'invalid query placeholder: {{{field}'
                f'{"!" + conversion if conversion else ""}'
                f'{":" + spec if spec else ""}}}')
        if field not in keys:
            keys.append(field)
        out.append(f'${keys.index(field) + 1}')
    return ''.join(out), tuple(keys)


@dataclasses.dataclass(frozen=True)
class QueryDef:
    sql: str
    keys: tuple[str, ...]


def sql(text: str) -> QueryDef:
    compiled, keys = compile_placeholders(textwrap.dedent(text).strip())
    return QueryDef(compiled, keys)


class Query(Generic[P, R]):
    """A described query, parameterized by its input and output rows."""

    def __init__(
        self,
        sql: str,
        args: Sequence[str] = (),
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.sql = sql
        self.args = tuple(args)
        self.defaults = dict(defaults or {})

    def __repr__(self) -> str:
        return f'<Query {self.sql!r} args={self.args!r}>'

    def arglist(self, params: Optional[Mapping[str, Any]]) -> list[Any]:
        merged = {**self.defaults, **(params or {})}
        missing = [k for k in self.args if k not in merged]
        if missing:
            raise TypeError(
                f'missing query parameters: {", ".join(missing)}')
        return [merged[k] for k in self.args]

    def with_defaults(self, **defaults: Any) -> Query[P, R]:
        """Return a copy where the given parameters become optional."""
        unknown = set(defaults) - set(self.args)
        if unknown:
            raise TypeError(
                f'unknown query parameters: {", ".join(sorted(unknown))}')
        return Query(self.sql, self.args, {**self.defaults, **defaults})

    def with_nullable(self, *keys: str) -> Query[P, Any]:
        # Nullability from outer joins cannot be inferred; this only
        # widens the static result type.
        return Query(self.sql, self.args, self.defaults)

    def with_return_type(self, row_type: type[T]) -> Query[P, T]:
        """Return a copy whose rows are typed as *row_type*.

        Only the static type changes; rows are still the dicts the
        connection returns.
        """
        if not isinstance(row_type, type):
            raise TypeError(f'expected a row type, got {row_type!r}')
        return Query(self.sql, self.args, self.defaults)

    async def fetch_all(
        self,
        conn: Any,
        params: Optional[P] = None,
    ) -> list[R]:
        rows = await conn.fetch(self.sql, *self.arglist(params))
        return [dict(row) for row in rows]  # type: ignore [misc]

    async def chunks(
        self,
        conn: Any,
        params: Optional[P] = None,
        *,
        chunk_size: int = 100,
    ) -> AsyncIterator[list[R]]:
        async with conn.transaction():
            cursor = await conn.cursor(self.sql, *self.arglist(params))
            while True:
                rows = await cursor.fetch(chunk_size)
                if rows:
                    yield [dict(row) for row in rows]
                if len(rows) < chunk_size:
                    break

    async def iterate(
        self,
        conn: Any,
        params: Optional[P] = None,
        *,
        chunk_size: int = 100,
    ) -> AsyncIterator[R]:
        async for chunk in self.chunks(conn, params, chunk_size=chunk_size):
            for row in chunk:
                yield row
