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


import contextlib
import typing

from sqlshape import runtime
from sqlshape import testbase as tb


class FakeCursor:

    def __init__(self, rows):
        self._rows = list(rows)
        self.fetches = []

    async def fetch(self, n):
        self.fetches.append(n)
        chunk, self._rows = self._rows[:n], self._rows[n:]
        return chunk


class FakeConnection:
    """Just enough of an asyncpg connection."""

    def __init__(self, rows=()):
        self.rows = list(rows)
        self.calls = []
        self.cursors = []
        self.in_transaction = False

    async def fetch(self, query, *args):
        self.calls.append((query, args))
        return list(self.rows)

    @contextlib.asynccontextmanager
    async def _transaction(self):
        self.in_transaction = True
        try:
            yield
        finally:
            self.in_transaction = False

    def transaction(self):
        return self._transaction()

    async def cursor(self, query, *args):
        assert self.in_transaction
        self.calls.append((query, args))
        cursor = FakeCursor(self.rows)
        self.cursors.append(cursor)
        return cursor


class TestPlaceholders(tb.TestCase):

    def test_runtime_compile_placeholders(self):
        self.assertEqual(
            runtime.compile_placeholders(
                'SELECT * FROM t WHERE a = {a} AND b = {b} OR a > {a}'),
            ('SELECT * FROM t WHERE a = $1 AND b = $2 OR a > $1',
             ('a', 'b')),
        )

    def test_runtime_compile_placeholders_escapes(self):
        self.assertEqual(
            runtime.compile_placeholders(
                "SELECT '{{}}'::json, {x}"),
            ("SELECT '{}'::json, $1", ('x',)),
        )

    def test_runtime_compile_placeholders_none(self):
        self.assertEqual(runtime.compile_placeholders('SELECT 1'),
                         ('SELECT 1', ()))

    def test_runtime_compile_placeholders_invalid(self):
        for text in ('{}', '{0}', '{a:>3}', '{a!r}', '{a.b}', 'x {'):
            with self.subTest(text=text):
                with self.assertRaises(ValueError):
                    runtime.compile_placeholders(text)

    def test_runtime_sql_dedents(self):
        q = runtime.sql('''
            SELECT *
            FROM widgets
            WHERE id = {id}
        ''')
        self.assertEqual(
            q, runtime.QueryDef('SELECT *\nFROM widgets\nWHERE id = $1',
                                ('id',)))


class TestQuery(tb.TestCase):

    def test_runtime_arglist(self):
        q = runtime.Query('SELECT $1, $2', ('a', 'b'))
        self.assertEqual(q.arglist({'b': 2, 'a': 1}), [1, 2])

        with self.assertRaisesRegex(TypeError, 'missing query parameters: b'):
            q.arglist({'a': 1})

        self.assertEqual(runtime.Query('SELECT 1').arglist(None), [])

    def test_runtime_with_defaults(self):
        q = runtime.Query('SELECT $1, $2', ('a', 'b'))
        q2 = q.with_defaults(b=None)

        self.assertEqual(q2.arglist({'a': 1}), [1, None])
        self.assertEqual(q2.arglist({'a': 1, 'b': 3}), [1, 3])
        # The original is unchanged.
        with self.assertRaises(TypeError):
            q.arglist({'a': 1})

        with self.assertRaisesRegex(TypeError, 'unknown query parameters'):
            q.with_defaults(c=1)

    def test_runtime_with_nullable(self):
        q = runtime.Query('SELECT $1', ('a',)).with_defaults(a=5)
        q2 = q.with_nullable('x')
        self.assertIsNot(q2, q)
        self.assertEqual(q2.arglist({}), [5])

    async def test_runtime_with_return_type(self):
        class Widget(typing.TypedDict):
            id: int
            name: typing.Optional[str]

        conn = FakeConnection(rows=[{'id': 1, 'name': None}])
        q = runtime.Query('SELECT id, name FROM widgets WHERE id = $1',
                          ('id',)).with_defaults(id=1)

        typed = q.with_return_type(Widget)
        self.assertIsNot(typed, q)
        self.assertEqual(typed.sql, q.sql)
        self.assertEqual(typed.arglist({}), [1])
        self.assertEqual(await typed.fetch_all(conn),
                         [{'id': 1, 'name': None}])

        with self.assertRaisesRegex(TypeError, 'expected a row type'):
            q.with_return_type({'id': int})

    async def test_runtime_fetch_all(self):
        conn = FakeConnection(rows=[{'id': 1}, {'id': 2}])
        q = runtime.Query('SELECT id FROM t WHERE x = $1', ('x',))

        rows = await q.fetch_all(conn, {'x': 'y'})

        self.assertEqual(rows, [{'id': 1}, {'id': 2}])
        self.assertEqual(conn.calls,
                         [('SELECT id FROM t WHERE x = $1', ('y',))])

    async def test_runtime_chunks(self):
        conn = FakeConnection(rows=[{'n': i} for i in range(5)])
        q = runtime.Query('SELECT n FROM t')

        chunks = [c async for c in q.chunks(conn, chunk_size=2)]

        self.assertEqual(chunks, [
            [{'n': 0}, {'n': 1}],
            [{'n': 2}, {'n': 3}],
            [{'n': 4}],
        ])
        self.assertFalse(conn.in_transaction)

    async def test_runtime_chunks_exact_multiple(self):
        conn = FakeConnection(rows=[{'n': i} for i in range(4)])
        q = runtime.Query('SELECT n FROM t')

        chunks = [c async for c in q.chunks(conn, chunk_size=2)]

        self.assertEqual(len(chunks), 2)
        self.assertEqual(conn.cursors[0].fetches, [2, 2, 2])

    async def test_runtime_iterate(self):
        conn = FakeConnection(rows=[{'n': i} for i in range(3)])
        q = runtime.Query('SELECT n FROM t')

        rows = [r async for r in q.iterate(conn, chunk_size=2)]
        self.assertEqual(rows, [{'n': 0}, {'n': 1}, {'n': 2}])
