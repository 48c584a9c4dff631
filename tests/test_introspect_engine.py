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


import asyncio
from unittest import mock

from sqlshape import testbase as tb
from sqlshape.common import log
from sqlshape.errors import SerializationMisuseError
from sqlshape.introspect import driver
from sqlshape.introspect import engine
from sqlshape.introspect import results
from sqlshape.pgwire import errors
from sqlshape.testbase import fakepg
from sqlshape.testbase.asyncutils import with_fake_event_loop


WIDGETS = 16400

STATEMENTS = {
    "select 1 as n, '' as s": fakepg.Described(
        columns=[fakepg.field('n', 23), fakepg.field('s', 25)],
    ),
    'select * from widgets where id = $1': fakepg.Described(
        params=[23],
        columns=[
            fakepg.field('id', 23, WIDGETS, 1),
            fakepg.field('name', 25, WIDGETS, 2),
            fakepg.field('weight', 1700, WIDGETS, 3),
        ],
    ),
    "insert into widgets values (1, 'a')": fakepg.Described(params=[]),
    'select * from nonexistent_table': fakepg.Rejected(
        'relation "nonexistent_table" does not exist',
        code='42P01', position=15,
    ),
    'select': fakepg.Described(columns=[]),
    'select pg_sleep(1000)': fakepg.Stall(),
}


class TestDescribe(tb.TestCase):

    def setUp(self):
        self.backend = fakepg.FakeBackend(
            statements=STATEMENTS,
            queries={'SELECT 1': [('1',)]},
        )
        self.session = self.loop.run_until_complete(
            fakepg.connect(self.backend))

    def tearDown(self):
        self.loop.run_until_complete(self.session.close())

    async def test_engine_describe_rows(self):
        res = await engine.describe(self.session, "select 1 as n, '' as s")

        self.assertIsInstance(res, results.Success)
        self.assertEqual(res.params, ())
        self.assertTrue(res.returns_rows)
        self.assertEqual([c.name for c in res.columns], ['n', 's'])
        self.assertFalse(res.columns[0].is_table_column)

    async def test_engine_describe_table_columns(self):
        res = await engine.describe(
            self.session, 'select * from widgets where id = $1')

        self.assertIsInstance(res, results.Success)
        self.assertEqual(res.params, (23,))
        self.assertEqual(
            res.columns,
            (
                results.ColumnDescriptor('id', 23, WIDGETS, 1),
                results.ColumnDescriptor('name', 25, WIDGETS, 2),
                results.ColumnDescriptor('weight', 1700, WIDGETS, 3),
            ),
        )
        self.assertTrue(all(c.is_table_column for c in res.columns))

    async def test_engine_describe_no_rows(self):
        res = await engine.describe(
            self.session, "insert into widgets values (1, 'a')")

        self.assertIsInstance(res, results.Success)
        self.assertIsNone(res.columns)
        self.assertFalse(res.returns_rows)

    async def test_engine_describe_zero_columns(self):
        res = await engine.describe(self.session, 'select')
        self.assertIsInstance(res, results.Success)
        self.assertIsNone(res.columns)

    async def test_engine_describe_missing_relation(self):
        sql = 'select * from nonexistent_table'
        res = await engine.describe(self.session, sql)

        self.assertIsInstance(res, results.Failure)
        self.assertIn('nonexistent_table', res.message)
        self.assertEqual(res.code, '42P01')
        self.assertEqual(res.position, 15)
        self.assertEqual(sql[res.position - 1:], 'nonexistent_table')
        self.assertFalse(res.stalled)

    async def test_engine_describe_syntax_error(self):
        res = await engine.describe(self.session, 'selec 1')

        self.assertIsInstance(res, results.Failure)
        self.assertEqual(res.code, '42601')
        self.assertEqual(res.position, 1)
        self.assertIn('selec', res.message)

    async def test_engine_describe_is_repeatable(self):
        for sql in STATEMENTS:
            if isinstance(STATEMENTS[sql], fakepg.Stall):
                continue
            with self.subTest(sql=sql):
                first = await self.session.describe(sql)
                second = await self.session.describe(sql)
                self.assertEqual(first, second)

        self.assertEqual(self.backend.batches[-1],
                         [b'C', b'P', b'B', b'E', b'D', b'S'])
        self.assertTrue(self.session.wire.is_idle())

    async def test_engine_describe_clears_stale_slot(self):
        # Left behind by a call that never got to clean up.
        self.backend.prepared['sqlshape_stmt'] = fakepg.Described()

        res = await self.session.describe("select 1 as n, '' as s")
        self.assertIsInstance(res, results.Success)
        self.assertEqual(len(res.columns), 2)

    async def test_engine_failure_does_not_poison_next_call(self):
        res = await self.session.describe('select * from nonexistent_table')
        self.assertIsInstance(res, results.Failure)

        res = await self.session.describe("select 1 as n, '' as s")
        self.assertIsInstance(res, results.Success)

    async def test_engine_describe_unsendable_statement(self):
        good = "select 1 as n, '' as s"
        cases = [
            ("select '\x00'", 'NUL'),
            ("select '\ud800'", 'UTF-8'),
        ]
        for sql, message in cases:
            with self.subTest(sql=sql):
                sent = len(self.backend.batches)

                res = await self.session.describe(sql)
                self.assertIsInstance(res, results.Failure)
                self.assertEqual(res.code, '22021')
                self.assertEqual(res.position, 9)
                self.assertIn(message, res.message)
                self.assertFalse(res.stalled)
                self.assertEqual(len(self.backend.batches), sent)
                self.assertTrue(self.session.wire.is_idle())

                res = await self.session.describe(good)
                self.assertIsInstance(res, results.Success)

    async def test_engine_describe_tags_log_records(self):
        seen = []
        drive = driver.drive

        async def tagged_drive(session, ticket, sql):
            seen.append(log.session_tag())
            return await drive(session, ticket, sql)

        pid = self.session.wire.backend_pid
        with mock.patch.object(driver, 'drive', tagged_drive):
            await self.session.describe('select', label='empty')
            await self.session.describe('select')

        self.assertEqual(seen, [f'{pid}/empty', f'{pid}/select'])
        self.assertEqual(log.session_tag(), '-')

    async def test_engine_concurrent_mixed(self):
        good = "select 1 as n, '' as s"
        bad = 'select * from nonexistent_table'

        for order in ((good, bad), (bad, good)):
            with self.subTest(order=order):
                got = await asyncio.gather(
                    *(self.session.describe(sql) for sql in order))
                by_sql = dict(zip(order, got))

                self.assertIsInstance(by_sql[good], results.Success)
                self.assertEqual(
                    [c.name for c in by_sql[good].columns], ['n', 's'])
                self.assertIsInstance(by_sql[bad], results.Failure)
                self.assertEqual(by_sql[bad].position, 15)

        self.assertEqual(self.backend.max_in_flight, 1)

    async def test_engine_fetch(self):
        rows = await self.session.fetch('SELECT 1')
        self.assertEqual(rows, [('1',)])

        with self.assertRaisesRegex(errors.PostgresSyntaxError,
                                    'unrecognized query'):
            await self.session.fetch('SELECT broken')

        # The session stays usable after a server-side error.
        rows = await self.session.fetch('SELECT 1')
        self.assertEqual(rows, [('1',)])

    async def test_engine_driver_requires_ticket(self):
        with self.assertRaises(SerializationMisuseError):
            await driver.drive(self.session, None, 'select 1')

        async with self.session.serializer.hold() as ticket:
            pass
        with self.assertRaises(SerializationMisuseError):
            await driver.drive(self.session, ticket, 'select 1')

        self.assertEqual(self.backend.described, [])

    async def test_engine_close(self):
        await self.session.close()
        self.assertTrue(self.session.is_closed())

        with self.assertRaises(errors.ConnectionLostError):
            await self.session.describe('select 1')

        # Closing twice is a no-op.
        await self.session.close()


class TestSerialization(tb.TestCase):

    @with_fake_event_loop
    async def test_engine_concurrent_calls_are_serialized(self):
        n = 6
        statements = {
            f'select {i} as c{i}': fakepg.Described(
                columns=[fakepg.field(f'c{i}', 23)])
            for i in range(n)
        }
        backend = fakepg.FakeBackend(statements=statements, latency=1.0)
        session = await fakepg.connect(backend)
        loop = asyncio.get_running_loop()

        start = loop.time()
        got = await asyncio.gather(
            *(session.describe(sql) for sql in statements))
        elapsed = loop.time() - start

        for i, res in enumerate(got):
            self.assertIsInstance(res, results.Success)
            self.assertEqual([c.name for c in res.columns], [f'c{i}'])

        self.assertEqual(backend.max_in_flight, 1)
        self.assertGreaterEqual(elapsed, n * backend.latency)
        self.assertEqual(backend.described, list(statements))
        await session.close()

    @with_fake_event_loop
    async def test_engine_stall_is_cancelled(self):
        backend = fakepg.FakeBackend(statements=STATEMENTS)
        session = await fakepg.connect(backend, describe_timeout=5.0)
        loop = asyncio.get_running_loop()

        start = loop.time()
        stalled, after = await asyncio.gather(
            session.describe('select pg_sleep(1000)'),
            session.describe("select 1 as n, '' as s"),
        )

        self.assertIsInstance(stalled, results.Failure)
        self.assertTrue(stalled.stalled)
        self.assertEqual(stalled.code, results.STALLED_CODE)
        self.assertIsNone(stalled.position)
        self.assertGreaterEqual(loop.time() - start, 5.0)
        self.assertEqual(backend.cancel_requests, 1)

        self.assertIsInstance(after, results.Success)
        self.assertEqual([c.name for c in after.columns], ['n', 's'])

        await asyncio.sleep(0.1)
        self.assertTrue(session.wire.is_idle())
        await session.close()

    @with_fake_event_loop
    async def test_engine_transport_failure_fails_queue(self):
        backend = fakepg.FakeBackend(statements=STATEMENTS, latency=1.0)
        session = await fakepg.connect(backend)

        tasks = [
            asyncio.create_task(session.describe(sql))
            for sql in ("select 1 as n, '' as s",
                        'select * from widgets where id = $1',
                        "insert into widgets values (1, 'a')")
        ]
        await asyncio.sleep(0.5)
        backend.drop()

        for task in tasks:
            with self.assertRaises(errors.ConnectionLostError):
                await task

        self.assertFalse(session.serializer.locked)
        self.assertTrue(session.is_closed())
        with self.assertRaises(errors.ConnectionLostError):
            await session.describe('select 1')
        with self.assertRaises(errors.ConnectionLostError):
            await session.fetch('SELECT 1')
