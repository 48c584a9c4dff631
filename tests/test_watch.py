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
import os
import pathlib
import tempfile

from sqlshape import testbase as tb
from sqlshape import watch
from sqlshape.testbase.asyncutils import with_fake_event_loop


class TestWatch(tb.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = pathlib.Path(self._tmp.name)
        (self.root / 'db').mkdir()
        self.a = self.root / 'a.sql.py'
        self.b = self.root / 'db' / 'b.sql.py'
        for path in (self.a, self.b, self.root / 'a.py'):
            path.write_text('')
            self.touch(path, 1)
        self.pattern = str(self.root / '**' / '*.sql.py')

    def tearDown(self):
        self._tmp.cleanup()

    def touch(self, path, seconds):
        os.utime(path, ns=(seconds * 10**9, seconds * 10**9))

    def test_watch_expand(self):
        self.assertEqual(watch.expand(self.pattern), [self.a, self.b])
        self.assertEqual(watch.expand(str(self.root / 'nothing*')), [])

    def test_watch_poll(self):
        async def regenerate(paths):
            pass

        w = watch.Watcher(self.pattern, regenerate)
        self.assertEqual(w.poll(), [self.a, self.b])
        self.assertEqual(w.poll(), [])

        self.touch(self.b, 2)
        self.assertEqual(w.poll(), [self.b])

        c = self.root / 'db' / 'c.sql.py'
        c.write_text('')
        self.b.unlink()
        with self.assertLogs('sqlshape.watch', level='INFO') as cm:
            self.assertEqual(w.poll(), [c])
        self.assertIn('b.sql.py was removed', cm.output[0])

    @with_fake_event_loop
    async def test_watch_run(self):
        calls = []

        async def regenerate(paths):
            calls.append(paths)

        w = watch.Watcher(self.pattern, regenerate, interval=0.5)
        task = asyncio.create_task(w.run())

        await asyncio.sleep(0.1)
        self.assertEqual(calls, [[self.a, self.b]])

        self.touch(self.a, 5)
        await asyncio.sleep(2)
        self.assertEqual(calls, [[self.a, self.b], [self.a]])

        await asyncio.sleep(2)
        self.assertEqual(len(calls), 2)

        self.touch(self.b, 9)
        await asyncio.sleep(2)
        self.assertEqual(calls[-1], [self.b])
        self.assertEqual(len(calls), 3)

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

    @with_fake_event_loop
    async def test_watch_initial_failure(self):
        async def regenerate(paths):
            raise RuntimeError('boom')

        w = watch.Watcher(self.pattern, regenerate)
        with self.assertRaisesRegex(RuntimeError, 'boom'):
            await w.run()

    @with_fake_event_loop
    async def test_watch_later_failure(self):
        calls = []

        async def regenerate(paths):
            calls.append(paths)
            if len(calls) > 1:
                raise RuntimeError('boom')

        w = watch.Watcher(self.pattern, regenerate)
        task = asyncio.create_task(w.run())
        await asyncio.sleep(0.1)
        self.touch(self.a, 7)

        caught = []
        try:
            await task
        except* RuntimeError as eg:
            caught.extend(eg.exceptions)
        self.assertEqual([str(e) for e in caught], ['boom'])
