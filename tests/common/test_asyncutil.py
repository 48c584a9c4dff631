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
import unittest

from sqlshape.common import asyncutil
from sqlshape.testbase.asyncutils import with_fake_event_loop


class TestDebounce(unittest.TestCase):

    @with_fake_event_loop
    async def test_debounce_01(self):
        loop = asyncio.get_running_loop()
        outs = []
        ins = asyncio.Queue()

        async def output(vs):
            outs.append((int(loop.time()), vs))

        async def sleep_until(t):
            await asyncio.sleep(t - loop.time())

        task = asyncio.create_task(asyncutil.debounce(
            ins.get,
            output,
            max_wait=100,
            delay_amt=30,
            max_batch_size=3,
        ))

        ins.put_nowait('a')
        await sleep_until(10)
        ins.put_nowait('b')
        await sleep_until(50)
        for v in 'cdef':
            ins.put_nowait(v)
        await sleep_until(200)
        ins.put_nowait('g')
        await asyncio.sleep(100)
        task.cancel()

        self.assertEqual(
            outs,
            [
                # Nothing emitted recently, so right away
                (0, ['a']),
                # Held back for delay_amt after arriving at 10
                (40, ['b']),
                # The batch fills up
                (50, ['c', 'd', 'e']),
                # The leftover waits out its delay
                (80, ['f']),
                (200, ['g']),
            ],
        )


class TestExclusiveTask(unittest.TestCase):

    @with_fake_event_loop
    async def test_exclusive_task_01(self):
        counter = 0

        async def handler():
            nonlocal counter
            counter += 1
            await asyncio.sleep(8)
            counter += 1

        task = asyncutil.ExclusiveTask(handler)

        # double-schedule is effective only once
        task.schedule()
        task.schedule()
        self.assertTrue(task.scheduled)
        self.assertEqual(counter, 0)

        await asyncio.sleep(1)
        self.assertFalse(task.scheduled)
        self.assertTrue(task.running)
        self.assertEqual(counter, 1)

        # scheduling while running queues exactly one follow-up
        task.schedule()
        task.schedule()
        self.assertTrue(task.scheduled)

        await asyncio.sleep(10)
        self.assertFalse(task.scheduled)
        self.assertEqual(counter, 3)

        await task.wait_idle()
        self.assertFalse(task.running)
        self.assertEqual(counter, 4)

        # a stopped task drops the pending run and accepts no more
        task.schedule()
        await task.stop()
        self.assertEqual(counter, 4)
        task.schedule()
        self.assertFalse(task.scheduled)
        await asyncio.sleep(10)
        self.assertEqual(counter, 4)
