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


from __future__ import annotations
from typing import (
    Awaitable,
    Callable,
    TypeVar,
)

import asyncio


_T = TypeVar('_T')


async def debounce(
    input: Callable[[], Awaitable[_T]],
    output: Callable[[list[_T]], Awaitable[None]],
    *,
    max_wait: float,
    delay_amt: float,
    max_batch_size: int,
) -> None:
    '''Debounce and batch async events.

    Loops forever unless an operation fails, so should be run from a task.

    An event arriving less than `delay_amt` after the previous batch was
    emitted is held back for `delay_amt`; every further event extends the
    hold, but never beyond `max_wait` since the previous batch.  A batch
    is emitted early once it reaches `max_batch_size` events.

    The watcher feeds file change notifications through this so that an
    editor saving several files at once triggers a single regeneration.
    '''
    loop = asyncio.get_running_loop()

    batch: list[_T] = []
    last_emit = -max_wait
    deadline: float | None = None

    while True:
        try:
            if deadline is None:
                item = await input()
            else:
                async with asyncio.timeout_at(deadline):
                    item = await input()
        except TimeoutError:
            now = loop.time()
        else:
            batch.append(item)
            now = loop.time()

            if deadline is None:
                if now - last_emit < delay_amt:
                    deadline = now + delay_amt
            else:
                deadline = min(
                    max(now + delay_amt, deadline),
                    last_emit + max_wait,
                )

        if (
            deadline is not None
            and now < deadline
            and len(batch) < max_batch_size
        ):
            continue

        if batch:
            await output(batch)
            batch = []
            last_emit = now
        deadline = None


HandlerFunction = Callable[[], Awaitable[None]]


class ExclusiveTask:
    """Runs a repeatable task at most once at a time.

    Scheduling while the task runs queues exactly one follow-up run.
    """

    _handler: HandlerFunction
    _task: asyncio.Task | None
    _scheduled: bool
    _stop_requested: bool

    def __init__(self, handler: HandlerFunction) -> None:
        self._handler = handler
        self._task = None
        self._scheduled = False
        self._stop_requested = False

    @property
    def scheduled(self) -> bool:
        return self._scheduled

    @property
    def running(self) -> bool:
        return self._task is not None

    async def _run(self) -> None:
        if self._scheduled and not self._stop_requested:
            self._scheduled = False
        else:
            self._task = None
            return
        try:
            await self._handler()
        finally:
            if self._scheduled and not self._stop_requested:
                self._task = asyncio.create_task(self._run())
            else:
                self._task = None

    def schedule(self) -> None:
        """Schedule to run the task as soon as possible.

        If already scheduled, nothing happens; it won't queue up.
        """
        if not self._stop_requested:
            self._scheduled = True
            if self._task is None:
                self._task = asyncio.create_task(self._run())

    async def wait_idle(self) -> None:
        while self._task is not None:
            await asyncio.shield(self._task)

    async def stop(self) -> None:
        """Drop any scheduled run and wait for the running one to finish."""
        self._scheduled = False
        self._stop_requested = True
        if self._task is not None:
            await self._task
