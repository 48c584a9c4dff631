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


"""Regeneration on file changes.

Files matching the glob are polled for modification time changes.
Changes are batched through `asyncutil.debounce` and handed to a single
`ExclusiveTask`, so regeneration runs never overlap and a burst of saves
causes one run.
"""

from __future__ import annotations
from typing import Awaitable, Callable, Optional

import asyncio
import glob
import logging
import pathlib

from sqlshape.common import asyncutil


logger = logging.getLogger('sqlshape.watch')

RegenerateFunction = Callable[[list[pathlib.Path]], Awaitable[None]]


def expand(pattern: str) -> list[pathlib.Path]:
    return sorted(
        pathlib.Path(p)
        for p in glob.glob(pattern, recursive=True)
        if pathlib.Path(p).is_file()
    )


class Watcher:

    def __init__(
        self,
        pattern: str,
        regenerate: RegenerateFunction,
        *,
        interval: float = 0.5,
        delay: float = 0.1,
        max_wait: float = 1.0,
        max_batch_size: int = 100,
    ) -> None:
        self._pattern = pattern
        self._regenerate_cb = regenerate
        self._interval = interval
        self._delay = delay
        self._max_wait = max_wait
        self._max_batch_size = max_batch_size

        self._snapshot: dict[pathlib.Path, int] = {}
        self._queue: asyncio.Queue[pathlib.Path] = asyncio.Queue()
        self._pending: set[pathlib.Path] = set()
        self._task = asyncutil.ExclusiveTask(self._regenerate)
        self._failure: Optional[asyncio.Future[None]] = None

    def scan(self) -> dict[pathlib.Path, int]:
        snapshot = {}
        for path in expand(self._pattern):
            try:
                snapshot[path] = path.stat().st_mtime_ns
            except FileNotFoundError:
                # Removed between the glob and the stat.
                continue
        return snapshot

    def poll(self) -> list[pathlib.Path]:
        """Return the files that appeared or changed since the last poll."""
        snapshot = self.scan()
        changed = [
            path for path, mtime in snapshot.items()
            if self._snapshot.get(path) != mtime
        ]
        for path in self._snapshot.keys() - snapshot.keys():
            logger.info('%s was removed', path)
        self._snapshot = snapshot
        return changed

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            for path in self.poll():
                logger.debug('%s changed', path)
                self._queue.put_nowait(path)

    async def _on_batch(self, batch: list[pathlib.Path]) -> None:
        self._pending.update(batch)
        self._task.schedule()

    async def _regenerate(self) -> None:
        paths = sorted(self._pending)
        self._pending.clear()
        if not paths:
            return
        try:
            await self._regenerate_cb(paths)
        except Exception as e:
            assert self._failure is not None
            if not self._failure.done():
                self._failure.set_exception(e)

    async def run(self) -> None:
        """Generate everything once, then follow changes until cancelled."""
        self._failure = asyncio.get_running_loop().create_future()
        self._snapshot = self.scan()
        self._pending.update(self._snapshot)
        self._task.schedule()
        await self._task.wait_idle()
        if self._failure.done():
            self._failure.result()

        logger.info('watching %s for changes', self._pattern)
        try:
            async with asyncio.TaskGroup() as g:
                g.create_task(self._poll_loop())
                g.create_task(asyncutil.debounce(
                    self._queue.get,
                    self._on_batch,
                    max_wait=self._max_wait,
                    delay_amt=self._delay,
                    max_batch_size=self._max_batch_size,
                ))
                await self._failure
        finally:
            await self._task.stop()
