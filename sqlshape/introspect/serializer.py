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


"""FIFO mutual exclusion over a single wire session."""

from __future__ import annotations
from typing import AsyncIterator, Optional

import asyncio
import collections
import contextlib
import itertools
import logging

from sqlshape.errors import SerializationMisuseError


logger = logging.getLogger('sqlshape.introspect')


class Ticket:
    """Proof of exclusive access, valid until released."""

    __slots__ = ('_serializer', '_number', '_released')

    def __init__(self, serializer: AccessSerializer, number: int) -> None:
        self._serializer = serializer
        self._number = number
        self._released = False

    def __repr__(self) -> str:
        state = 'released' if self._released else 'held'
        return f'<Ticket #{self._number} {state}>'

    @property
    def number(self) -> int:
        return self._number

    @property
    def active(self) -> bool:
        return self._serializer._active is self


class AccessSerializer:
    """Grants tickets one at a time, in the order they were requested."""

    def __init__(self) -> None:
        self._waiters: collections.deque[asyncio.Future[Ticket]] = (
            collections.deque())
        self._active: Optional[Ticket] = None
        self._counter = itertools.count(1)
        self._closed_exc: Optional[BaseException] = None

    @property
    def locked(self) -> bool:
        return self._active is not None

    def count_waiters(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def _grant(self) -> Ticket:
        ticket = Ticket(self, next(self._counter))
        self._active = ticket
        return ticket

    async def acquire(self) -> Ticket:
        if self._closed_exc is not None:
            raise self._closed_exc

        if self._active is None and not self._waiters:
            return self._grant()

        waiter: asyncio.Future[Ticket] = (
            asyncio.get_running_loop().create_future())
        self._waiters.append(waiter)
        try:
            return await waiter
        except BaseException:
            try:
                self._waiters.remove(waiter)
            except ValueError:
                # Already popped by release().
                pass
            if (waiter.done() and not waiter.cancelled()
                    and waiter.exception() is None):
                # Handed the ticket but cancelled before resuming.
                self.release(waiter.result())
            raise

    def release(self, ticket: Ticket) -> None:
        if ticket._released:
            return
        if self._active is not ticket:
            raise SerializationMisuseError(
                f'{ticket!r} is not the active ticket')
        ticket._released = True
        self._active = None

        if self._closed_exc is not None:
            return

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(self._grant())
                break

    def check(self, ticket: Optional[Ticket]) -> None:
        if ticket is None or self._active is not ticket:
            raise SerializationMisuseError(
                'session accessed without holding the active ticket')

    def close(self, exc: BaseException) -> None:
        """Fail every queued caller and every future acquire with exc."""
        if self._closed_exc is not None:
            return
        self._closed_exc = exc
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(exc)
        logger.debug('access serializer closed: %s', exc)

    @contextlib.asynccontextmanager
    async def hold(self) -> AsyncIterator[Ticket]:
        ticket = await self.acquire()
        try:
            yield ticket
        finally:
            self.release(ticket)
