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


"""Statement introspection over one shared wire session."""

from __future__ import annotations
from typing import Optional

import logging

from sqlshape.common import log
from sqlshape.pgwire import connparams
from sqlshape.pgwire import errors as pgerrors
from sqlshape.pgwire import events
from sqlshape.pgwire import protocol

from . import driver
from . import positions
from . import results
from . import serializer


logger = logging.getLogger('sqlshape.introspect')

DEFAULT_DESCRIBE_TIMEOUT = 30.0

Row = tuple[Optional[str], ...]


class Session:
    """Exclusive-access handle around a single wire session.

    Every use of the wire session goes through `serializer`, so at most
    one exchange is ever in flight.
    """

    def __init__(
        self,
        wire: protocol.WireSession,
        *,
        statement_name: str = positions.STATEMENT_NAME,
        describe_timeout: float = DEFAULT_DESCRIBE_TIMEOUT,
    ) -> None:
        self.wire = wire
        self.serializer = serializer.AccessSerializer()
        self.statement_name = statement_name
        self.describe_timeout = describe_timeout

    def __repr__(self) -> str:
        return f'<Session {self.wire!r}>'

    def is_closed(self) -> bool:
        return self.wire.is_closed()

    def _fail(self, exc: pgerrors.TransportError) -> None:
        logger.error('introspection connection failed: %s', exc)
        self.serializer.close(exc)
        self.wire.terminate()

    async def describe(
        self,
        sql: str,
        *,
        label: Optional[str] = None,
    ) -> results.DescribeResult:
        async with self.serializer.hold() as ticket:
            with log.describing(self.wire.backend_pid, label or sql):
                try:
                    return await driver.drive(self, ticket, sql)
                except pgerrors.TransportError as e:
                    self._fail(e)
                    raise

    async def fetch(self, sql: str) -> list[Row]:
        """Run a simple query and return its rows in text format.

        Only used for catalog queries; a server error is raised.
        """
        async with self.serializer.hold() as ticket:
            self.serializer.check(ticket)
            try:
                return await self._fetch(sql)
            except pgerrors.TransportError as e:
                self._fail(e)
                raise

    async def _fetch(self, sql: str) -> list[Row]:
        exchange = self.wire.simple_query(sql)
        rows: list[Row] = []
        error: Optional[events.ErrorEvent] = None
        try:
            while True:
                event = await exchange.next_event()
                if isinstance(event, events.DataRowEvent):
                    rows.append(tuple(
                        None if v is None else v.decode('utf-8')
                        for v in event.values
                    ))
                elif isinstance(event, events.ErrorEvent):
                    error = event
                elif isinstance(event, events.ReadyEvent):
                    break
        except BaseException:
            exchange.abandon()
            raise

        if error is not None:
            raise error.to_exception()
        return rows

    async def close(self) -> None:
        if self.is_closed():
            return
        async with self.serializer.hold():
            self.wire.terminate()
        self.serializer.close(pgerrors.ConnectionLostError(
            'introspection session is closed'))


async def describe(session: Session, sql: str) -> results.DescribeResult:
    return await session.describe(sql)


async def connect(
    params: connparams.ConnectionParams,
    *,
    describe_timeout: float = DEFAULT_DESCRIBE_TIMEOUT,
    connect_timeout: Optional[float] = None,
) -> Session:
    wire = await protocol.connect(params, timeout=connect_timeout)
    log.bind_session(wire.backend_pid)
    return Session(wire, describe_timeout=describe_timeout)
