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


"""The prepare/describe/sync exchange for one statement."""

from __future__ import annotations
from typing import TYPE_CHECKING, Optional

import asyncio
import logging

from sqlshape.common import debug
from sqlshape.pgwire import errors as pgerrors
from sqlshape.pgwire import events
from sqlshape.pgwire import protocol

from . import positions
from . import results
from .results import DescribeState

if TYPE_CHECKING:
    from . import engine
    from . import serializer


logger = logging.getLogger('sqlshape.introspect')


_BATCH_NOISE = (
    events.CloseCompleteEvent,
    events.ParseCompleteEvent,
    events.BindCompleteEvent,
    events.CommandCompleteEvent,
)


class _Describer:

    def __init__(self, sql: str, prefix_len: int) -> None:
        self.sql = sql
        self.prefix_len = prefix_len
        self.state = DescribeState.IDLE
        self.params: tuple[int, ...] = ()
        self.result: Optional[results.DescribeResult] = None

    def transition(self, state: DescribeState) -> None:
        if debug.flags.describe_trace:
            logger.debug('describe %r: %s -> %s',
                         self.sql[:60], self.state.value, state.value)
        self.state = state

    def feed(self, event: events.Event) -> None:
        if isinstance(event, events.ErrorEvent):
            self.result = positions.translate_error(event, self.prefix_len)
            self.transition(DescribeState.FAILED)

        elif self.state is DescribeState.AWAITING_PARAMS:
            if isinstance(event, events.ParameterListEvent):
                self.params = event.type_oids
                self.transition(DescribeState.AWAITING_ROWS)
            elif not isinstance(event, _BATCH_NOISE):
                self._unexpected(event)

        elif self.state is DescribeState.AWAITING_ROWS:
            # "SELECT;" describes a row of zero columns: nothing to type.
            if (isinstance(event, events.RowDescriptionEvent)
                    and event.fields):
                self.result = results.Success(
                    params=self.params,
                    columns=tuple(
                        results.ColumnDescriptor(
                            name=f.name,
                            type_oid=f.type_oid,
                            table_oid=f.table_oid,
                            column_ordinal=f.column_ordinal,
                        )
                        for f in event.fields
                    ),
                )
                self.transition(DescribeState.DONE)
            elif isinstance(event, (events.NoDataEvent,
                                    events.RowDescriptionEvent)):
                self.result = results.Success(params=self.params,
                                              columns=None)
                self.transition(DescribeState.DONE_NO_ROWS)
            else:
                self._unexpected(event)

        else:
            self._unexpected(event)

    def _unexpected(self, event: events.Event) -> None:
        raise pgerrors.ProtocolViolationError(
            f'unexpected {type(event).__name__} while describing '
            f'(state: {self.state.value})')


async def drive(
    session: engine.Session,
    ticket: serializer.Ticket,
    sql: str,
) -> results.DescribeResult:
    """Describe one statement.  The caller must hold the active ticket.

    Server-side rejections come back as a `Failure`; a broken connection
    raises `TransportError`.
    """
    session.serializer.check(ticket)

    wire = session.wire
    name = session.statement_name
    describer = _Describer(sql, positions.prefix_length(name))

    describer.transition(DescribeState.SENDING)
    try:
        wire.close_statement(name)
        wire.parse('', positions.wrap_statement(sql, name))
        wire.bind('', '')
        wire.execute('')
        wire.describe_statement(name)
        exchange = wire.sync('describe')
    except pgerrors.MessageEncodingError as e:
        # Nothing was sent; the connection is still idle.
        wire.discard_batch()
        failure = positions.unsendable_failure(sql, str(e))
        describer.result = failure
        describer.transition(DescribeState.FAILED)
        return failure
    except BaseException:
        wire.discard_batch()
        raise
    describer.transition(DescribeState.AWAITING_PARAMS)

    try:
        async with asyncio.timeout(session.describe_timeout):
            while not describer.state.is_terminal:
                describer.feed(await exchange.next_event())
            # Drain the rest of the batch so the connection is idle
            # again before the ticket moves on.
            exchange.abandon()
            try:
                await exchange.wait_ready()
            except pgerrors.TransportError as e:
                # The outcome is already known; whoever uses the
                # connection next gets the error.
                logger.debug('connection failed after describe: %s', e)
    except TimeoutError:
        exchange.abandon()
        logger.warning(
            'describe did not complete within %.1fs, cancelling it',
            session.describe_timeout)
        await _cancel(session.wire, session.describe_timeout)
        if describer.result is not None:
            return describer.result
        return results.Failure(
            message=(f'the server did not answer within '
                     f'{session.describe_timeout:g} seconds'),
            code=results.STALLED_CODE,
            stalled=True,
        )
    except BaseException:
        exchange.abandon()
        raise

    assert describer.result is not None
    return describer.result


async def _cancel(wire: protocol.WireSession, timeout: float) -> None:
    try:
        async with asyncio.timeout(timeout):
            await wire.cancel()
    except (OSError, TimeoutError) as e:
        logger.warning('could not send a cancel request: %s', e)
