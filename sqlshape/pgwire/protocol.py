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


"""A PostgreSQL wire session built directly on asyncio.Protocol.

Responses are correlated to requests by Sync boundaries: every call to
`WireSession.sync()` or `WireSession.simple_query()` opens an `Exchange`
and every ReadyForQuery the server sends closes the oldest open one.
Events are routed to the oldest open exchange only, so an exchange that
was abandoned by its caller still swallows its own late responses and
can never leak them into the next caller's exchange.
"""

from __future__ import annotations
from typing import Any, Optional

import asyncio
import collections
import enum
import hashlib
import logging
import ssl as ssl_module

from sqlshape.common import debug
from sqlshape.common import scram

from . import connparams
from . import errors
from . import events
from . import messages


logger = logging.getLogger('sqlshape.pgwire')


class ConnectionState(enum.Enum):
    NOT_CONNECTED = 0
    NEW = 1
    AUTHENTICATING = 2
    READY = 3
    CLOSED = 4


class Exchange:
    """Response channel for one Sync-delimited batch of commands."""

    def __init__(self, loop: asyncio.AbstractEventLoop, label: str) -> None:
        self._loop = loop
        self._label = label
        self._events: collections.deque[events.Event] = collections.deque()
        self._waiter: Optional[asyncio.Future] = None
        self._ready: asyncio.Future = loop.create_future()
        self._abandoned = False
        self._exc: Optional[BaseException] = None

    def __repr__(self) -> str:
        if self._abandoned:
            state = 'abandoned'
        elif self._ready.done():
            state = 'done'
        else:
            state = 'open'
        return f'<Exchange {self._label} {state}>'

    @property
    def label(self) -> str:
        return self._label

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    def done(self) -> bool:
        return self._ready.done()

    def abandon(self) -> None:
        """Stop receiving events.

        Remaining responses of this batch are discarded as they arrive,
        up to and including its ReadyForQuery.
        """
        self._abandoned = True
        self._events.clear()
        if self._waiter is not None and not self._waiter.done():
            self._waiter.cancel()

    async def next_event(self) -> events.Event:
        while not self._events:
            if self._exc is not None:
                raise self._exc
            if self._abandoned:
                raise errors.InterfaceError(
                    f'{self._label} exchange was abandoned')
            if self._ready.done():
                raise errors.InterfaceError(
                    f'{self._label} exchange has no more events')
            self._waiter = self._loop.create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None
        return self._events.popleft()

    async def wait_ready(self) -> events.ReadyEvent:
        return await asyncio.shield(self._ready)

    def _wake(self) -> None:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

    def _deliver(self, event: events.Event) -> None:
        if self._abandoned:
            if debug.flags.wire_trace:
                logger.debug('discarding %r for %r', event, self)
            return
        self._events.append(event)
        self._wake()

    def _complete(self, event: events.ReadyEvent) -> None:
        if not self._abandoned:
            self._events.append(event)
        if not self._ready.done():
            self._ready.set_result(event)
        self._wake()

    def _fail(self, exc: BaseException) -> None:
        self._exc = exc
        if not self._ready.done():
            self._ready.set_exception(exc)
            # Nobody may be waiting on the ready future.
            self._ready.exception()
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_exception(exc)


class WireSession(asyncio.Protocol):
    """One authenticated connection to a PostgreSQL backend."""

    def __init__(
        self,
        address: connparams.Address,
        params: connparams.ConnectionParams,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._address = address
        self._params = params
        self._loop = loop

        self._transport: Optional[asyncio.Transport] = None
        self._reader = messages.FrameReader()
        self._state = ConnectionState.NOT_CONNECTED
        self._connect_waiter: asyncio.Future = loop.create_future()
        self._scram: Optional[scram.SCRAMClient] = None

        self._batch: list[bytes] = []
        self._exchanges: collections.deque[Exchange] = collections.deque()
        self._exchange_counter = 0
        self._close_exc: Optional[BaseException] = None

        self.server_parameters: dict[str, str] = {}
        self.backend_pid: Optional[int] = None
        self._backend_secret: Optional[int] = None

    def __repr__(self) -> str:
        return (f'<WireSession {self._address} pid={self.backend_pid} '
                f'{self._state.name}>')

    @property
    def address(self) -> connparams.Address:
        return self._address

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_closed(self) -> bool:
        return self._state is ConnectionState.CLOSED

    def is_idle(self) -> bool:
        return not self._exchanges and not self._batch

    # asyncio.Protocol

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore [assignment]
        self._state = ConnectionState.NEW
        self._write(messages.startup_message(self._startup_params()))
        self._state = ConnectionState.AUTHENTICATING

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is None:
            err = errors.ConnectionLostError(
                f'connection to {self._address} was closed')
        else:
            err = errors.ConnectionLostError(
                f'connection to {self._address} was lost: {exc}')
            err.__cause__ = exc
        self._abort(err)

    def data_received(self, data: bytes) -> None:
        self._reader.feed(data)
        try:
            for mtype, payload in self._reader:
                if debug.flags.wire_trace:
                    logger.debug('<- %s %r', mtype.decode(), payload)
                if self._state is ConnectionState.READY:
                    self._process_frame(mtype, payload)
                elif self._state is ConnectionState.AUTHENTICATING:
                    self._process_startup_frame(mtype, payload)
                else:
                    break
        except errors.Error as e:
            logger.error('%r: %s', self, e)
            self._abort(e)
            if self._transport is not None:
                self._transport.abort()
        except scram.SCRAMError as e:
            err = errors.AuthenticationError(str(e))
            self._abort(err)
            if self._transport is not None:
                self._transport.abort()

    # Startup

    def _startup_params(self) -> dict[str, str]:
        params = {
            'user': self._params.user or '',
            'database': self._params.database or '',
            'application_name': 'sqlshape',
            'client_encoding': 'UTF8',
        }
        params.update(self._params.server_settings)
        return params

    async def wait_connected(self) -> None:
        await self._connect_waiter

    def _process_startup_frame(self, mtype: bytes, payload: bytes) -> None:
        if mtype == messages.AUTHENTICATION:
            code, data = messages.parse_authentication(payload)
            self._authenticate(code, data)

        elif mtype == messages.PARAMETER_STATUS:
            name, value = messages.parse_parameter_status(payload)
            self.server_parameters[name] = value

        elif mtype == messages.BACKEND_KEY_DATA:
            self.backend_pid, self._backend_secret = (
                messages.parse_backend_key_data(payload))

        elif mtype == messages.READY_FOR_QUERY:
            self._state = ConnectionState.READY
            if not self._connect_waiter.done():
                self._connect_waiter.set_result(None)

        elif mtype == messages.ERROR_RESPONSE:
            exc = errors.BackendError.from_fields(
                messages.parse_fields(payload))
            self._abort(exc)
            if self._transport is not None:
                self._transport.close()

        elif mtype == messages.NOTICE_RESPONSE:
            self._log_notice(payload)

        elif mtype == messages.NEGOTIATE_PROTOCOL_VERSION:
            # Sent when the server does not know some startup option;
            # it carries on with 3.0 regardless.
            logger.debug('%r: server negotiated protocol version down',
                         self)

        else:
            raise errors.ProtocolViolationError(
                f'unexpected message {mtype!r} during startup')

    def _authenticate(self, code: int, data: bytes) -> None:
        if code == messages.AUTH_OK:
            self._scram = None
            return

        password = self._params.password
        if code in {messages.AUTH_CLEARTEXT_PASSWORD,
                    messages.AUTH_MD5_PASSWORD,
                    messages.AUTH_SASL} and password is None:
            raise errors.AuthenticationError(
                f'server at {self._address} requested a password '
                f'but none was provided')

        if code == messages.AUTH_CLEARTEXT_PASSWORD:
            self._write(messages.password_message(password.encode()))

        elif code == messages.AUTH_MD5_PASSWORD:
            user = (self._params.user or '').encode()
            inner = hashlib.md5(password.encode() + user).hexdigest()
            outer = hashlib.md5(inner.encode() + data[:4]).hexdigest()
            self._write(messages.password_message(b'md5' + outer.encode()))

        elif code == messages.AUTH_SASL:
            mechanisms = messages.parse_sasl_mechanisms(data)
            if scram.MECHANISM not in mechanisms:
                raise errors.AuthenticationError(
                    f'unsupported SASL mechanisms: {mechanisms!r}')
            self._scram = scram.SCRAMClient(password)
            self._write(messages.sasl_initial_response(
                scram.MECHANISM, self._scram.client_first_message()))

        elif code == messages.AUTH_SASL_CONTINUE:
            if self._scram is None:
                raise errors.ProtocolViolationError(
                    'SASL continuation without SASL start')
            self._write(messages.sasl_response(
                self._scram.client_final_message(data)))

        elif code == messages.AUTH_SASL_FINAL:
            if self._scram is None:
                raise errors.ProtocolViolationError(
                    'SASL final message without SASL start')
            self._scram.verify_server_final(data)

        else:
            raise errors.AuthenticationError(
                f'unsupported authentication method requested by the '
                f'server: {code}')

    # Steady state

    def _process_frame(self, mtype: bytes, payload: bytes) -> None:
        if mtype == messages.NOTICE_RESPONSE:
            self._log_notice(payload)
            return

        if mtype == messages.PARAMETER_STATUS:
            name, value = messages.parse_parameter_status(payload)
            self.server_parameters[name] = value
            return

        if mtype == messages.NOTIFICATION_RESPONSE:
            return

        event = messages.decode_event(mtype, payload)
        if event is None:
            raise errors.ProtocolViolationError(
                f'unexpected message {mtype!r}')

        if not self._exchanges:
            if isinstance(event, events.ErrorEvent):
                # FATAL errors (admin shutdown, idle timeouts) may arrive
                # between exchanges; the connection closes right after.
                logger.warning('%r: server error outside of an exchange: '
                               '%s', self, event.message)
                return
            raise errors.ProtocolViolationError(
                f'{event!r} received with no exchange in progress')

        head = self._exchanges[0]
        if isinstance(event, events.ReadyEvent):
            self._exchanges.popleft()
            head._complete(event)
        else:
            head._deliver(event)

    def _log_notice(self, payload: bytes) -> None:
        fields = messages.parse_fields(payload)
        logger.info('%s: %s', fields.get(errors.FIELD_SEVERITY, 'NOTICE'),
                    fields.get(errors.FIELD_MESSAGE, ''))

    def _abort(self, exc: BaseException) -> None:
        if self._close_exc is None:
            self._close_exc = exc
        self._state = ConnectionState.CLOSED
        if not self._connect_waiter.done():
            self._connect_waiter.set_exception(exc)
        while self._exchanges:
            self._exchanges.popleft()._fail(exc)
        self._batch.clear()

    # Commands

    def _check_open(self) -> None:
        if self._state is ConnectionState.CLOSED:
            exc = errors.ConnectionLostError(
                f'connection to {self._address} is closed')
            if self._close_exc is not None:
                exc.__cause__ = self._close_exc
            raise exc
        if self._state is not ConnectionState.READY:
            raise errors.InterfaceError('connection is not ready')

    def _write(self, data: bytes) -> None:
        if debug.flags.wire_trace:
            logger.debug('-> %r', data)
        assert self._transport is not None
        self._transport.write(data)

    def _queue(self, data: bytes) -> None:
        self._check_open()
        self._batch.append(data)

    def close_statement(self, name: str) -> None:
        self._queue(messages.close_statement(name))

    def parse(self, name: str, sql: str, param_types=()) -> None:
        self._queue(messages.parse(name, sql, param_types))

    def bind(self, portal: str, statement: str, params=()) -> None:
        self._queue(messages.bind(portal, statement, params))

    def execute(self, portal: str, max_rows: int = 0) -> None:
        self._queue(messages.execute(portal, max_rows))

    def describe_statement(self, name: str) -> None:
        self._queue(messages.describe_statement(name))

    def _open_exchange(self, label: str) -> Exchange:
        self._exchange_counter += 1
        ex = Exchange(self._loop, f'{label}#{self._exchange_counter}')
        self._exchanges.append(ex)
        return ex

    def sync(self, label: str = 'batch') -> Exchange:
        """Send the queued commands followed by Sync.

        Returns the exchange that receives every response to the batch.
        """
        self._check_open()
        self._batch.append(messages.sync())
        data = b''.join(self._batch)
        self._batch.clear()
        ex = self._open_exchange(label)
        self._write(data)
        return ex

    def simple_query(self, sql: str) -> Exchange:
        self._check_open()
        if self._batch:
            raise errors.InterfaceError(
                'cannot send a simple query while extended-protocol '
                'commands are queued')
        ex = self._open_exchange('query')
        self._write(messages.query(sql))
        return ex

    def discard_batch(self) -> None:
        self._batch.clear()

    async def cancel(self) -> None:
        """Ask the server to cancel whatever this connection is running.

        The request travels over a separate connection; the effect on
        this one, if any, is an ErrorResponse in the current exchange.
        """
        if self.backend_pid is None or self._backend_secret is None:
            return

        addr = self._address
        if addr.is_unix_socket:
            _, writer = await asyncio.open_unix_connection(addr.socket_path)
        else:
            _, writer = await asyncio.open_connection(addr.host, addr.port)
        try:
            writer.write(messages.cancel_request(
                self.backend_pid, self._backend_secret))
            await writer.drain()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    def terminate(self) -> None:
        if self._transport is None or self.is_closed():
            return
        try:
            self._transport.write(messages.terminate())
        finally:
            self._transport.close()
            self._abort(errors.ConnectionLostError(
                f'connection to {self._address} was terminated'))


class _TLSUpgradeProtocol(asyncio.Protocol):

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.on_data: asyncio.Future[bool] = loop.create_future()

    def data_received(self, data: bytes) -> None:
        if not self.on_data.done():
            if data[:1] == b'S':
                self.on_data.set_result(True)
            elif data[:1] == b'N':
                self.on_data.set_result(False)
            else:
                self.on_data.set_exception(errors.ProtocolViolationError(
                    f'unexpected response to SSLRequest: {data[:1]!r}'))

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if not self.on_data.done():
            self.on_data.set_exception(errors.ConnectionLostError(
                'connection closed during TLS negotiation'))


def _make_ssl_context(
    params: connparams.ConnectionParams,
) -> ssl_module.SSLContext:
    sslmode = params.sslmode or connparams.SSLMode.prefer
    if sslmode >= connparams.SSLMode.verify_ca:
        ctx = ssl_module.create_default_context(cafile=params.sslrootcert)
        ctx.check_hostname = sslmode is connparams.SSLMode.verify_full
    else:
        ctx = ssl_module.SSLContext(ssl_module.PROTOCOL_TLS_CLIENT)
        ctx.check_hostname = False
        ctx.verify_mode = ssl_module.CERT_NONE
    return ctx


async def _connect_addr(
    address: connparams.Address,
    params: connparams.ConnectionParams,
    loop: asyncio.AbstractEventLoop,
) -> WireSession:
    session = WireSession(address, params, loop)
    sslmode = params.sslmode or connparams.SSLMode.prefer

    if address.is_unix_socket:
        await loop.create_unix_connection(lambda: session,
                                          address.socket_path)

    # "allow" starts without TLS and so does "disable".
    elif sslmode <= connparams.SSLMode.allow:
        await loop.create_connection(lambda: session,
                                     address.host, address.port)

    else:
        tr: Any
        tr, upgrade = await loop.create_connection(
            lambda: _TLSUpgradeProtocol(loop), address.host, address.port)
        try:
            tr.write(messages.ssl_request())
            if await upgrade.on_data:
                tr = await loop.start_tls(
                    tr, upgrade, _make_ssl_context(params),
                    server_hostname=address.host)
            elif sslmode >= connparams.SSLMode.require:
                raise ConnectionError(
                    f'server at {address} does not support SSL')
        except BaseException:
            tr.close()
            raise
        tr.set_protocol(session)
        session.connection_made(tr)

    try:
        await session.wait_connected()
    except BaseException:
        session.terminate()
        raise

    logger.debug('connected to %s as %r, backend pid %s',
                 address, params.user, session.backend_pid)
    return session


async def connect(
    params: connparams.ConnectionParams,
    *,
    timeout: Optional[float] = None,
) -> WireSession:
    """Open and authenticate a wire session.

    Addresses are tried in order; the error of the last one is raised if
    none succeeds.
    """
    loop = asyncio.get_running_loop()
    params = params.resolve()
    if timeout is None:
        timeout = params.connect_timeout or 60

    last_ex: Optional[BaseException] = None
    for address in params.addresses:
        try:
            async with asyncio.timeout(timeout):
                return await _connect_addr(address, params, loop)
        except (OSError, TimeoutError, errors.TransportError) as ex:
            logger.debug('could not connect to %s: %s', address, ex)
            last_ex = ex

    assert last_ex is not None
    raise last_ex
