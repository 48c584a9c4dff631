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


"""An in-memory PostgreSQL backend speaking real protocol frames.

It understands exactly what sqlshape sends: startup and authentication,
the ``PREPARE``-wrapping describe batch, simple queries and cancel
requests.  Every response to a batch is delivered `latency` seconds
after its Sync, so tests on a virtual clock can reason about timing.
"""

from __future__ import annotations
from typing import Callable, Optional, Sequence

import asyncio
import base64
import collections
import dataclasses
import hashlib
import hmac
import re

from sqlshape import catalog
from sqlshape.common import scram
from sqlshape.introspect import engine
from sqlshape.pgwire import connparams
from sqlshape.pgwire import errors
from sqlshape.pgwire import events
from sqlshape.pgwire import messages
from sqlshape.pgwire import protocol


@dataclasses.dataclass(frozen=True)
class Described:
    params: Sequence[int] = ()
    columns: Optional[Sequence[events.FieldDescription]] = None


@dataclasses.dataclass(frozen=True)
class Rejected:
    message: str
    code: str = '42601'
    # 1-based, into the statement as the client wrote it.
    position: Optional[int] = None
    # 'parse' for syntax errors, 'execute' for analysis errors.
    at: str = 'execute'
    detail: Optional[str] = None
    hint: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class Stall:
    """The backend hangs on this statement until cancelled."""


Outcome = Described | Rejected | Stall


def field(
    name: str,
    type_oid: int,
    table_oid: int = 0,
    column_ordinal: int = 0,
) -> events.FieldDescription:
    return events.FieldDescription(
        name=name,
        table_oid=table_oid,
        column_ordinal=column_ordinal,
        type_oid=type_oid,
        type_size=-1,
        type_modifier=-1,
        format_code=0,
    )


# oid, typname, typcategory, typelem
DEFAULT_TYPES = (
    ('16', 'bool', 'B', '0'),
    ('17', 'bytea', 'U', '0'),
    ('20', 'int8', 'N', '0'),
    ('21', 'int2', 'N', '0'),
    ('23', 'int4', 'N', '0'),
    ('25', 'text', 'S', '0'),
    ('114', 'json', 'U', '0'),
    ('700', 'float4', 'N', '0'),
    ('701', 'float8', 'N', '0'),
    ('705', 'unknown', 'X', '0'),
    ('1007', '_int4', 'A', '23'),
    ('1009', '_text', 'A', '25'),
    ('1043', 'varchar', 'S', '0'),
    ('1082', 'date', 'D', '0'),
    ('1114', 'timestamp', 'D', '0'),
    ('1184', 'timestamptz', 'D', '0'),
    ('1700', 'numeric', 'N', '0'),
    ('2950', 'uuid', 'U', '0'),
    ('3802', 'jsonb', 'U', '0'),
)

_prepare_re = re.compile(r'^PREPARE\s+(\S+)\s+AS\s', re.DOTALL)


class _ScramServer:

    def __init__(self, password: str, *, iterations: int = 4096) -> None:
        self._salt = b'fakepg-salt'
        self._iterations = iterations
        salted = scram.get_salted_password(
            scram.normalize_password(password).encode(), self._salt,
            iterations)
        self._stored_key = scram.H(scram.get_client_key(salted))
        self._server_key = scram.get_server_key(salted)
        self._client_first_bare = ''
        self._server_first = ''
        self._nonce = ''

    def first(self, client_first: bytes) -> bytes:
        msg = client_first.decode()
        # gs2 header "n,," then the bare message.
        self._client_first_bare = msg.split(',', 2)[2]
        client_nonce = self._client_first_bare.split('r=', 1)[1]
        self._nonce = client_nonce + scram.B64(b'server-nonce')
        self._server_first = (
            f'r={self._nonce},s={scram.B64(self._salt)},'
            f'i={self._iterations}')
        return self._server_first.encode()

    def final(self, client_final: bytes) -> Optional[bytes]:
        msg = client_final.decode()
        without_proof, _, proof = msg.rpartition(',p=')
        auth_message = (
            f'{self._client_first_bare},{self._server_first},'
            f'{without_proof}'
        ).encode()
        client_key = scram.XOR(
            base64.b64decode(proof),
            scram.HMAC(self._stored_key, auth_message))
        if not hmac.compare_digest(scram.H(client_key), self._stored_key):
            return None
        return b'v=' + scram.B64(
            scram.HMAC(self._server_key, auth_message)).encode()


class FakeTransport(asyncio.Transport):

    def __init__(self, backend: FakeBackend,
                 protocol: asyncio.Protocol,
                 loop: asyncio.AbstractEventLoop) -> None:
        super().__init__()
        self._backend = backend
        self._protocol = protocol
        self._loop = loop
        self._closing = False

    def write(self, data) -> None:
        if self._closing:
            return
        self._backend.receive(bytes(data))

    def is_closing(self) -> bool:
        return self._closing

    def close(self) -> None:
        self._lose(None)

    def abort(self) -> None:
        self._lose(None)

    def _lose(self, exc: Optional[Exception]) -> None:
        if self._closing:
            return
        self._closing = True
        self._loop.call_soon(self._protocol.connection_lost, exc)

    def get_extra_info(self, name, default=None):
        return default


class FakeBackend:
    """A scripted single-connection server.

    ``statements`` maps the statement text the client asked to describe
    to its outcome.  Unknown statements are rejected as syntax errors.
    """

    def __init__(
        self,
        *,
        statements: Optional[dict[str, Outcome]] = None,
        resolve: Optional[Callable[[str], Optional[Outcome]]] = None,
        queries: Optional[dict[str, Sequence[tuple]]] = None,
        types: Sequence[tuple] = DEFAULT_TYPES,
        tables: Sequence[tuple] = (),
        auth: str = 'trust',
        user: str = 'postgres',
        password: Optional[str] = None,
        latency: float = 0.0,
        pid: int = 4242,
        secret: int = 1234,
    ) -> None:
        self.statements = dict(statements or {})
        self._resolve = resolve
        self.queries = {k.strip(): list(v) for k, v in (queries or {}).items()}
        self.queries.setdefault(catalog.TYPES_QUERY.strip(), list(types))
        self.queries.setdefault(catalog.TABLES_QUERY.strip(), list(tables))
        self.auth = auth
        self.user = user
        self.password = password
        self.latency = latency
        self.pid = pid
        self.secret = secret

        self.frames: list[tuple[bytes, bytes]] = []
        self.batches: list[list[bytes]] = []
        self.described: list[str] = []
        self.prepared: dict[str, Outcome] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancel_requests = 0
        self.startup_params: dict[str, str] = {}

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._transport: Optional[FakeTransport] = None
        self._protocol: Optional[asyncio.Protocol] = None
        self._buffer = bytearray()
        self._started = False
        self._authenticated = False
        self._scram: Optional[_ScramServer] = None
        self._out: list[bytes] = []
        self._backlog: collections.deque[tuple[bytes, bytes]] = (
            collections.deque())
        self._batch: list[bytes] = []
        self._skipping = False
        self._stalled = False
        self._unnamed: Optional[tuple[str, str]] = None

    # Wiring

    def attach(self, transport: FakeTransport, protocol: asyncio.Protocol,
               loop: asyncio.AbstractEventLoop) -> None:
        self._transport = transport
        self._protocol = protocol
        self._loop = loop

    def drop(self) -> None:
        """Simulate the connection going away."""
        assert self._transport is not None
        self._transport.close()

    # Delivery

    def _send(self, data: bytes) -> None:
        self._out.append(data)

    def _flush(self, *, ready: bool = False) -> None:
        data = b''.join(self._out)
        self._out.clear()
        assert self._loop is not None
        self._loop.call_later(self.latency, self._deliver, data, ready)

    def _deliver(self, data: bytes, ready: bool) -> None:
        if ready:
            self.in_flight -= 1
        if self._transport is None or self._transport.is_closing():
            return
        if data:
            assert self._protocol is not None
            self._protocol.data_received(data)

    # Frontend input

    def receive(self, data: bytes) -> None:
        self._buffer += data
        if not self._started:
            if len(self._buffer) < 4:
                return
            length = int.from_bytes(self._buffer[:4], 'big')
            if len(self._buffer) < length:
                return
            payload = bytes(self._buffer[4:length])
            del self._buffer[:length]
            self._started = True
            self._startup(payload)

        while len(self._buffer) >= 5:
            mtype = bytes(self._buffer[:1])
            length = int.from_bytes(self._buffer[1:5], 'big')
            if len(self._buffer) < length + 1:
                break
            payload = bytes(self._buffer[5:length + 1])
            del self._buffer[:length + 1]
            self.frames.append((mtype, payload))
            self._backlog.append((mtype, payload))

        self._pump()

    def _pump(self) -> None:
        while self._backlog and not self._stalled:
            mtype, payload = self._backlog.popleft()
            if mtype == b'X':
                assert self._transport is not None
                self._transport.close()
            elif not self._authenticated:
                self._auth_frame(mtype, payload)
            else:
                self._frame(mtype, payload)

    # Startup

    def _startup(self, payload: bytes) -> None:
        reader = messages.PayloadReader(payload)
        version = reader.int32()
        assert version == messages.PROTOCOL_VERSION, version
        params = {}
        while not reader.at_end():
            key = reader.cstr()
            params[key] = reader.cstr()
        self.startup_params = params

        if self.auth == 'trust':
            self._auth_ok()
        elif self.auth == 'cleartext':
            self._send(messages.authentication(
                messages.AUTH_CLEARTEXT_PASSWORD))
            self._flush()
        elif self.auth == 'md5':
            self._send(messages.authentication(
                messages.AUTH_MD5_PASSWORD, b'salt'))
            self._flush()
        elif self.auth == 'scram':
            self._send(messages.authentication(
                messages.AUTH_SASL, scram.MECHANISM.encode() + b'\x00\x00'))
            self._flush()
        else:
            raise ValueError(f'unknown auth method {self.auth!r}')

    def _auth_ok(self) -> None:
        self._authenticated = True
        self._send(messages.authentication(messages.AUTH_OK))
        self._send(messages.parameter_status('server_version', '16.4'))
        self._send(messages.parameter_status('client_encoding', 'UTF8'))
        self._send(messages.backend_key_data(self.pid, self.secret))
        self._send(messages.ready_for_query('I'))
        self._flush()

    def _auth_failed(self) -> None:
        self._send(messages.error_response({
            errors.FIELD_SEVERITY: 'FATAL',
            errors.FIELD_CODE: '28P01',
            errors.FIELD_MESSAGE:
                f'password authentication failed for user "{self.user}"',
        }))
        self._flush()
        assert self._loop is not None and self._transport is not None
        self._loop.call_later(self.latency, self._transport.close)

    def _auth_frame(self, mtype: bytes, payload: bytes) -> None:
        assert mtype == b'p', mtype
        password = self.password or ''

        if self.auth == 'cleartext':
            if payload.rstrip(b'\x00').decode() == password:
                self._auth_ok()
            else:
                self._auth_failed()

        elif self.auth == 'md5':
            inner = hashlib.md5(
                password.encode() + self.user.encode()).hexdigest()
            expected = 'md5' + hashlib.md5(
                inner.encode() + b'salt').hexdigest()
            if payload.rstrip(b'\x00').decode() == expected:
                self._auth_ok()
            else:
                self._auth_failed()

        elif self._scram is None:
            reader = messages.PayloadReader(payload)
            assert reader.cstr() == scram.MECHANISM
            length = reader.int32()
            self._scram = _ScramServer(password)
            self._send(messages.authentication(
                messages.AUTH_SASL_CONTINUE,
                self._scram.first(reader.take(length))))
            self._flush()

        else:
            final = self._scram.final(payload)
            if final is None:
                self._auth_failed()
                return
            self._send(messages.authentication(
                messages.AUTH_SASL_FINAL, final))
            self._auth_ok()

    # Statements

    def outcome(self, sql: str) -> Outcome:
        if self._resolve is not None:
            rv = self._resolve(sql)
            if rv is not None:
                return rv
        try:
            return self.statements[sql]
        except KeyError:
            return Rejected(
                f'syntax error at or near "{sql.split()[0] if sql else ""}"',
                code='42601', position=1, at='parse')

    def _error(self, message: str, code: str, *,
               position: Optional[int] = None,
               detail: Optional[str] = None,
               hint: Optional[str] = None) -> None:
        fields = {
            errors.FIELD_SEVERITY: 'ERROR',
            errors.FIELD_SEVERITY_NONLOCALIZED: 'ERROR',
            errors.FIELD_CODE: code,
            errors.FIELD_MESSAGE: message,
        }
        if position is not None:
            fields[errors.FIELD_POSITION] = str(position)
        if detail is not None:
            fields[errors.FIELD_DETAIL] = detail
        if hint is not None:
            fields[errors.FIELD_HINT] = hint
        self._send(messages.error_response(fields))
        self._skipping = True

    def _reject(self, outcome: Rejected, prefix_len: int) -> None:
        self._error(
            outcome.message, outcome.code,
            position=(None if outcome.position is None
                      else outcome.position + prefix_len),
            detail=outcome.detail, hint=outcome.hint)

    def _frame(self, mtype: bytes, payload: bytes) -> None:
        self._batch.append(mtype)

        if mtype == b'S':
            self.batches.append(self._batch)
            self._batch = []
            self._skipping = False
            self._unnamed = None
            self._send(messages.ready_for_query('I'))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self._flush(ready=True)
            return

        if mtype == b'Q':
            self._batch = []
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self._simple_query(messages.PayloadReader(payload).cstr())
            self._send(messages.ready_for_query('I'))
            self._flush(ready=True)
            return

        if self._skipping:
            return

        reader = messages.PayloadReader(payload)

        if mtype == b'C':
            kind = reader.take(1)
            assert kind == b'S'
            self.prepared.pop(reader.cstr(), None)
            self._send(messages.close_complete())

        elif mtype == b'P':
            reader.cstr()
            text = reader.cstr()
            m = _prepare_re.match(text)
            if m is None:
                self._error('only PREPARE is supported here', '0A000')
                return
            name, sql = m.group(1), text[m.end():]
            self.described.append(sql)
            outcome = self.outcome(sql)
            if isinstance(outcome, Rejected) and outcome.at == 'parse':
                self._reject(outcome, m.end())
                return
            self._unnamed = (name, sql)
            self._send(messages.parse_complete())

        elif mtype == b'B':
            self._send(messages.bind_complete())

        elif mtype == b'E':
            assert self._unnamed is not None
            name, sql = self._unnamed
            if name in self.prepared:
                self._error(
                    f'prepared statement "{name}" already exists', '42P05')
                return
            outcome = self.outcome(sql)
            if isinstance(outcome, Stall):
                self._stalled = True
                return
            if isinstance(outcome, Rejected):
                self._reject(outcome, len(f'PREPARE {name} AS '))
                return
            self.prepared[name] = outcome
            self._send(messages.command_complete('PREPARE'))

        elif mtype == b'D':
            kind = reader.take(1)
            assert kind == b'S'
            name = reader.cstr()
            outcome = self.prepared.get(name)
            if outcome is None:
                self._error(
                    f'prepared statement "{name}" does not exist', '26000')
                return
            assert isinstance(outcome, Described)
            self._send(messages.parameter_description(outcome.params))
            if outcome.columns is None:
                self._send(messages.no_data())
            else:
                self._send(messages.row_description(outcome.columns))

        else:
            raise AssertionError(f'unexpected frontend message {mtype!r}')

    def _simple_query(self, sql: str) -> None:
        rows = self.queries.get(sql.strip())
        if rows is None:
            self._error(f'unrecognized query: {sql[:40]!r}', '42601')
            self._skipping = False
            return
        width = len(rows[0]) if rows else 0
        self._send(messages.row_description(
            [field(f'col{i}', 25) for i in range(width)]))
        for row in rows:
            self._send(messages.data_row(
                [None if v is None else str(v).encode() for v in row]))
        self._send(messages.command_complete(f'SELECT {len(rows)}'))

    def cancel_request(self, pid: int, secret: int) -> None:
        self.cancel_requests += 1
        if pid != self.pid or secret != self.secret or not self._stalled:
            return
        self._stalled = False
        self._error('canceling statement due to user request', '57014')
        self._pump()


class FakeWireSession(protocol.WireSession):

    def __init__(self, backend: FakeBackend, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._backend = backend

    async def cancel(self) -> None:
        if self.backend_pid is None or self._backend_secret is None:
            return
        # A real cancel request travels over its own connection.
        await asyncio.sleep(0)
        self._backend.cancel_request(self.backend_pid, self._backend_secret)


async def connect_wire(
    backend: FakeBackend,
    *,
    password: Optional[str] = None,
) -> FakeWireSession:
    loop = asyncio.get_running_loop()
    params = connparams.ConnectionParams(
        host='fakepg', port=5432, user=backend.user,
        password=password, database='postgres',
    )
    wire = FakeWireSession(
        backend, connparams.Address('fakepg', 5432), params, loop)
    transport = FakeTransport(backend, wire, loop)
    backend.attach(transport, wire, loop)
    wire.connection_made(transport)
    await wire.wait_connected()
    return wire


async def connect(
    backend: FakeBackend,
    *,
    password: Optional[str] = None,
    describe_timeout: float = engine.DEFAULT_DESCRIBE_TIMEOUT,
) -> engine.Session:
    wire = await connect_wire(backend, password=password)
    return engine.Session(wire, describe_timeout=describe_timeout)
