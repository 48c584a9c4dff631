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


"""Frame codec for the PostgreSQL frontend/backend protocol, version 3.0.

Frontend messages are built as ``bytes``; backend frames are split out of
the byte stream by `FrameReader` and decoded into the events of
`sqlshape.pgwire.events`.
"""

from __future__ import annotations
from typing import Iterator, Mapping, Optional, Sequence

import struct

from . import errors
from . import events


PROTOCOL_VERSION = 196608   # 3.0
SSL_REQUEST_CODE = 80877103
CANCEL_REQUEST_CODE = 80877102

# Backend message types.
AUTHENTICATION = b'R'
PARAMETER_STATUS = b'S'
BACKEND_KEY_DATA = b'K'
READY_FOR_QUERY = b'Z'
ERROR_RESPONSE = b'E'
NOTICE_RESPONSE = b'N'
NOTIFICATION_RESPONSE = b'A'
PARSE_COMPLETE = b'1'
BIND_COMPLETE = b'2'
CLOSE_COMPLETE = b'3'
PARAMETER_DESCRIPTION = b't'
ROW_DESCRIPTION = b'T'
NO_DATA = b'n'
DATA_ROW = b'D'
COMMAND_COMPLETE = b'C'
EMPTY_QUERY_RESPONSE = b'I'
PORTAL_SUSPENDED = b's'
NEGOTIATE_PROTOCOL_VERSION = b'v'

# Authentication request codes.
AUTH_OK = 0
AUTH_CLEARTEXT_PASSWORD = 3
AUTH_MD5_PASSWORD = 5
AUTH_SASL = 10
AUTH_SASL_CONTINUE = 11
AUTH_SASL_FINAL = 12

_header = struct.Struct('!cL')
_int16 = struct.Struct('!h')
_int32 = struct.Struct('!i')
_uint32 = struct.Struct('!L')
_field = struct.Struct('!LhLhlh')


def _cstr(value: str) -> bytes:
    try:
        data = value.encode('utf-8')
    except UnicodeEncodeError as e:
        raise errors.MessageEncodingError(
            'protocol strings must be valid UTF-8: '
            f'cannot encode {value[e.start]!r}') from e
    if b'\x00' in data:
        raise errors.MessageEncodingError(
            'protocol strings cannot contain NUL characters')
    return data + b'\x00'


def _frame(mtype: bytes, payload: bytes = b'') -> bytes:
    return _header.pack(mtype, len(payload) + 4) + payload


# Frontend messages.

def startup_message(params: Mapping[str, str]) -> bytes:
    body = bytearray(_int32.pack(PROTOCOL_VERSION))
    for key, value in params.items():
        body += _cstr(key)
        body += _cstr(value)
    body += b'\x00'
    return _int32.pack(len(body) + 4) + bytes(body)


def ssl_request() -> bytes:
    return _int32.pack(8) + _int32.pack(SSL_REQUEST_CODE)


def cancel_request(process_id: int, secret_key: int) -> bytes:
    return (
        _int32.pack(16) + _int32.pack(CANCEL_REQUEST_CODE)
        + _int32.pack(process_id) + _int32.pack(secret_key)
    )


def password_message(password: bytes) -> bytes:
    return _frame(b'p', password + b'\x00')


def sasl_initial_response(mechanism: str, data: bytes) -> bytes:
    return _frame(b'p', _cstr(mechanism) + _int32.pack(len(data)) + data)


def sasl_response(data: bytes) -> bytes:
    return _frame(b'p', data)


def query(sql: str) -> bytes:
    return _frame(b'Q', _cstr(sql))


def parse(name: str, sql: str, param_types: Sequence[int] = ()) -> bytes:
    body = bytearray(_cstr(name))
    body += _cstr(sql)
    body += _int16.pack(len(param_types))
    for oid in param_types:
        body += _uint32.pack(oid)
    return _frame(b'P', bytes(body))


def bind(
    portal: str,
    statement: str,
    params: Sequence[Optional[bytes]] = (),
) -> bytes:
    # Text format for everything; the describe exchange never binds
    # values, but simple callers may.
    body = bytearray(_cstr(portal))
    body += _cstr(statement)
    body += _int16.pack(0)
    body += _int16.pack(len(params))
    for value in params:
        if value is None:
            body += _int32.pack(-1)
        else:
            body += _int32.pack(len(value))
            body += value
    body += _int16.pack(0)
    return _frame(b'B', bytes(body))


def execute(portal: str, max_rows: int = 0) -> bytes:
    return _frame(b'E', _cstr(portal) + _int32.pack(max_rows))


def describe_statement(name: str) -> bytes:
    return _frame(b'D', b'S' + _cstr(name))


def close_statement(name: str) -> bytes:
    return _frame(b'C', b'S' + _cstr(name))


def sync() -> bytes:
    return _frame(b'S')


def terminate() -> bytes:
    return _frame(b'X')


# Backend frames.

class FrameReader:
    """Accumulates received bytes and splits them into complete frames."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> None:
        self._buffer.extend(data)

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        return self

    def __next__(self) -> tuple[bytes, bytes]:
        buf = self._buffer
        if len(buf) < _header.size:
            raise StopIteration
        mtype, length = _header.unpack_from(buf)
        if length < 4:
            raise errors.ProtocolViolationError(
                f'invalid frame length {length} for message {mtype!r}')
        end = length + 1
        if len(buf) < end:
            raise StopIteration
        payload = bytes(buf[_header.size:end])
        del buf[:end]
        return mtype, payload

    def pending(self) -> int:
        return len(self._buffer)


class PayloadReader:
    __slots__ = ('_data', '_pos')

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def int16(self) -> int:
        v, = _int16.unpack_from(self._data, self._pos)
        self._pos += 2
        return v

    def int32(self) -> int:
        v, = _int32.unpack_from(self._data, self._pos)
        self._pos += 4
        return v

    def uint32(self) -> int:
        v, = _uint32.unpack_from(self._data, self._pos)
        self._pos += 4
        return v

    def cstr(self) -> str:
        end = self._data.index(b'\x00', self._pos)
        v = self._data[self._pos:end].decode('utf-8', errors='replace')
        self._pos = end + 1
        return v

    def take(self, n: int) -> bytes:
        v = self._data[self._pos:self._pos + n]
        if len(v) != n:
            raise errors.ProtocolViolationError('truncated message')
        self._pos += n
        return v

    def rest(self) -> bytes:
        v = self._data[self._pos:]
        self._pos = len(self._data)
        return v

    def at_end(self) -> bool:
        return self._pos >= len(self._data) or self._data[self._pos] == 0


def parse_fields(payload: bytes) -> dict[str, str]:
    cur = PayloadReader(payload)
    fields = {}
    while not cur.at_end():
        code = chr(cur.take(1)[0])
        fields[code] = cur.cstr()
    return fields


def parse_authentication(payload: bytes) -> tuple[int, bytes]:
    cur = PayloadReader(payload)
    return cur.int32(), cur.rest()


def parse_sasl_mechanisms(data: bytes) -> list[str]:
    return [m.decode() for m in data.split(b'\x00') if m]


def parse_parameter_status(payload: bytes) -> tuple[str, str]:
    cur = PayloadReader(payload)
    return cur.cstr(), cur.cstr()


def parse_backend_key_data(payload: bytes) -> tuple[int, int]:
    cur = PayloadReader(payload)
    return cur.int32(), cur.int32()


def decode_event(mtype: bytes, payload: bytes) -> Optional[events.Event]:
    """Decode an exchange-level backend frame.

    Returns None for frame types that never reach an exchange.
    """
    try:
        return _decode_event(mtype, payload)
    except (struct.error, ValueError) as e:
        raise errors.ProtocolViolationError(
            f'malformed {mtype!r} message: {e}') from e


def _decode_event(mtype: bytes, payload: bytes) -> Optional[events.Event]:
    if mtype == ERROR_RESPONSE:
        return events.ErrorEvent(parse_fields(payload))

    elif mtype == PARAMETER_DESCRIPTION:
        cur = PayloadReader(payload)
        count = cur.int16()
        return events.ParameterListEvent(
            tuple(cur.uint32() for _ in range(count)))

    elif mtype == ROW_DESCRIPTION:
        cur = PayloadReader(payload)
        count = cur.int16()
        fields = []
        for _ in range(count):
            name = cur.cstr()
            (table_oid, column_ordinal, type_oid,
             type_size, type_modifier, format_code) = _field.unpack(
                cur.take(_field.size))
            fields.append(events.FieldDescription(
                name=name,
                table_oid=table_oid,
                column_ordinal=column_ordinal,
                type_oid=type_oid,
                type_size=type_size,
                type_modifier=type_modifier,
                format_code=format_code,
            ))
        return events.RowDescriptionEvent(tuple(fields))

    elif mtype == NO_DATA:
        return events.NoDataEvent()

    elif mtype == DATA_ROW:
        cur = PayloadReader(payload)
        count = cur.int16()
        values: list[Optional[bytes]] = []
        for _ in range(count):
            length = cur.int32()
            values.append(None if length < 0 else cur.take(length))
        return events.DataRowEvent(tuple(values))

    elif mtype == COMMAND_COMPLETE:
        return events.CommandCompleteEvent(PayloadReader(payload).cstr())

    elif mtype == EMPTY_QUERY_RESPONSE:
        return events.EmptyQueryEvent()

    elif mtype == PARSE_COMPLETE:
        return events.ParseCompleteEvent()

    elif mtype == BIND_COMPLETE:
        return events.BindCompleteEvent()

    elif mtype == CLOSE_COMPLETE:
        return events.CloseCompleteEvent()

    elif mtype == READY_FOR_QUERY:
        return events.ReadyEvent(payload[:1].decode())

    return None


# Backend message builders, used by the in-memory test backend.

def error_response(fields: Mapping[str, str]) -> bytes:
    body = bytearray()
    for code, value in fields.items():
        body += code.encode() + _cstr(value)
    body += b'\x00'
    return _frame(ERROR_RESPONSE, bytes(body))


def authentication(code: int, data: bytes = b'') -> bytes:
    return _frame(AUTHENTICATION, _int32.pack(code) + data)


def parameter_status(name: str, value: str) -> bytes:
    return _frame(PARAMETER_STATUS, _cstr(name) + _cstr(value))


def backend_key_data(process_id: int, secret_key: int) -> bytes:
    return _frame(
        BACKEND_KEY_DATA, _int32.pack(process_id) + _int32.pack(secret_key))


def ready_for_query(status: str = 'I') -> bytes:
    return _frame(READY_FOR_QUERY, status.encode())


def parameter_description(type_oids: Sequence[int]) -> bytes:
    body = bytearray(_int16.pack(len(type_oids)))
    for oid in type_oids:
        body += _uint32.pack(oid)
    return _frame(PARAMETER_DESCRIPTION, bytes(body))


def row_description(fields: Sequence[events.FieldDescription]) -> bytes:
    body = bytearray(_int16.pack(len(fields)))
    for f in fields:
        body += _cstr(f.name)
        body += _field.pack(
            f.table_oid, f.column_ordinal, f.type_oid,
            f.type_size, f.type_modifier, f.format_code)
    return _frame(ROW_DESCRIPTION, bytes(body))


def no_data() -> bytes:
    return _frame(NO_DATA)


def data_row(values: Sequence[Optional[bytes]]) -> bytes:
    body = bytearray(_int16.pack(len(values)))
    for value in values:
        if value is None:
            body += _int32.pack(-1)
        else:
            body += _int32.pack(len(value))
            body += value
    return _frame(DATA_ROW, bytes(body))


def command_complete(tag: str) -> bytes:
    return _frame(COMMAND_COMPLETE, _cstr(tag))


def parse_complete() -> bytes:
    return _frame(PARSE_COMPLETE)


def bind_complete() -> bytes:
    return _frame(BIND_COMPLETE)


def close_complete() -> bytes:
    return _frame(CLOSE_COMPLETE)
