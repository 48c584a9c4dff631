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


"""Client side of SCRAM-SHA-256 authentication (RFC 5802, RFC 7677)."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os
import typing
import unicodedata


MECHANISM = 'SCRAM-SHA-256'
RAW_NONCE_LENGTH = 18


def generate_nonce(length: int = RAW_NONCE_LENGTH) -> bytes:
    return os.urandom(length)


def normalize_password(password: str) -> str:
    # PostgreSQL falls back to the raw password when SASLprep fails, and
    # NFKC covers the mapping step for everything people actually type.
    try:
        return unicodedata.normalize('NFKC', password)
    except (TypeError, ValueError):
        return password


def B64(val: bytes) -> str:
    """Return base64-encoded string representation of input binary data."""
    return base64.b64encode(val).decode()


def HMAC(key: bytes, msg: bytes) -> bytes:
    return hmac.new(key, msg, digestmod=hashlib.sha256).digest()


def XOR(a: bytes, b: bytes) -> bytes:
    xint = int.from_bytes(a, 'big') ^ int.from_bytes(b, 'big')
    return xint.to_bytes(len(a), 'big')


def H(s: bytes) -> bytes:
    return hashlib.sha256(s).digest()


def get_salted_password(password: bytes, salt: bytes,
                        iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac('sha256', password, salt, iterations)


def get_client_key(salted_password: bytes) -> bytes:
    return HMAC(salted_password, b'Client Key')


def get_server_key(salted_password: bytes) -> bytes:
    return HMAC(salted_password, b'Server Key')


class SCRAMError(Exception):
    pass


def _parse_attributes(msg: str) -> dict[str, str]:
    attrs = {}
    for part in msg.split(','):
        key, sep, value = part.partition('=')
        if not sep or len(key) != 1:
            raise SCRAMError(f'malformed SCRAM message: {msg!r}')
        attrs[key] = value
    return attrs


class SCRAMClient:
    """Drives the three SASL steps of one SCRAM-SHA-256 exchange."""

    def __init__(
        self,
        password: str,
        *,
        nonce: typing.Optional[bytes] = None,
    ) -> None:
        self._password = normalize_password(password).encode('utf-8')
        self._client_nonce = B64(nonce or generate_nonce())
        # The user name is sent in the startup packet; PostgreSQL
        # ignores the one in the SCRAM exchange.
        self._client_first_bare = f'n=,r={self._client_nonce}'
        self._auth_message: typing.Optional[bytes] = None
        self._server_key: typing.Optional[bytes] = None

    def client_first_message(self) -> bytes:
        return f'n,,{self._client_first_bare}'.encode()

    def client_final_message(self, server_first: bytes) -> bytes:
        server_first_str = server_first.decode()
        attrs = _parse_attributes(server_first_str)
        try:
            server_nonce = attrs['r']
            salt = base64.b64decode(attrs['s'])
            iterations = int(attrs['i'])
        except (KeyError, ValueError) as e:
            raise SCRAMError(
                f'malformed SCRAM server-first message: '
                f'{server_first_str!r}') from e

        if not server_nonce.startswith(self._client_nonce):
            raise SCRAMError('server nonce does not extend client nonce')

        client_final_bare = f'c=biws,r={server_nonce}'
        self._auth_message = (
            f'{self._client_first_bare},{server_first_str},'
            f'{client_final_bare}'
        ).encode()

        salted_password = get_salted_password(
            self._password, salt, iterations)
        client_key = get_client_key(salted_password)
        client_signature = HMAC(H(client_key), self._auth_message)
        proof = XOR(client_key, client_signature)
        self._server_key = get_server_key(salted_password)

        return f'{client_final_bare},p={B64(proof)}'.encode()

    def verify_server_final(self, server_final: bytes) -> None:
        if self._auth_message is None or self._server_key is None:
            raise SCRAMError('SCRAM exchange is out of order')

        attrs = _parse_attributes(server_final.decode())
        if 'e' in attrs:
            raise SCRAMError(f'server rejected SCRAM proof: {attrs["e"]}')

        try:
            signature = base64.b64decode(attrs['v'])
        except (KeyError, ValueError) as e:
            raise SCRAMError('malformed SCRAM server-final message') from e

        expected = HMAC(self._server_key, self._auth_message)
        if not hmac.compare_digest(signature, expected):
            raise SCRAMError('server signature mismatch')
