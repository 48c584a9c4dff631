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


"""Exceptions raised by the wire session.

Two families live here and must never be confused: `BackendError`
subclasses carry an ErrorResponse from the server, `TransportError`
subclasses mean the connection itself is unusable.
"""

from __future__ import annotations
from typing import Mapping, Optional


__all__ = ()  # Will be completed by ErrorMeta


# ErrorResponse / NoticeResponse field type codes.
FIELD_SEVERITY = 'S'
FIELD_SEVERITY_NONLOCALIZED = 'V'
FIELD_CODE = 'C'
FIELD_MESSAGE = 'M'
FIELD_DETAIL = 'D'
FIELD_HINT = 'H'
FIELD_POSITION = 'P'
FIELD_INTERNAL_POSITION = 'p'
FIELD_INTERNAL_QUERY = 'q'
FIELD_WHERE = 'W'
FIELD_SCHEMA = 's'
FIELD_TABLE = 't'
FIELD_COLUMN = 'c'
FIELD_DATATYPE = 'd'
FIELD_CONSTRAINT = 'n'
FIELD_FILE = 'F'
FIELD_LINE = 'L'
FIELD_ROUTINE = 'R'


class ErrorMeta(type):
    _error_map: dict[str, type] = {}

    def __new__(mcls, name, bases, dct):
        global __all__

        cls = super().__new__(mcls, name, bases, dct)
        if cls.__module__ == __name__:
            __all__ += (name,)

        code = dct.get('code')
        if code is not None:
            mcls._error_map[code] = cls

        return cls

    @classmethod
    def get_error_for_code(mcls, code):
        return mcls._error_map.get(code, BackendError)


class Error(Exception, metaclass=ErrorMeta):
    pass


class InterfaceError(Error):
    """The wire session was used incorrectly."""


class MessageEncodingError(InterfaceError):
    """A string cannot be carried in a protocol message."""


class TransportError(Error):
    """The connection cannot carry any more traffic."""


class ConnectionLostError(TransportError):
    pass


class ProtocolViolationError(TransportError):
    """The server sent something the protocol does not allow here."""


class AuthenticationError(Error):
    pass


class BackendError(Error):
    code: Optional[str] = None

    def __init__(self, msg, *, fields=None):
        super().__init__(msg)
        self._fields = dict(fields) if fields else {}

    @classmethod
    def from_fields(cls, fields: Mapping[str, str]) -> BackendError:
        code = fields.get(FIELD_CODE)
        errcls = ErrorMeta.get_error_for_code(code)
        return errcls(fields.get(FIELD_MESSAGE, ''), fields=fields)

    @property
    def fields(self) -> Mapping[str, str]:
        return self._fields

    @property
    def sqlstate(self) -> Optional[str]:
        return self._fields.get(FIELD_CODE)

    @property
    def severity(self) -> Optional[str]:
        return (self._fields.get(FIELD_SEVERITY_NONLOCALIZED)
                or self._fields.get(FIELD_SEVERITY))

    @property
    def detail(self) -> Optional[str]:
        return self._fields.get(FIELD_DETAIL)

    @property
    def hint(self) -> Optional[str]:
        return self._fields.get(FIELD_HINT)

    @property
    def position(self) -> Optional[int]:
        pos = self._fields.get(FIELD_POSITION)
        return int(pos) if pos else None


class FeatureNotSupportedError(BackendError):
    code = '0A000'


class InvalidAuthorizationSpecificationError(BackendError):
    code = '28000'


class InvalidPasswordError(InvalidAuthorizationSpecificationError):
    code = '28P01'


class InvalidCatalogNameError(BackendError):
    code = '3D000'


class SyntaxOrAccessError(BackendError):
    code = '42000'


class PostgresSyntaxError(SyntaxOrAccessError):
    code = '42601'


class InsufficientPrivilegeError(SyntaxOrAccessError):
    code = '42501'


class UndefinedColumnError(SyntaxOrAccessError):
    code = '42703'


class UndefinedFunctionError(SyntaxOrAccessError):
    code = '42883'


class UndefinedTableError(SyntaxOrAccessError):
    code = '42P01'


class UndefinedParameterError(SyntaxOrAccessError):
    code = '42P02'


class IndeterminateDatatypeError(SyntaxOrAccessError):
    code = '42P18'


class DatatypeMismatchError(SyntaxOrAccessError):
    code = '42804'


class AmbiguousColumnError(SyntaxOrAccessError):
    code = '42702'


class DuplicatePreparedStatementError(SyntaxOrAccessError):
    code = '42P05'


class QueryCanceledError(BackendError):
    code = '57014'


class AdminShutdownError(BackendError):
    code = '57P01'


class CannotConnectNowError(BackendError):
    code = '57P03'


class TooManyConnectionsError(BackendError):
    code = '53300'


class InFailedTransactionError(BackendError):
    code = '25P02'
