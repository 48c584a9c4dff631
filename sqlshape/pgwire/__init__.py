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

from .connparams import ConnectionParams, SSLMode
from .errors import (
    Error, BackendError, TransportError, ConnectionLostError,
    ProtocolViolationError, AuthenticationError, InterfaceError,
    MessageEncodingError,
)
from .protocol import WireSession, Exchange, connect


__all__ = (
    'ConnectionParams', 'SSLMode',
    'Error', 'BackendError', 'TransportError', 'ConnectionLostError',
    'ProtocolViolationError', 'AuthenticationError', 'InterfaceError',
    'MessageEncodingError',
    'WireSession', 'Exchange', 'connect',
)
