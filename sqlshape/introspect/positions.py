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


"""Mapping of server error offsets back onto the caller's SQL text.

The server reports 1-based character offsets into the text it parsed,
which is the caller's statement behind a ``PREPARE <name> AS `` prefix.
"""

from __future__ import annotations
from typing import Optional

from sqlshape.pgwire import events

from . import results


STATEMENT_NAME = 'sqlshape_stmt'
PREPARE_PREFIX = f'PREPARE {STATEMENT_NAME} AS '

# character_not_in_repertoire, as the server reports for a NUL byte.
UNSENDABLE_CODE = '22021'


def wrap_statement(sql: str, name: str = STATEMENT_NAME) -> str:
    return f'PREPARE {name} AS {sql}'


def prefix_length(name: str = STATEMENT_NAME) -> int:
    return len(f'PREPARE {name} AS ')


def translate_position(
    raw: Optional[int],
    prefix_len: int,
) -> Optional[int]:
    if raw is None:
        return None
    pos = raw - prefix_len
    if pos <= 0:
        return None
    return pos


def translate_error(
    error: events.ErrorEvent,
    prefix_len: int,
) -> results.Failure:
    return results.Failure(
        message=error.message,
        code=error.code,
        position=translate_position(error.position, prefix_len),
        detail=error.detail,
        hint=error.hint,
    )


def unsendable_position(sql: str) -> Optional[int]:
    """Find the first character a protocol message cannot carry.

    Those are NUL and lone surrogates.  Returns a 1-based position.
    """
    for pos, char in enumerate(sql, 1):
        if char == '\x00' or '\ud800' <= char <= '\udfff':
            return pos
    return None


def unsendable_failure(sql: str, message: str) -> results.Failure:
    return results.Failure(
        message=f'statement cannot be sent to the server: {message}',
        code=UNSENDABLE_CODE,
        position=unsendable_position(sql),
    )
