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
from typing import Optional


__all__ = (
    'SqlshapeError', 'InvalidUsageError', 'ExtractionError',
    'GenerationError', 'SerializationMisuseError',
)


class SqlshapeError(Exception):

    exit_code: int = 1

    def __init__(
        self,
        msg: Optional[str] = None,
        *,
        hint: Optional[str] = None,
        filename: Optional[str] = None,
        line: Optional[int] = None,
    ):
        super().__init__(msg)
        self.hint = hint
        self.filename = filename
        self.line = line

    def __str__(self) -> str:
        msg = super().__str__()
        if self.filename is not None:
            loc = self.filename
            if self.line is not None:
                loc = f'{loc}:{self.line}'
            msg = f'{loc}: {msg}'
        return msg


class InvalidUsageError(SqlshapeError):
    exit_code = 2


class ExtractionError(SqlshapeError):
    """A SQL source file could not be read for queries."""


class GenerationError(SqlshapeError):
    pass


class SerializationMisuseError(SqlshapeError, RuntimeError):
    """A session was driven without holding its active ticket."""
