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


"""Value types produced by the introspection engine."""

from __future__ import annotations
from typing import Optional

import dataclasses
import enum


STALLED_CODE = 'sqlshape.stalled'


class DescribeState(enum.Enum):
    """Per-call progress of one describe exchange."""

    IDLE = 'idle'
    SENDING = 'sending'
    AWAITING_PARAMS = 'awaiting-params'
    AWAITING_ROWS = 'awaiting-rows'
    DONE_NO_ROWS = 'done-no-rows'
    DONE = 'done'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in {DescribeState.DONE, DescribeState.DONE_NO_ROWS,
                        DescribeState.FAILED}


@dataclasses.dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    type_oid: int
    # Both are 0 for columns that are not plain table columns.
    table_oid: int = 0
    column_ordinal: int = 0

    @property
    def is_table_column(self) -> bool:
        return self.table_oid != 0 and self.column_ordinal > 0


@dataclasses.dataclass(frozen=True)
class Success:
    params: tuple[int, ...]
    columns: Optional[tuple[ColumnDescriptor, ...]]

    def __post_init__(self) -> None:
        if self.columns is not None and not self.columns:
            raise ValueError(
                'a row-producing description must have at least one column')

    @property
    def returns_rows(self) -> bool:
        return self.columns is not None


@dataclasses.dataclass(frozen=True)
class Failure:
    message: str
    code: str
    position: Optional[int] = None
    detail: Optional[str] = None
    hint: Optional[str] = None
    stalled: bool = False


DescribeResult = Success | Failure
