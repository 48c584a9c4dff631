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


"""Typed response events delivered to an exchange."""

from __future__ import annotations
from typing import Mapping, Optional

import dataclasses

from . import errors


@dataclasses.dataclass(frozen=True)
class ErrorEvent:
    fields: Mapping[str, str]

    @property
    def message(self) -> str:
        return self.fields.get(errors.FIELD_MESSAGE, '')

    @property
    def code(self) -> str:
        return self.fields.get(errors.FIELD_CODE, '')

    @property
    def position(self) -> Optional[int]:
        pos = self.fields.get(errors.FIELD_POSITION)
        if not pos:
            return None
        try:
            return int(pos)
        except ValueError:
            return None

    @property
    def detail(self) -> Optional[str]:
        return self.fields.get(errors.FIELD_DETAIL)

    @property
    def hint(self) -> Optional[str]:
        return self.fields.get(errors.FIELD_HINT)

    @property
    def severity(self) -> Optional[str]:
        return (self.fields.get(errors.FIELD_SEVERITY_NONLOCALIZED)
                or self.fields.get(errors.FIELD_SEVERITY))

    def to_exception(self) -> errors.BackendError:
        return errors.BackendError.from_fields(self.fields)


@dataclasses.dataclass(frozen=True)
class FieldDescription:
    name: str
    table_oid: int
    column_ordinal: int
    type_oid: int
    type_size: int
    type_modifier: int
    format_code: int


@dataclasses.dataclass(frozen=True)
class ParameterListEvent:
    type_oids: tuple[int, ...]


@dataclasses.dataclass(frozen=True)
class RowDescriptionEvent:
    fields: tuple[FieldDescription, ...]


@dataclasses.dataclass(frozen=True)
class NoDataEvent:
    pass


@dataclasses.dataclass(frozen=True)
class DataRowEvent:
    values: tuple[Optional[bytes], ...]


@dataclasses.dataclass(frozen=True)
class CommandCompleteEvent:
    tag: str


@dataclasses.dataclass(frozen=True)
class EmptyQueryEvent:
    pass


@dataclasses.dataclass(frozen=True)
class ParseCompleteEvent:
    pass


@dataclasses.dataclass(frozen=True)
class BindCompleteEvent:
    pass


@dataclasses.dataclass(frozen=True)
class CloseCompleteEvent:
    pass


@dataclasses.dataclass(frozen=True)
class ReadyEvent:
    # 'I' idle, 'T' in transaction, 'E' in failed transaction
    status: str


Event = (
    ErrorEvent
    | ParameterListEvent
    | RowDescriptionEvent
    | NoDataEvent
    | DataRowEvent
    | CommandCompleteEvent
    | EmptyQueryEvent
    | ParseCompleteEvent
    | BindCompleteEvent
    | CloseCompleteEvent
    | ReadyEvent
)
