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


"""Discovery of query definitions in ``*.sql.py`` modules.

Modules are parsed, never imported.  A query definition is a top-level
assignment of a ``sql('...')`` call (or ``<module>.sql('...')``) whose
only argument is a string literal.
"""

from __future__ import annotations
from typing import Iterator, Optional

import ast
import dataclasses
import pathlib

from sqlshape import errors
from sqlshape import runtime


SOURCE_SUFFIX = '.sql.py'


@dataclasses.dataclass(frozen=True)
class ExtractedQuery:
    name: str
    text: str
    definition: runtime.QueryDef
    lineno: int

    @property
    def sql(self) -> str:
        return self.definition.sql

    @property
    def keys(self) -> tuple[str, ...]:
        return self.definition.keys


def is_source_file(path: pathlib.Path | str) -> bool:
    return str(path).endswith(SOURCE_SUFFIX)


def _is_sql_call(node: ast.expr) -> bool:
    if not isinstance(node, ast.Call):
        return False
    func = node.func
    if isinstance(func, ast.Name):
        return func.id == 'sql'
    if isinstance(func, ast.Attribute):
        return func.attr == 'sql'
    return False


def _target_name(node: ast.Assign | ast.AnnAssign) -> Optional[str]:
    targets = node.targets if isinstance(node, ast.Assign) else [node.target]
    if len(targets) != 1 or not isinstance(targets[0], ast.Name):
        return None
    return targets[0].id


def iter_queries(
    source: str,
    filename: str = '<string>',
) -> Iterator[ExtractedQuery]:
    try:
        tree = ast.parse(source, filename)
    except SyntaxError as e:
        raise errors.ExtractionError(
            f'cannot parse module: {e.msg}',
            filename=filename, line=e.lineno) from e

    for node in tree.body:
        if not isinstance(node, (ast.Assign, ast.AnnAssign)):
            continue
        if node.value is None or not _is_sql_call(node.value):
            continue
        name = _target_name(node)
        if name is None:
            raise errors.ExtractionError(
                'a query must be assigned to a single name',
                filename=filename, line=node.lineno)

        call = node.value
        assert isinstance(call, ast.Call)
        if (
            len(call.args) != 1
            or call.keywords
            or not isinstance(call.args[0], ast.Constant)
            or not isinstance(call.args[0].value, str)
        ):
            raise errors.ExtractionError(
                f'{name}: sql() takes exactly one string literal',
                filename=filename, line=node.lineno)

        text = call.args[0].value
        try:
            definition = runtime.sql(text)
        except ValueError as e:
            raise errors.ExtractionError(
                f'{name}: {e}', filename=filename, line=node.lineno) from e

        yield ExtractedQuery(name=name, text=text, definition=definition,
                             lineno=node.lineno)


def extract_file(path: pathlib.Path) -> list[ExtractedQuery]:
    try:
        source = path.read_text(encoding='utf-8')
    except OSError as e:
        raise errors.ExtractionError(
            f'cannot read file: {e.strerror}', filename=str(path)) from e
    return list(iter_queries(source, str(path)))
