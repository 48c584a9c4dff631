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

import re

from sqlshape.common import term
from sqlshape.introspect import results


_query_style = term.Style16(color='yellow')
_caret_style = term.Style16(color='red', bold=True)
_message_style = term.Style16(color='red', bold=True)
_hint_style = term.Style16(color='blue')

_indent_re = re.compile(r'^[ \t]*')


def _styled(style: term.Style16, text: str, colors: bool) -> str:
    return style.apply(text) if colors else text


def mark_position(
    sql: str,
    position: Optional[int],
    *,
    colors: bool = False,
) -> str:
    """Render ``sql`` with a caret under the 1-based ``position``."""
    out = []
    chars = 0
    for line in sql.split('\n'):
        if line.strip():
            indent = _indent_re.match(line).group()  # type: ignore
            out.append(indent + _styled(
                _query_style, line[len(indent):], colors))
        else:
            out.append(line)

        if position is not None and chars < position <= chars + len(line) + 1:
            prefix = re.sub(r'[^\t]', ' ', line[:position - chars - 1])
            out.append(prefix + _styled(_caret_style, '^', colors))
        chars += len(line) + 1

    return '\n'.join(out)


def explain_query_error(
    sql: str,
    failure: results.Failure,
    *,
    colors: Optional[bool] = None,
) -> str:
    if colors is None:
        colors = term.use_colors()

    lines = [
        _styled(_message_style, f'{failure.message} ({failure.code})',
                colors),
        mark_position(sql, failure.position, colors=colors),
    ]
    if failure.detail:
        lines.append(f'DETAIL: {failure.detail}')
    if failure.hint:
        lines.append(_styled(_hint_style, f'HINT: {failure.hint}', colors))
    return '\n'.join(lines)
