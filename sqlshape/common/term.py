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


"""Terminal colour helpers for log output and query diagnostics."""

from __future__ import annotations

import os
import sys


_colorize = 'auto'


def set_colorization_option(option):
    global _colorize
    if option not in {'auto', 'on', 'off'}:
        raise ValueError(f'invalid colorization option {option!r}')
    _colorize = option


_OPT_OUT_VARS = ('NO_COLOR', 'ANSI_COLORS_DISABLED')


def isatty(fileno):
    return os.isatty(fileno)


def supports_colors(fileno: int) -> bool:
    """Whether *fileno* is a terminal that accepts ANSI colours.

    ``TERM=dumb`` and any of the opt-out variables disable them.
    """
    if not isatty(fileno) or os.getenv('TERM') == 'dumb':
        return False
    return all(os.getenv(var) is None for var in _OPT_OUT_VARS)


def use_colors(stream=None) -> bool:
    """Decide whether output to *stream* (stderr by default) is coloured.

    An explicit ``--color on|off`` wins over detection.
    """
    if _colorize != 'auto':
        return _colorize == 'on'

    if stream is None:
        stream = sys.stderr
    try:
        fileno = stream.fileno()
    except (OSError, ValueError):
        return False
    return supports_colors(fileno)


_COLORS = {
    'black': 0,
    'red': 1,
    'green': 2,
    'yellow': 3,
    'blue': 4,
    'magenta': 5,
    'cyan': 6,
    'white': 7,
}


def _color_code(color: str) -> int:
    try:
        return _COLORS[color]
    except KeyError as ex:
        raise ValueError(f'unknown color {color!r}') from ex


class Style16:
    """A 16-color foreground, background and bold setting.

    Styles are immutable; the escape sequence is computed once.
    """

    __slots__ = ('color', 'bgcolor', 'bold', '_prefix')

    def __init__(self, *, color=None, bgcolor=None, bold=False):
        codes = []
        if color is not None:
            codes.append(f'3{_color_code(color)}')
        if bgcolor is not None:
            codes.append(f'4{_color_code(bgcolor)}')
        if bold:
            codes.append('1')

        self.color = color
        self.bgcolor = bgcolor
        self.bold = bold
        self._prefix = f'\x1b[{";".join(codes)}m' if codes else ''

    def __repr__(self):
        return (f'<Style16 color={self.color} bgcolor={self.bgcolor} '
                f'bold={self.bold}>')

    @property
    def empty(self):
        return not self._prefix

    def apply(self, text):
        """Wrap *text* in this style's escape sequences."""
        if not self._prefix:
            return text
        return f'{self._prefix}{text}\x1b[0m'
