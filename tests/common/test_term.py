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


import io
import os
import unittest
from unittest import mock

from sqlshape.common import term


class TermStyleTests(unittest.TestCase):

    def test_common_term_style16(self):
        s = term.Style16(color='red', bgcolor='green', bold=True)

        self.assertEqual(s.color, 'red')
        self.assertEqual(s.bgcolor, 'green')
        self.assertTrue(s.bold)
        self.assertFalse(s.empty)
        self.assertTrue(term.Style16().empty)

        with self.assertRaisesRegex(ValueError, 'unknown color'):
            term.Style16(color='#FFF')

        with self.assertRaises(TypeError):
            term.Style16(underline=True)

    def test_common_term_style16_apply(self):
        s = term.Style16(color='red', bold=True)
        self.assertEqual(s.apply('x'), '\x1b[31;1mx\x1b[0m')
        s = term.Style16(color='white', bgcolor='blue')
        self.assertEqual(s.apply('x'), '\x1b[37;44mx\x1b[0m')
        self.assertEqual(term.Style16().apply('x'), 'x')

    def test_common_term_colorization_option(self):
        try:
            term.set_colorization_option('on')
            self.assertTrue(term.use_colors())
            term.set_colorization_option('off')
            self.assertFalse(term.use_colors())
        finally:
            term.set_colorization_option('auto')

        with self.assertRaisesRegex(ValueError, 'invalid colorization'):
            term.set_colorization_option('sometimes')

    def test_common_term_stream_without_fileno(self):
        self.assertFalse(term.use_colors(io.StringIO()))

    def test_common_term_no_color(self):
        with mock.patch.object(term, 'isatty', return_value=True), \
                mock.patch.dict(os.environ, {'NO_COLOR': '1'}):
            self.assertFalse(term.supports_colors(2))

        env = {'TERM': 'xterm'}
        with mock.patch.object(term, 'isatty', return_value=True), \
                mock.patch.dict(os.environ, env, clear=True):
            self.assertTrue(term.supports_colors(2))
            env['TERM'] = 'dumb'
            with mock.patch.dict(os.environ, env):
                self.assertFalse(term.supports_colors(2))
