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


import unittest

from sqlshape.introspect import positions
from sqlshape.pgwire import errors
from sqlshape.pgwire import events


class TestPositions(unittest.TestCase):

    def test_positions_wrap_statement(self):
        self.assertEqual(positions.wrap_statement('SELECT 1'),
                         'PREPARE sqlshape_stmt AS SELECT 1')
        self.assertEqual(positions.wrap_statement('SELECT 1', 'q'),
                         'PREPARE q AS SELECT 1')
        self.assertEqual(positions.prefix_length(), 25)
        self.assertEqual(positions.prefix_length(),
                         len(positions.PREPARE_PREFIX))
        self.assertEqual(positions.prefix_length('q'), 13)

    def test_positions_translate(self):
        self.assertEqual(positions.translate_position(26, 25), 1)
        self.assertEqual(positions.translate_position(40, 25), 15)
        self.assertIsNone(positions.translate_position(25, 25))
        self.assertIsNone(positions.translate_position(3, 25))
        self.assertIsNone(positions.translate_position(None, 25))

    def test_positions_translate_error(self):
        event = events.ErrorEvent({
            errors.FIELD_CODE: '42703',
            errors.FIELD_MESSAGE: 'column "x" does not exist',
            errors.FIELD_POSITION: '33',
            errors.FIELD_HINT: 'Perhaps you meant "y".',
        })
        failure = positions.translate_error(
            event, positions.prefix_length())

        self.assertEqual(failure.message, 'column "x" does not exist')
        self.assertEqual(failure.code, '42703')
        self.assertEqual(failure.position, 8)
        self.assertEqual(failure.hint, 'Perhaps you meant "y".')
        self.assertIsNone(failure.detail)
        self.assertFalse(failure.stalled)

    def test_positions_unsendable(self):
        self.assertIsNone(positions.unsendable_position('select 1'))
        self.assertEqual(positions.unsendable_position('\x00'), 1)
        self.assertEqual(positions.unsendable_position("select '\udfff'"), 9)

        failure = positions.unsendable_failure('a\x00', 'no NUL')
        self.assertEqual(failure.code, '22021')
        self.assertEqual(failure.position, 2)
        self.assertEqual(failure.message,
                         'statement cannot be sent to the server: no NUL')
