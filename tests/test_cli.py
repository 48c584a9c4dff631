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


import pathlib
import tempfile
import unittest
from unittest import mock

from click.testing import CliRunner

import sqlshape
from sqlshape import catalog
from sqlshape import cli
from sqlshape.common import term
from sqlshape.introspect import results
from sqlshape.pgwire import errors as pgerrors
from sqlshape.testbase import fakepg


WIDGETS = 16400

TABLE_ROWS = [
    (str(WIDGETS), 'public', 'widgets', '1', 'id', 'NO'),
    (str(WIDGETS), 'public', 'widgets', '2', 'name', 'YES'),
]

WIDGET_COLUMNS = [
    fakepg.field('id', 23, WIDGETS, 1),
    fakepg.field('name', 25, WIDGETS, 2),
]


class TestCli(unittest.TestCase):

    def setUp(self):
        self.backend = fakepg.FakeBackend(
            statements={
                'SELECT * FROM widgets WHERE id = $1': fakepg.Described(
                    params=[23], columns=WIDGET_COLUMNS),
                'SELECT * FROM widgets': fakepg.Described(
                    columns=WIDGET_COLUMNS),
                'DELETE FROM widgets WHERE id = ANY($1)': fakepg.Described(
                    params=[1007]),
                'SELECT * FROM widgts': fakepg.Rejected(
                    'relation "widgts" does not exist',
                    code='42P01', position=15),
            },
            tables=TABLE_ROWS,
        )
        self.connected = []

        async def connect(params, describe_timeout):
            self.connected.append((params, describe_timeout))
            return await fakepg.connect(
                self.backend, describe_timeout=describe_timeout)

        patches = [
            mock.patch.object(cli, '_connect', new=connect),
            mock.patch('sqlshape.logsetup.setup_logging'),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)

        self.addCleanup(term.set_colorization_option, 'auto')
        self.runner = CliRunner()

    def invoke(self, *args):
        return self.runner.invoke(
            cli.cli, [*args, '--color', 'off'], catch_exceptions=False)

    def test_cli_version(self):
        result = self.runner.invoke(cli.cli, ['--version'])
        self.assertEqual(result.exit_code, 0)
        self.assertIn(sqlshape.__version__, result.output)

    def test_cli_describe(self):
        result = self.invoke(
            'describe', 'SELECT * FROM widgets WHERE id = $1',
            '--dsn', 'postgresql://bob@db.example.com/app',
            '--describe-timeout', '5')

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(result.output, (
            'parameters:\n'
            '  $1: int4 -> int\n'
            'columns:\n'
            '  id: int4 -> int from public.widgets.id\n'
            '  name: text -> str | None from public.widgets.name\n'
        ))

        (params, timeout), = self.connected
        self.assertEqual(params.user, 'bob')
        self.assertEqual(params.host, 'db.example.com')
        self.assertEqual(params.database, 'app')
        self.assertEqual(timeout, 5.0)

    def test_cli_describe_placeholders(self):
        result = self.invoke(
            'describe', '--placeholders',
            'SELECT * FROM widgets WHERE id = {id}')

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn('  $1 id: int4 -> int\n', result.output)

    def test_cli_describe_no_rows(self):
        result = self.invoke(
            'describe', 'DELETE FROM widgets WHERE id = ANY($1)')

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(result.output, (
            'parameters:\n'
            '  $1: int4[] -> list[int]\n'
            'columns: (statement returns no rows)\n'
        ))

    def test_cli_describe_failure(self):
        result = self.invoke('describe', 'SELECT * FROM widgts')

        self.assertEqual(result.exit_code, 1)
        self.assertIn('relation "widgts" does not exist (42P01)',
                      result.output)
        self.assertIn('SELECT * FROM widgts\n              ^',
                      result.output)

    def test_cli_describe_bad_placeholder(self):
        result = self.invoke('describe', '--placeholders', 'SELECT {0}')
        self.assertEqual(result.exit_code, 2)
        self.assertEqual(self.connected, [])

    def test_cli_bad_dsn(self):
        result = self.invoke('describe', 'SELECT 1', '--dsn', 'mysql://x')
        self.assertEqual(result.exit_code, 2)
        self.assertIn('scheme', result.output)

    def test_cli_connection_error(self):
        async def connect(params, describe_timeout):
            raise pgerrors.ConnectionLostError('connection refused')

        with mock.patch.object(cli, '_connect', new=connect):
            with self.assertLogs('sqlshape.cli', level='ERROR') as cm:
                result = self.invoke('describe', 'SELECT 1')

        self.assertEqual(result.exit_code, 1)
        self.assertIn('database error: connection refused', cm.output[0])

    def test_cli_generate(self):
        with tempfile.TemporaryDirectory() as d:
            root = pathlib.Path(d)
            (root / 'widgets.sql.py').write_text(
                'from sqlshape.runtime import sql\n'
                '\n'
                'widget = sql("SELECT * FROM widgets WHERE id = {id}")\n'
                'widgets = sql("SELECT * FROM widgets")\n'
            )

            result = self.invoke(
                'generate', str(root / '*.sql.py'),
                '-o', str(root / 'gen'))

            self.assertEqual(result.exit_code, 0, result.output)
            code = (root / 'gen' / 'widgets.py').read_text()
            self.assertIn('class WidgetOutput(typing.TypedDict):', code)
            self.assertIn('class WidgetsInput(typing.TypedDict):\n'
                          '    pass', code)
            self.assertFalse((root / 'widgets.py').exists())

    def test_cli_generate_invalid_query(self):
        with tempfile.TemporaryDirectory() as d:
            root = pathlib.Path(d)
            (root / 'bad.sql.py').write_text(
                'q = sql("SELECT * FROM widgts")\n')

            with self.assertLogs('sqlshape.codegen', level='ERROR'):
                result = self.invoke('generate', str(root / '*.sql.py'))

            self.assertEqual(result.exit_code, 1)
            self.assertIn('# q: relation "widgts" does not exist',
                          (root / 'bad.py').read_text())

    def test_cli_generate_no_matches(self):
        with tempfile.TemporaryDirectory() as d:
            with self.assertLogs('sqlshape.cli', level='ERROR') as cm:
                result = self.invoke('generate', f'{d}/*.sql.py')

        self.assertEqual(result.exit_code, 2)
        self.assertIn('no files match', cm.output[0])


class TestFormatDescription(unittest.TestCase):

    def test_cli_format_description(self):
        cat = catalog.Catalog(
            types=catalog.build_types(fakepg.DEFAULT_TYPES),
            tables=catalog.build_tables(TABLE_ROWS),
        )
        res = results.Success(
            params=(),
            columns=(
                results.ColumnDescriptor('n', 424242),
                results.ColumnDescriptor('at', 1184),
            ),
        )
        self.assertEqual(
            cli.format_description(res, cat),
            'parameters:\n'
            '  (none)\n'
            'columns:\n'
            '  n: 424242 -> typing.Any\n'
            '  at: timestamptz -> datetime.datetime | None')
