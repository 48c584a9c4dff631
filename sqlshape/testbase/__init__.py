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


"""Test support: an asyncio-aware TestCase and live-server helpers."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import inspect
import os
import unittest


class TestCaseMeta(type(unittest.TestCase)):

    @staticmethod
    def _iter_methods(bases, ns):
        for base in bases:
            for methname in dir(base):
                if not methname.startswith('test_'):
                    continue

                meth = getattr(base, methname)
                if not inspect.iscoroutinefunction(meth):
                    continue

                yield methname, meth

        for methname, meth in ns.items():
            if not methname.startswith('test_'):
                continue

            if not inspect.iscoroutinefunction(meth):
                continue

            yield methname, meth

    @classmethod
    def wrap(mcls, meth):
        @functools.wraps(meth)
        def wrapper(self, *args, __meth__=meth, **kwargs):
            self.loop.run_until_complete(__meth__(self, *args, **kwargs))

        return wrapper

    def __new__(mcls, name, bases, ns):
        for methname, meth in mcls._iter_methods(bases, ns.copy()):
            ns[methname] = mcls.wrap(meth)

        return super().__new__(mcls, name, bases, ns)


class TestCase(unittest.TestCase, metaclass=TestCaseMeta):
    """Coroutine ``test_*`` methods run on a per-class event loop."""

    @classmethod
    def setUpClass(cls):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        cls.loop = loop

    @classmethod
    def tearDownClass(cls):
        cls.loop.close()
        asyncio.set_event_loop(None)

    @contextlib.contextmanager
    def assertRaisesRegex(self, exception, regex, msg=None, **kwargs):
        with super().assertRaisesRegex(exception, regex, msg=msg):
            try:
                yield
            except BaseException as e:
                if isinstance(e, exception):
                    for attr_name, expected_val in kwargs.items():
                        val = getattr(e, attr_name)
                        if val != expected_val:
                            raise self.failureException(
                                f'{exception.__name__} context attribute '
                                f'{attr_name!r} is {val} (expected '
                                f'{expected_val!r})') from e
                raise


def get_test_dsn():
    return os.environ.get('SQLSHAPE_TEST_DSN')


class LiveTestCase(TestCase):
    """Runs against the server named by SQLSHAPE_TEST_DSN, if any."""

    SETUP: str | None = None
    TEARDOWN: str | None = None

    @classmethod
    def setUpClass(cls):
        dsn = get_test_dsn()
        if not dsn:
            raise unittest.SkipTest('SQLSHAPE_TEST_DSN is not set')

        super().setUpClass()

        from sqlshape.introspect import engine
        from sqlshape.pgwire import connparams

        cls.session = cls.loop.run_until_complete(
            engine.connect(connparams.ConnectionParams(dsn=dsn)))
        if cls.SETUP:
            cls.loop.run_until_complete(cls.session.fetch(cls.SETUP))

    @classmethod
    def tearDownClass(cls):
        try:
            if cls.TEARDOWN:
                cls.loop.run_until_complete(cls.session.fetch(cls.TEARDOWN))
            cls.loop.run_until_complete(cls.session.close())
        finally:
            super().tearDownClass()
