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


"""Session fields for log records.

While an introspection session is bound to the current context, every
record made through `SqlshapeLogger` carries a ``session`` field with
the backend pid of its connection.  While a statement is being
described the field also names that statement: ``4242/widget_by_id``.
Outside a session the field is ``-``.
"""

from __future__ import annotations
from typing import Iterator, Optional

# Only stdlib modules that create no loggers of their own: early_setup()
# must run before any logger is created.
import contextlib
import contextvars
import logging


LABEL_WIDTH = 32

_backend_pid: contextvars.ContextVar[Optional[int]] = (
    contextvars.ContextVar('sqlshape_backend_pid', default=None))
_describe_label: contextvars.ContextVar[Optional[str]] = (
    contextvars.ContextVar('sqlshape_describe_label', default=None))


def bind_session(backend_pid: int) -> None:
    _backend_pid.set(backend_pid)


def shorten_label(label: str) -> str:
    label = ' '.join(label.split())
    if len(label) > LABEL_WIDTH:
        label = label[:LABEL_WIDTH - 3] + '...'
    return label


@contextlib.contextmanager
def describing(backend_pid: Optional[int], label: str) -> Iterator[None]:
    """Tag records made inside the block with *backend_pid* and *label*."""
    pid_token = _backend_pid.set(backend_pid)
    label_token = _describe_label.set(shorten_label(label))
    try:
        yield
    finally:
        _describe_label.reset(label_token)
        _backend_pid.reset(pid_token)


def session_tag() -> str:
    pid = _backend_pid.get()
    label = _describe_label.get()
    tag = '-' if pid is None else str(pid)
    if label is not None:
        tag = f'{tag}/{label}'
    return tag


class SqlshapeLogger(logging.Logger):

    def makeRecord(self, *args, **kwargs):
        rv = super().makeRecord(*args, **kwargs)
        # extra={'session': ...} wins over the context.
        if 'session' not in rv.__dict__:
            rv.session = session_tag()
        return rv


def early_setup():
    logging.setLoggerClass(SqlshapeLogger)
