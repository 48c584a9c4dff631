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

import copy
import logging
import logging.handlers
import warnings

from sqlshape.common import debug
from sqlshape.common import term


LOG_LEVELS = {
    'S': 'SILENT',
    'D': 'DEBUG',
    'I': 'INFO',
    'E': 'ERROR',
    'W': 'WARN',
    'WARN': 'WARN',
    'ERROR': 'ERROR',
    'CRITICAL': 'CRITICAL',
    'INFO': 'INFO',
    'DEBUG': 'DEBUG',
    'SILENT': 'SILENT'
}

LOG_FORMAT = '{levelname} {session} {asctime} {name}: {message}'


class Dark16:
    critical = term.Style16(color='white', bgcolor='red', bold=True)
    error = term.Style16(color='white', bgcolor='red')
    warning = term.Style16(color='black', bgcolor='yellow')
    info = term.Style16(color='white', bgcolor='green')
    default = term.Style16(color='white', bgcolor='blue')
    session = date = term.Style16(color='black', bold=True)
    name = term.Style16(color='black', bold=True)
    message = term.Style16()


class SessionFilter(logging.Filter):
    """Supplies ``session`` for records made by foreign logger classes."""

    def filter(self, record):
        if not hasattr(record, 'session'):
            record.session = '-'
        return True


class SqlshapeLogFormatter(logging.Formatter):

    default_time_format = '%Y-%m-%dT%H:%M:%S'
    default_msec_format = '%s.%03d'

    def __init__(self, *args, colorize=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._colorize = term.use_colors() if colorize is None else colorize
        self._styles = Dark16() if self._colorize else None

    def formatTime(self, record, datefmt=None):
        time = super().formatTime(record, datefmt=datefmt)
        if self._colorize:
            time = self._styles.date.apply(time)
        return time

    def format(self, record):
        if self._colorize:
            record = copy.copy(record)

            level = record.levelname
            level_style = getattr(self._styles, level.lower(),
                                  self._styles.default)
            record.levelname = level_style.apply(level)
            record.session = self._styles.session.apply(
                str(getattr(record, 'session', '-')))
            record.name = self._styles.name.apply(record.name)

        return super().format(record)


class SqlshapeLogHandler(logging.StreamHandler):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.setFormatter(SqlshapeLogFormatter(
            LOG_FORMAT, style='{', colorize=term.use_colors(self.stream)))
        self.addFilter(SessionFilter())


def setup_logging(log_level, log_destination):
    log_level = log_level.upper()
    try:
        log_level = LOG_LEVELS[log_level]
    except KeyError:
        raise RuntimeError('Invalid logging level {!r}'.format(log_level))

    if log_level == 'SILENT':
        logger = logging.getLogger()
        logger.disabled = True
        logger.setLevel(logging.CRITICAL)
        return

    if log_destination == 'syslog':
        fmt = logging.Formatter(
            '{processName}[{process}]: {session}: {name}: {message}',
            style='{')
        handler = logging.handlers.SysLogHandler(
            '/dev/log',
            facility=logging.handlers.SysLogHandler.LOG_USER)
        handler.setFormatter(fmt)
        handler.addFilter(SessionFilter())

    elif log_destination == 'stderr':
        handler = SqlshapeLogHandler()

    else:
        fmt = logging.Formatter(LOG_FORMAT, style='{')
        handler = logging.FileHandler(log_destination)
        handler.setFormatter(fmt)
        handler.addFilter(SessionFilter())

    log_level = logging.getLevelName(
        'WARNING' if log_level == 'WARN' else log_level)

    logger = logging.getLogger()
    logger.setLevel(log_level)
    logger.addHandler(handler)

    # Channel warnings into logging system
    logging.captureWarnings(True)
    warnings.simplefilter('default', category=DeprecationWarning)

    if not debug.flags.wire_trace:
        logging.getLogger('sqlshape.pgwire').setLevel(
            max(log_level, logging.INFO))

    return handler
