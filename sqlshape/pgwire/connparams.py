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
from typing import Mapping, Optional, TypedDict, NotRequired, Unpack, Self

import dataclasses
import enum
import getpass
import os
import pathlib
import urllib.parse


DEFAULT_PORT = 5432
DEFAULT_HOSTS = ('/run/postgresql', '/var/run/postgresql', '/tmp',
                 'localhost')


def get_pg_home_directory() -> pathlib.Path:
    return pathlib.Path.home() / '.postgresql'


class SSLMode(enum.IntEnum):
    disable = 0
    allow = 1
    prefer = 2
    require = 3
    verify_ca = 4
    verify_full = 5

    @classmethod
    def parse(cls, sslmode: str) -> Self:
        try:
            return cls[sslmode.replace('-', '_')]
        except KeyError:
            raise ValueError(f'invalid sslmode: {sslmode!r}') from None


class CreateParamsKwargs(TypedDict, total=False):
    dsn: NotRequired[Optional[str]]
    host: NotRequired[Optional[str]]
    port: NotRequired[Optional[int]]
    user: NotRequired[Optional[str]]
    password: NotRequired[Optional[str]]
    database: NotRequired[Optional[str]]
    sslmode: NotRequired[Optional[SSLMode]]
    sslrootcert: NotRequired[Optional[str]]
    connect_timeout: NotRequired[Optional[float]]
    server_settings: NotRequired[Optional[dict[str, str]]]


@dataclasses.dataclass(frozen=True)
class Address:
    host: str
    port: int

    @property
    def is_unix_socket(self) -> bool:
        return self.host.startswith('/')

    @property
    def socket_path(self) -> str:
        return os.path.join(self.host, f'.s.PGSQL.{self.port}')

    def __str__(self) -> str:
        if self.is_unix_socket:
            return self.socket_path
        return f'{self.host}:{self.port}'


class ConnectionParams:
    """Connection parameters for the introspection session.

    Values are taken, in order of precedence, from keyword arguments,
    the DSN, and the standard libpq environment variables (PGHOST,
    PGPORT, PGUSER, PGPASSWORD, PGDATABASE, PGSSLMODE, PGSSLROOTCERT,
    PGCONNECT_TIMEOUT).  Anything still missing falls back to libpq's
    defaults.
    """

    def __init__(self, **kwargs: Unpack[CreateParamsKwargs]) -> None:
        self._params: dict[str, object] = {}
        self._server_settings: dict[str, str] = {}
        self.update(**kwargs)

    def update(self, **kwargs: Unpack[CreateParamsKwargs]) -> None:
        if dsn := kwargs.pop('dsn', None):
            self._params.update(parse_dsn(dsn, self._server_settings))
        if server_settings := kwargs.pop('server_settings', None):
            self._server_settings.update(server_settings)
        for k, v in kwargs.items():
            if v is not None:
                self._params[k] = v

    def resolve(self, environ: Optional[Mapping[str, str]] = None) -> Self:
        """Return a copy with environment and default values filled in."""
        if environ is None:
            environ = os.environ

        params = dict(self._params)

        def _default(key, envvar, conv=str):
            if params.get(key) is None:
                val = environ.get(envvar)
                if val:
                    params[key] = conv(val)

        _default('host', 'PGHOST')
        _default('port', 'PGPORT', int)
        _default('user', 'PGUSER')
        _default('password', 'PGPASSWORD')
        _default('database', 'PGDATABASE')
        _default('sslmode', 'PGSSLMODE', SSLMode.parse)
        _default('sslrootcert', 'PGSSLROOTCERT')
        _default('connect_timeout', 'PGCONNECT_TIMEOUT', float)

        if params.get('user') is None:
            params['user'] = getpass.getuser()
        if params.get('database') is None:
            params['database'] = params['user']
        if params.get('port') is None:
            params['port'] = DEFAULT_PORT
        if params.get('sslmode') is None:
            params['sslmode'] = SSLMode.prefer

        if params.get('password') is None:
            passfile = environ.get('PGPASSFILE')
            path = (pathlib.Path(passfile) if passfile
                    else pathlib.Path.home() / '.pgpass')
            params['password'] = lookup_passfile(
                path,
                hosts=[a.host for a in _addresses(params)],
                port=params['port'],
                database=params['database'],
                user=params['user'],
            )

        rv = type(self)()
        rv._params = params
        rv._server_settings = dict(self._server_settings)
        return rv

    @property
    def addresses(self) -> list[Address]:
        return _addresses(self._params)

    @property
    def host(self) -> Optional[str]:
        return self._params.get('host')  # type: ignore

    @property
    def port(self) -> Optional[int]:
        return self._params.get('port')  # type: ignore

    @property
    def user(self) -> Optional[str]:
        return self._params.get('user')  # type: ignore

    @property
    def password(self) -> Optional[str]:
        return self._params.get('password')  # type: ignore

    @property
    def database(self) -> Optional[str]:
        return self._params.get('database')  # type: ignore

    @property
    def sslmode(self) -> Optional[SSLMode]:
        return self._params.get('sslmode')  # type: ignore

    @property
    def sslrootcert(self) -> Optional[str]:
        return self._params.get('sslrootcert')  # type: ignore

    @property
    def connect_timeout(self) -> Optional[float]:
        return self._params.get('connect_timeout')  # type: ignore

    @property
    def server_settings(self) -> Mapping[str, str]:
        return self._server_settings

    def to_dsn(self) -> str:
        params = {
            k: v for k, v in self._params.items() if v is not None
        }
        if isinstance(params.get('sslmode'), SSLMode):
            params['sslmode'] = params['sslmode'].name.replace('_', '-')
        if 'database' in params:
            params['dbname'] = params.pop('database')
        return render_dsn('postgresql', params)

    def __repr__(self) -> str:
        shown = {
            k: ('********' if k == 'password' else v)
            for k, v in self._params.items()
            if v is not None
        }
        return f'<ConnectionParams {shown!r}>'


def _addresses(params: Mapping[str, object]) -> list[Address]:
    host = params.get('host')
    port = params.get('port') or DEFAULT_PORT
    if host:
        hosts = [h for h in str(host).split(',') if h]
    else:
        hosts = list(DEFAULT_HOSTS)
    return [Address(h, int(port)) for h in hosts]  # type: ignore


def parse_dsn(
    dsn: str,
    server_settings: Optional[dict[str, str]] = None,
) -> dict[str, object]:
    parsed = urllib.parse.urlparse(dsn)
    if parsed.scheme not in {'postgres', 'postgresql'}:
        raise ValueError(
            f'invalid DSN: scheme is expected to be either '
            f'"postgresql" or "postgres", got {parsed.scheme!r}')

    params: dict[str, object] = {}

    netloc = parsed.netloc
    if '@' in netloc:
        auth, _, hostspec = netloc.rpartition('@')
        user, sep, password = auth.partition(':')
        if user:
            params['user'] = urllib.parse.unquote(user)
        if sep:
            params['password'] = urllib.parse.unquote(password)
    else:
        hostspec = netloc

    if hostspec:
        host, sep, port = hostspec.rpartition(':')
        if not sep or ']' in port:
            host, port = hostspec, ''
        host = host.strip('[]')
        if host:
            params['host'] = urllib.parse.unquote(host)
        if port:
            params['port'] = int(port)

    path = parsed.path.lstrip('/')
    if path:
        params['database'] = urllib.parse.unquote(path)

    for key, values in urllib.parse.parse_qs(parsed.query).items():
        value = values[-1]
        if key in {'host', 'user', 'password', 'sslrootcert'}:
            params[key] = value
        elif key == 'port':
            params['port'] = int(value)
        elif key in {'dbname', 'database'}:
            params['database'] = value
        elif key == 'sslmode':
            params['sslmode'] = SSLMode.parse(value)
        elif key == 'connect_timeout':
            params['connect_timeout'] = float(value)
        elif server_settings is not None:
            server_settings[key] = value

    return params


def lookup_passfile(
    path: pathlib.Path,
    *,
    hosts: list[str],
    port: int,
    database: str,
    user: str,
) -> Optional[str]:
    """Find a password in a libpq-format passfile, if one exists."""
    try:
        lines = path.read_text().splitlines()
    except OSError:
        return None

    def _match(pattern: str, value: str) -> bool:
        return pattern == '*' or pattern == value

    for line in lines:
        if not line.strip() or line.lstrip().startswith('#'):
            continue
        parts = _split_passfile_line(line)
        if len(parts) != 5:
            continue
        p_host, p_port, p_db, p_user, p_password = parts
        if (
            any(
                _match(p_host, 'localhost' if h.startswith('/') else h)
                for h in hosts
            )
            and _match(p_port, str(port))
            and _match(p_db, database)
            and _match(p_user, user)
        ):
            return p_password

    return None


def _split_passfile_line(line: str) -> list[str]:
    parts = []
    current = []
    chars = iter(line)
    for ch in chars:
        if ch == '\\':
            current.append(next(chars, ''))
        elif ch == ':':
            parts.append(''.join(current))
            current = []
        else:
            current.append(ch)
    parts.append(''.join(current))
    return parts


def render_dsn(scheme, params):
    params = dict(params)

    user = urllib.parse.quote(str(params.pop('user', '')), safe='')
    if user:
        password = params.pop('password', '')
        if password:
            user += ':' + urllib.parse.quote(str(password), safe='')
        user += '@'

    dbname = params.pop('dbname', '')
    host = str(params.pop('host', 'localhost'))
    if '/' in host:
        # Put host back, it's a UNIX socket path, needs to be
        # in query part.
        params['host'] = host
        host = ''
        port = ''
    else:
        port = params.pop('port', '')
        if port:
            port = f':{port}'

    if params:
        query = '?' + urllib.parse.urlencode(params)
    else:
        query = ''

    path = f'/{urllib.parse.quote(str(dbname))}' if dbname else ''

    return f'{scheme}://{user}{host}{port}{path}{query}'
