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


"""Generation of typed query modules from ``*.sql.py`` sources."""

from __future__ import annotations
from typing import Iterable, Optional, Sequence

import asyncio
import dataclasses
import keyword
import logging
import pathlib

from sqlshape import catalog
from sqlshape import errors
from sqlshape.common import debug
from sqlshape.introspect import engine
from sqlshape.introspect import results

from . import diagnostics
from . import extract
from . import typemap


logger = logging.getLogger('sqlshape.codegen')

HEADER = (
    '# This file was generated by sqlshape from {source}.\n'
    '# Do not edit it directly; edit the source and regenerate.\n'
)


@dataclasses.dataclass(frozen=True)
class GeneratedQuery:
    query: extract.ExtractedQuery
    result: results.DescribeResult
    code: str
    modules: frozenset[str]

    @property
    def failed(self) -> bool:
        return isinstance(self.result, results.Failure)


@dataclasses.dataclass
class GenerationReport:
    written: list[pathlib.Path] = dataclasses.field(default_factory=list)
    unchanged: list[pathlib.Path] = dataclasses.field(default_factory=list)
    failed_queries: int = 0
    failed_files: list[pathlib.Path] = dataclasses.field(
        default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_queries and not self.failed_files

    def merge(self, other: GenerationReport) -> None:
        self.written.extend(other.written)
        self.unchanged.extend(other.unchanged)
        self.failed_queries += other.failed_queries
        self.failed_files.extend(other.failed_files)


def class_prefix(name: str) -> str:
    """``find_widget`` -> ``FindWidget``, ``findWidget`` -> ``FindWidget``"""
    return ''.join(
        part[:1].upper() + part[1:] for part in name.split('_') if part
    ) or 'Query'


def _typed_dict(
    cls_name: str,
    fields: Sequence[tuple[str, str]],
) -> str:
    if all(n.isidentifier() and not keyword.iskeyword(n)
           for n, _ in fields):
        body = [f'    {n}: {t}' for n, t in fields] or ['    pass']
        return '\n'.join(
            [f'class {cls_name}(typing.TypedDict):', *body])

    # Columns such as "?column?" cannot be class attributes.
    items = ''.join(f'    {n!r}: {t},\n' for n, t in fields)
    return (f'{cls_name} = typing.TypedDict({cls_name!r}, {{\n'
            f'{items}}})')


def _query_binding(
    query: extract.ExtractedQuery,
    params_type: str,
    result_type: str,
) -> str:
    return (
        f'{query.name}: runtime.Query[{params_type}, {result_type}] = '
        f'runtime.Query(\n'
        f'    {query.sql!r},\n'
        f'    {query.keys!r},\n'
        f')'
    )


def _stub(query: extract.ExtractedQuery, failure: results.Failure) -> str:
    lines = [f'# {query.name}: {failure.message} ({failure.code})']
    if failure.position is not None:
        lines.append(f'#   at character {failure.position}')
    binding = _query_binding(query, 'typing.Any', 'typing.Any')
    lines.extend(f'# {line}' for line in binding.split('\n'))
    return '\n'.join(lines)


def render_query(
    query: extract.ExtractedQuery,
    result: results.DescribeResult,
    cat: catalog.Catalog,
) -> GeneratedQuery:
    if isinstance(result, results.Failure):
        return GeneratedQuery(query, result, _stub(query, result),
                              frozenset())

    if len(result.params) != len(query.keys):
        failure = results.Failure(
            message=(f'query has {len(result.params)} parameters but '
                     f'{len(query.keys)} named placeholders'),
            code='sqlshape.parameters',
        )
        return GeneratedQuery(query, failure, _stub(query, failure),
                              frozenset())

    modules: set[str] = set()

    inputs = []
    for key, type_oid in zip(query.keys, result.params):
        pytype = typemap.resolve(cat, type_oid)
        inputs.append((key, pytype.annotation))
        if pytype.module:
            modules.add(pytype.module)

    outputs: dict[str, str] = {}
    for column in result.columns or ():
        pytype = typemap.resolve(
            cat, column.type_oid, nullable=cat.is_nullable(column))
        if column.name in outputs:
            logger.warning('%s: duplicate output column %r',
                           query.name, column.name)
        outputs[column.name] = pytype.annotation
        if pytype.module:
            modules.add(pytype.module)

    prefix = class_prefix(query.name)
    code = '\n\n\n'.join([
        _typed_dict(f'{prefix}Input', inputs),
        _typed_dict(f'{prefix}Output', list(outputs.items())),
        _query_binding(query, f'{prefix}Input', f'{prefix}Output'),
    ])
    return GeneratedQuery(query, result, code, frozenset(modules))


def render_module(
    source_name: str,
    generated: Iterable[GeneratedQuery],
) -> str:
    generated = list(generated)
    modules = {'typing'}
    for g in generated:
        modules |= g.modules

    parts = [
        HEADER.format(source=source_name),
        'from __future__ import annotations\n',
        '\n'.join(f'import {m}' for m in sorted(modules)) + '\n',
        'from sqlshape import runtime\n',
    ]
    body = '\n\n\n'.join(g.code for g in generated)
    head = '\n'.join(parts)
    if body:
        return f'{head}\n\n{body}\n'
    return head


async def generate_module(
    session: engine.Session,
    cat: catalog.Catalog,
    queries: Sequence[extract.ExtractedQuery],
    *,
    source_name: str,
) -> tuple[str, list[GeneratedQuery]]:
    async with asyncio.TaskGroup() as g:
        tasks = [g.create_task(session.describe(q.sql, label=q.name))
                 for q in queries]

    generated = []
    for query, task in zip(queries, tasks):
        item = render_query(query, task.result(), cat)
        if isinstance(item.result, results.Failure):
            logger.error(
                '%s: query %r (line %d) is invalid:\n%s',
                source_name, query.name, query.lineno,
                diagnostics.explain_query_error(query.sql, item.result))
        elif debug.flags.codegen:
            logger.debug('%s: %s -> %r', source_name, query.name,
                         item.result)
        generated.append(item)

    return render_module(source_name, generated), generated


def output_path(
    source: pathlib.Path,
    output_dir: Optional[pathlib.Path] = None,
) -> pathlib.Path:
    if not extract.is_source_file(source):
        raise errors.GenerationError(
            f'expected a file ending in {extract.SOURCE_SUFFIX}',
            filename=str(source))
    name = source.name[:-len(extract.SOURCE_SUFFIX)] + '.py'
    dest = (output_dir or source.parent) / name
    if dest.resolve() == source.resolve():
        raise errors.GenerationError(
            'refusing to overwrite the input file', filename=str(source))
    return dest


async def write_file(
    session: engine.Session,
    cat: catalog.Catalog,
    source: pathlib.Path,
    *,
    output_dir: Optional[pathlib.Path] = None,
) -> GenerationReport:
    report = GenerationReport()
    dest = output_path(source, output_dir)
    queries = extract.extract_file(source)

    code, generated = await generate_module(
        session, cat, queries, source_name=source.name)
    report.failed_queries = sum(1 for g in generated if g.failed)

    try:
        current = dest.read_text(encoding='utf-8')
    except FileNotFoundError:
        current = None

    if current == code:
        report.unchanged.append(dest)
        logger.debug('%s is up to date', dest)
    else:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(code, encoding='utf-8')
        report.written.append(dest)
        logger.info('generated %s (%d queries)', dest, len(generated))
    return report


async def generate(
    session: engine.Session,
    cat: catalog.Catalog,
    sources: Iterable[pathlib.Path],
    *,
    output_dir: Optional[pathlib.Path] = None,
) -> GenerationReport:
    """Regenerate every source file, describing all of them concurrently.

    A file that cannot be read or parsed is reported and skipped.
    """
    report = GenerationReport()

    async def _one(source: pathlib.Path) -> None:
        try:
            report.merge(await write_file(
                session, cat, source, output_dir=output_dir))
        except errors.SqlshapeError as e:
            logger.error('%s', e)
            report.failed_files.append(source)

    async with asyncio.TaskGroup() as g:
        for source in sources:
            if not extract.is_source_file(source):
                logger.warning(
                    'ignoring %s: only files ending in %s are processed',
                    source, extract.SOURCE_SUFFIX)
                continue
            g.create_task(_one(source))

    return report
