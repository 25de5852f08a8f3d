"""Rendering of run results for terminals and machines."""

from json import dumps
from typing import TYPE_CHECKING, Literal

from yaml import safe_dump

from pytest_checkrun.engine.results import CheckStatus, RunStatus

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from pytest_checkrun.engine.results import RunResult

#: Supported report formats.
type ReportFormat = Literal['text', 'json', 'yaml']

INDENT = '    '


def describe(result: 'RunResult') -> 'Iterator[str]':
    """Yield detail lines explaining a run result."""
    if result.error:
        yield f'error: {result.error}'

    for failure in result.validation_failures:
        yield f'{failure.identifier}: {failure.rule}: {failure.message}'

    for violation in result.violations:
        yield f'{violation.owner}: {violation.kind} #{violation.index}: {violation.message}'

    for check in result.checks.values():
        if check.status is CheckStatus.PASS:
            continue
        yield f'{check.identifier}: {check.status}'
        for failure in check.failures:
            yield f'{INDENT}{failure.message}'

    for failure in result.assertions:
        yield f'{failure.owner}: assert #{failure.index}: {failure.message}'

    if result.unexpected:
        yield f'unexpected failures: {", ".join(result.unexpected)}'

    if result.missing:
        yield f'expected failures not observed: {", ".join(result.missing)}'


def render_text(results: 'Sequence[RunResult]') -> str:
    """Render results as human-readable lines."""
    lines = []
    for result in results:
        lines.append(f'{result.status.upper():<7} {result.name} ({result.command})')
        if result.status is not RunStatus.PASS:
            lines.extend(f'{INDENT}{line}' for line in describe(result))

    passed = sum(result.status is RunStatus.PASS for result in results)
    lines.append(f'{passed} of {len(results)} runs passed')

    return '\n'.join(lines)


def render(results: 'Sequence[RunResult]', fmt: ReportFormat = 'text') -> str:
    """Render results in the requested format."""
    if fmt == 'text':
        return render_text(results)

    data = [result.model_dump(mode='json') for result in results]
    if fmt == 'json':
        return dumps(data, ensure_ascii=False, indent=4)

    return safe_dump(data, allow_unicode=True, sort_keys=False)
