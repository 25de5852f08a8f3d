"""Command-line interface of pytest-checkrun.

Validates configuration variables, executes suites outside of pytest,
and prints the JSON Schema of documents.
"""

from functools import cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

from click import Choice, Context, echo, group, option, pass_context
from click import Path as PathParam
from click import argument
from yaml import SafeLoader, YAMLError, load

from pytest_checkrun.core import DocumentParser
from pytest_checkrun.engine.results import RunStatus
from pytest_checkrun.engine.validation import ValidationEngine, constant_locals
from pytest_checkrun.errors import CheckrunError
from pytest_checkrun.jsonschema import SchemaGenerator
from pytest_checkrun.logs import configure_logging
from pytest_checkrun.report import render
from pytest_checkrun.settings import RunnerSettings

if TYPE_CHECKING:
    from pytest_checkrun.report import ReportFormat

InputFilepath = PathParam(
    exists=True,
    dir_okay=False,
    readable=True,
    path_type=Path,
)


@cache
def get_parser() -> DocumentParser:
    """Return a cached document parser on a private safe loader."""
    class ClearLoader(SafeLoader):
        pass

    return DocumentParser(ClearLoader, strict=False)


def parse_assignment(assignment: str) -> tuple[str, Any]:
    """Parse a `NAME=VALUE` option.

    The value is read as a YAML scalar with the document loader, so
    dates stay text and instructions such as `!env` are available.
    """
    name, separator, raw = assignment.partition('=')
    if not separator or not name:
        raise ValueError(f'Expected NAME=VALUE, got {assignment!r}')

    try:
        return name.strip(), load(raw, Loader=get_parser().loader) if raw else ''
    except YAMLError:
        return name.strip(), raw


@group(help='Validate configurations and run test suites.')
@option(
    '--log-level',
    type=Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    default=None,
    help='Minimal level of log events written to stderr.',
)
@option(
    '--log-format',
    type=Choice(['console', 'json']),
    default=None,
    help='Rendering of log events.',
)
@pass_context
def cli(ctx: Context, log_level: str | None, log_format: str | None) -> None:
    """Root CLI group for pytest-checkrun tools."""
    settings = RunnerSettings()
    ctx.obj = settings

    configure_logging(
        (log_level or settings.log_level).upper(),  # type: ignore[arg-type]
        log_format or settings.log_format,
    )


@cli.command(
    name='schema',
    help='Print the JSON Schema of configuration or suite documents.',
)
@argument('kind', type=Choice(['config', 'suite']), default='config')
def print_schema(kind: str) -> None:
    """Generate and print the JSON Schema."""
    echo(SchemaGenerator.make_schema(kind))  # type: ignore[arg-type]


@cli.command(
    name='validate',
    help='Validate variable values against the rules of a configuration.',
)
@argument('config', type=InputFilepath)
@option(
    '--var', 'assignments',
    multiple=True,
    metavar='NAME=VALUE',
    help='Variable value, repeatable. Values are read as YAML scalars.',
)
@pass_context
def validate(ctx: Context, config: Path, assignments: tuple[str, ...]) -> None:
    """Validate variables and report every failing rule."""
    settings: RunnerSettings = ctx.obj
    parser = get_parser()

    try:
        values = dict(parse_assignment(assignment) for assignment in assignments)
        configuration = parser.parse_config_file(config)

        engine = ValidationEngine(
            constant_locals(configuration, parser.functions),
            functions=parser.functions,
            max_workers=settings.max_workers,
        )
        _, failures = engine.validate_all(configuration.variables, values)

    except (CheckrunError, ValueError) as error:
        echo(f'{error}', err=True)
        ctx.exit(1)

    for failure in failures:
        echo(f'{failure.identifier}: {failure.rule}: {failure.message}')

    if failures:
        ctx.exit(1)

    echo('All variables are valid')


@cli.command(
    name='test',
    help='Execute the runs of a suite file and report their results.',
)
@argument('suite', type=InputFilepath)
@option(
    '--format', 'fmt',
    type=Choice(['text', 'json', 'yaml']),
    default='text',
    help='Report format.',
)
@option('--strict', is_flag=True, default=False, help='Skip the remaining runs after a run errors.')
@option('--no-cleanup', is_flag=True, default=False, help='Keep resources left in state after the suite.')
@pass_context
def run_suite(ctx: Context, suite: Path, fmt: 'ReportFormat',
              strict: bool, no_cleanup: bool) -> None:
    """Execute a suite file."""
    parser = get_parser()

    overrides: dict[str, bool] = {}
    if strict:
        overrides['strict'] = True
    if no_cleanup:
        overrides['cleanup'] = False

    try:
        document = parser.parse_suite_file(suite)
    except CheckrunError as error:
        echo(f'{error}', err=True)
        ctx.exit(1)

    engine = parser.create_engine(document, ctx.obj, **overrides)
    try:
        results = engine.execute(document.runs)
        if engine.settings.cleanup:
            engine.cleanup()
    finally:
        engine.close()

    echo(render(results, fmt))

    if any(result.status in {RunStatus.FAIL, RunStatus.ERROR} for result in results):
        ctx.exit(1)


if __name__ == '__main__':
    cli()
