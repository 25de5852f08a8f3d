"""YAML document parser and runtime integration.

This module defines a high-level parser responsible for integrating
all extensions into a YAML loader and validating configuration and
suite documents.

The parser coordinates:
- built-in instructions, functions and the in-memory provider,
- plugin-provided extensions,
- custom YAML constructors.
"""

from pathlib import Path
from typing import TYPE_CHECKING, Any, NamedTuple

from pydantic import ValidationError
from yaml import add_constructor, load_all
from yaml.error import MarkedYAMLError

from pytest_checkrun.builtins import instructions, providers
from pytest_checkrun.builtins.functions import BUILTIN_FUNCTIONS
from pytest_checkrun.engine.runs import TestRunEngine
from pytest_checkrun.errors import CheckrunError, ErrorContext, SchemaError
from pytest_checkrun.schema import Configuration, Suite, TestRun
from pytest_checkrun.settings import RunnerSettings

from .loader import ExtensionsLoaderMixin

if TYPE_CHECKING:
    from io import TextIOBase

    from yaml import BaseLoader
    from yaml.nodes import ScalarNode

#: YAML tag of implicitly resolved dates and timestamps.
TIMESTAMP_TAG = 'tag:yaml.org,2002:timestamp'

#: Parsed test runs of a suite, in file order.
type Runs = tuple[TestRun, ...]


class SuiteDocument(NamedTuple):
    """Suite file bundled with the configuration it tests."""

    path: Path
    header: Suite
    runs: Runs
    configuration: Configuration


class DocumentParser(ExtensionsLoaderMixin):
    """YAML parser with plugin and extension support.

    This class is responsible for:
    - registering built-in and plugin-provided extensions;
    - attaching custom YAML constructors to a loader;
    - parsing and validating configuration and suite documents;
    - creating test run engines bound to the registered extensions.
    """

    def __init__(self, loader: type['BaseLoader'],
                 strict: bool = False,
                 auto_attach: bool = True) -> None:
        """Initialize the document parser.

        Args:
            loader: YAML loader class to extend with constructors.
            strict: Whether to raise errors on plugin loading failures
                instead of emitting warnings.
            auto_attach: Whether to automatically attach all known
                constructors to the YAML loader during initialization.
        """
        self.loader = loader
        self.strict_mode = strict

        self.clear_plugins()

        self.add_instruction(instructions.expr)
        self.add_instruction(instructions.env)
        self.add_instruction(instructions.file)

        for function in BUILTIN_FUNCTIONS.values():
            self.add_function(function)

        self.add_provider(providers.memory)

        self.load_plugins()

        if auto_attach:
            self.attach()

    def attach(self) -> None:
        """Attach all known instruction constructors to the YAML loader.

        This method mutates the provided YAML loader in-place. It is safe
        to call it multiple times.

        Dates and timestamps are kept as the text they are written with,
        so documents only ever hold strings, numbers, booleans and nulls.
        """
        for name, instruction in self.instructions.items():
            add_constructor(f'!{name}', instruction(), Loader=self.loader)

        add_constructor(TIMESTAMP_TAG, construct_timestamp_text, Loader=self.loader)

    def load(self, content: 'TextIOBase | str') -> list[Any]:
        """Load all YAML documents of a stream.

        Empty documents are skipped.

        Raises:
            SchemaError: If YAML parsing fails.
        """
        try:
            documents = list(load_all(content, Loader=self.loader))

        except MarkedYAMLError as base:
            raise SchemaError.from_yaml_error(base) from base

        except CheckrunError:
            raise

        except Exception as base:
            raise SchemaError('Unexpected error') from base

        return [document for document in documents if document is not None]

    def parse_config(self, content: 'TextIOBase | str',
                     filename: str | None = None) -> Configuration:
        """Parse a configuration document.

        Args:
            content: YAML content as a string or file-like object.
            filename: Source name used in error locations.

        Returns:
            Validated configuration with checked references.

        Raises:
            SchemaError: If the document is invalid or references
                undeclared symbols.
        """
        documents = self.load(content)
        if len(documents) != 1:
            raise SchemaError(
                'Configuration must contain exactly one document',
                context=ErrorContext(filename=filename),
            )

        document, = documents
        try:
            configuration = Configuration.model_validate(document)

        except ValidationError as base:
            raise SchemaError.from_pydantic_error(base, data=document, filename=filename) from base

        try:
            configuration.check_references()

        except SchemaError as base:
            raise base.with_context(filename=filename) from base

        return configuration

    def parse_suite(self, content: 'TextIOBase | str',
                    filename: str | None = None) -> tuple[Suite, Runs]:
        """Parse a suite document stream.

        The first document must be the suite header; every following
        document declares one test run.

        Args:
            content: YAML content as a string or file-like object.
            filename: Source name used in error locations.

        Returns:
            The suite header and its runs in file order.

        Raises:
            SchemaError: If the header is missing or misplaced, a run is
                invalid, or run names are not unique.
        """
        return self.build_suite(self.load(content), filename)

    @staticmethod
    def is_suite_header(document: Any) -> bool:  # noqa: ANN401
        """Check whether a loaded document is a suite header."""
        return isinstance(document, dict) and document.get('spec') == 'suite'

    def build_suite(self, documents: list[Any],
                    filename: str | None = None) -> tuple[Suite, Runs]:
        """Validate loaded suite documents.

        Raises:
            SchemaError: If the header is missing or misplaced, a run is
                invalid, or run names are not unique.
        """
        header: Suite | None = None
        runs: list[TestRun] = []
        names: set[str] = set()

        for position, document in enumerate(documents):
            is_header = self.is_suite_header(document)
            if is_header and position > 0:
                raise SchemaError('Header must be at first position', context=ErrorContext(filename=filename))

            try:
                if is_header:
                    header = Suite.model_validate(document)
                    continue
                run = TestRun.model_validate(document)

            except ValidationError as base:
                run_name = document.get('run') if isinstance(document, dict) else None
                raise SchemaError.from_pydantic_error(
                    base,
                    data=document,
                    filename=filename,
                    run_name=run_name if isinstance(run_name, str) else None,
                ) from base

            if run.name in names:
                raise SchemaError(
                    f'Duplicate run name {run.name!r}',
                    context=ErrorContext(filename=filename, run_name=run.name),
                )
            names.add(run.name)
            runs.append(run)

        if header is None:
            raise SchemaError('Suite must start with a suite header', context=ErrorContext(filename=filename))

        return header, tuple(runs)

    def parse_config_file(self, path: Path) -> Configuration:
        """Read and parse a configuration file."""
        with path.open('rt', encoding='utf-8') as content:
            return self.parse_config(content, filename=f'{path}')

    def parse_suite_file(self, path: Path) -> SuiteDocument:
        """Read a suite file and the configuration it refers to.

        The configuration path is resolved relative to the suite file.
        """
        with path.open('rt', encoding='utf-8') as content:
            header, runs = self.parse_suite(content, filename=f'{path}')

        configuration = self.parse_config_file(path.parent / header.config)

        return SuiteDocument(path, header, runs, configuration)

    def create_engine(self, document: SuiteDocument,
                      settings: RunnerSettings | None = None,
                      **overrides: Any) -> TestRunEngine:  # noqa: ANN401
        """Create a test run engine for a parsed suite.

        Suite-level `strict` and `cleanup` flags override the settings,
        explicit keyword overrides win over both.
        """
        suite_flags = {
            key: value
            for key, value in (('strict', document.header.strict), ('cleanup', document.header.cleanup))
            if value is not None
        }
        settings = (settings or RunnerSettings()).model_copy(update={**suite_flags, **overrides})

        return TestRunEngine(
            document.configuration,
            variables=document.header.variables,
            factories=self.providers,
            functions=self.functions,
            settings=settings,
        )


def construct_timestamp_text(loader: 'BaseLoader', node: 'ScalarNode') -> str:
    """Construct a date or timestamp scalar as its source text."""
    return loader.construct_scalar(node)
