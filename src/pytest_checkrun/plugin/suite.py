"""Pytest integration for YAML test suites.

A suite file is collected by `SuiteFile`, which parses the suite and
its configuration, and creates one test run engine shared by all runs
of the file. Each run is a `RunItem`; pytest executes the items of a
file in order, so later runs observe the state and outputs of earlier
ones. Resources left in state are destroyed when the file is torn down.
"""

from typing import TYPE_CHECKING

import pytest

from pytest_checkrun.engine.results import RunStatus
from pytest_checkrun.errors import CheckrunError
from pytest_checkrun.report import describe
from pytest_checkrun.settings import RunnerSettings

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from _pytest._code.code import ExceptionInfo, TerminalRepr

    from pytest_checkrun.core import DocumentParser
    from pytest_checkrun.engine import RunResult, TestRunEngine
    from pytest_checkrun.schema import TestRun


class RunFailed(AssertionError):
    """A test run finished with status `fail` or `error`."""

    def __init__(self, result: 'RunResult') -> None:
        """Initialize a failure from a run result."""
        self.result = result

        lines = [f'Run {result.name!r} ({result.command}) finished with status {result.status}']
        lines.extend(f'  {line}' for line in describe(result))

        super().__init__('\n'.join(lines))


class SuiteFile(pytest.File):
    """Pytest file collector for suite files."""

    __test__ = False

    engine: 'TestRunEngine | None' = None

    @property
    def parser(self) -> 'DocumentParser':
        """Shared document parser of the session."""
        return self.config.checkrun_parser  # type: ignore[attr-defined]

    def collect(self) -> 'Iterable[RunItem]':
        """Collect one item per test run.

        Files whose first document is not a suite header are ignored.

        Raises:
            CheckrunError: If the suite or its configuration is invalid.
        """
        with self.path.open('rt', encoding='utf-8') as content:
            documents = self.parser.load(content)

        if not documents or not self.parser.is_suite_header(documents[0]):
            return

        document = self.parser.parse_suite_file(self.path)

        overrides = {}
        if self.config.getoption('--checkrun-strict', default=False):
            overrides['strict'] = True
        if self.config.getoption('--checkrun-no-cleanup', default=False):
            overrides['cleanup'] = False

        self.engine = self.parser.create_engine(document, RunnerSettings(), **overrides)

        for run in document.runs:
            yield RunItem.from_parent(
                self,
                name=run.name,
                test_run=run,
                engine=self.engine,
            )

    def teardown(self) -> None:
        """Destroy resources left in state and stop provider gateways."""
        if self.engine is None:
            return

        try:
            if self.engine.settings.cleanup:
                self.engine.cleanup()
        finally:
            self.engine.close()


class RunItem(pytest.Item):
    """Pytest item executing a single test run."""

    __test__ = False

    def __init__(self, *, test_run: 'TestRun', engine: 'TestRunEngine', **kwargs: 'Any') -> None:
        """Initialize a pytest item backed by a test run.

        Args:
            test_run: Test run declaration.
            engine: Engine shared by all runs of the suite file.
            **kwargs: Keyword pytest.Item arguments.
        """
        super().__init__(**kwargs)

        self.test_run = test_run
        self.engine = engine
        self.result: 'RunResult | None' = None

    def runtest(self) -> None:
        """Execute the test run.

        Raises:
            RunFailed: If the run fails or errors.
        """
        self.result = self.engine.execute_run(self.test_run)

        if self.result.status is RunStatus.SKIPPED:
            pytest.skip('an earlier run of the suite errored in strict mode')

        if self.result.status in {RunStatus.FAIL, RunStatus.ERROR}:
            raise RunFailed(self.result)

    def repr_failure(self, excinfo: 'ExceptionInfo[BaseException]',
                     style: 'Any' = None) -> 'str | TerminalRepr':
        """Represent run failures without a Python traceback."""
        if isinstance(excinfo.value, (RunFailed, CheckrunError)):
            return f'{excinfo.value}'

        return super().repr_failure(excinfo, style=style)

    def reportinfo(self) -> tuple['Any', int | None, str]:
        """Location of the item in reports."""
        return self.path, None, f'run: {self.name} ({self.test_run.command})'
