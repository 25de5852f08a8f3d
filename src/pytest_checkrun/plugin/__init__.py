"""Pytest plugin for collecting and executing YAML test suites.

This module integrates `pytest-checkrun` with pytest by:
- registering custom command-line options;
- configuring a shared `DocumentParser` instance;
- collecting YAML suite files as pytest collectors.

YAML files matching the pattern `test_*.yml` or `test_*.yaml` are
collected when their first document is a suite header. Each test run of
the suite becomes one pytest item, executed in file order.
"""

from re import match
from typing import TYPE_CHECKING

from yaml import Loader, SafeLoader

from .suite import SuiteFile

if TYPE_CHECKING:
    from pathlib import Path

    from _pytest.config import Config
    from _pytest.config.argparsing import Parser
    from _pytest.nodes import Node


def pytest_addoption(parser: 'Parser') -> None:
    """Register pytest command-line options for pytest-checkrun.

    Args:
        parser: Pytest argument parser.
    """
    group = parser.getgroup('checkrun', 'configuration test suites')
    group.addoption(
        '--checkrun-unsafe-yaml',
        action='store_true',
        dest='checkrun_unsafe_yaml',
        default=False,
        help=(
            'Allow loading YAML files using the unsafe PyYAML Loader. '
            'This enables execution of arbitrary Python objects and '
            'should only be used with trusted suites.'
        ),
    )
    group.addoption(
        '--checkrun-relaxed',
        action='store_true',
        dest='checkrun_relaxed',
        default=False,
        help=(
            'Report third-party plugin loading errors and shadowing '
            'as warnings instead of failing the session.'
        ),
    )
    group.addoption(
        '--checkrun-strict',
        action='store_true',
        dest='checkrun_strict',
        default=False,
        help='Skip the remaining runs of a suite after a run errors.',
    )
    group.addoption(
        '--checkrun-no-cleanup',
        action='store_true',
        dest='checkrun_no_cleanup',
        default=False,
        help='Keep resources left in state when a suite finishes.',
    )


def pytest_configure(config: 'Config') -> None:
    """Configure pytest-checkrun integration.

    This hook initializes a shared `DocumentParser` instance and
    attaches it to the pytest configuration object as
    `config.checkrun_parser`.

    Args:
        config: Pytest configuration object.
    """
    base: type[Loader | SafeLoader] = SafeLoader
    if config.getoption('--checkrun-unsafe-yaml', default=False):
        base = Loader

    class SuiteLoader(base):  # type: ignore[valid-type,misc]
        pass

    from pytest_checkrun.core import DocumentParser  # noqa: PLC0415

    config.checkrun_parser = DocumentParser(  # type: ignore[attr-defined]
        SuiteLoader,
        strict=not config.getoption('--checkrun-relaxed', default=False),
    )


def pytest_collect_file(parent: 'Node', file_path: 'Path') -> SuiteFile | None:
    """Collect YAML suite files.

    Args:
        parent: Parent pytest collection node.
        file_path: Path to the file being considered.

    Returns:
        A `SuiteFile` collector if the file name matches, otherwise `None`.
    """
    if match(r'^test_.+\.ya?ml$', file_path.name):
        return SuiteFile.from_parent(
            parent,
            path=file_path,
        )

    return None
