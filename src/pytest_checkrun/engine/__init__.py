"""Execution engines.

This package turns a validated configuration and a suite of test runs
into run results. It provides:
- validation of variable values against their rules;
- precondition and postcondition evaluation around resource lifecycles;
- check blocks with data lookups through provider gateways;
- the test run engine driving plan, apply and destroy commands and
  reconciling observed failures with expected ones.
"""

from .checks import CheckEngine
from .conditions import ConditionEngine, ConditionOutcome
from .provider import Provider, ProviderGateway
from .reconcile import Reconciliation, reconcile
from .results import (
    AssertionFailure,
    CheckResult,
    CheckStatus,
    ConditionViolation,
    Diagnostic,
    RunResult,
    RunStatus,
    ValidationFailure,
)
from .runs import TestRunEngine, dependency_order
from .state import ConditionStatus, Lifecycle, ResourceInstance
from .validation import ValidationEngine

__all__ = (
    'AssertionFailure',
    'CheckEngine',
    'CheckResult',
    'CheckStatus',
    'ConditionEngine',
    'ConditionOutcome',
    'ConditionStatus',
    'ConditionViolation',
    'Diagnostic',
    'Lifecycle',
    'Provider',
    'ProviderGateway',
    'Reconciliation',
    'ResourceInstance',
    'RunResult',
    'RunStatus',
    'TestRunEngine',
    'ValidationEngine',
    'ValidationFailure',
    'dependency_order',
    'reconcile',
)
