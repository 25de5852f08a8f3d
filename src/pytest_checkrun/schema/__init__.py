"""Document models for configurations and suites.

Defines immutable Pydantic models describing the configuration document
(variables, locals, resources, outputs, checks) and the suite document
(a header followed by test runs).
"""

from .checks import Check, DataLookup, RetryPolicy
from .conditions import Assertion, ConditionBlock
from .config import Configuration
from .resources import Output, Resource
from .runs import Command, Suite, TestRun
from .variables import ValidationRule, Variable

__all__ = (
    'Assertion',
    'Check',
    'Command',
    'ConditionBlock',
    'Configuration',
    'DataLookup',
    'Output',
    'Resource',
    'RetryPolicy',
    'Suite',
    'TestRun',
    'ValidationRule',
    'Variable',
)
