"""Core runtime and YAML parser integration.

This module defines the core infrastructure for loading documents.

It provides:
- safe loading and registration of builtin and plugin-based extensions;
- integration of all extensions into a YAML loader;
- parsing of configuration and suite documents into validated models.

The primary public entry point is `DocumentParser`, which prepares
a YAML loader, attaches all required constructors, and parses YAML
documents into models the engines execute.
"""

from .parser import DocumentParser, Runs, SuiteDocument

__all__ = (
    'DocumentParser',
    'Runs',
    'SuiteDocument',
)
