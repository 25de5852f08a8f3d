"""Test suite for the pytest-checkrun package.

This package contains unit and integration tests validating
expression evaluation, document parsing, the run engines, pytest
integration, and the command-line interface.
"""
