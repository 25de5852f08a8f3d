"""Declarative configuration validation and test runner.

The `pytest_checkrun` package evaluates the validation logic declared in
infrastructure configuration documents and drives it through named test
runs, integrating the result with pytest.

Key features:
- variable validation rules evaluated at input binding time;
- precondition and postcondition blocks gating the resource lifecycle;
- non-blocking check blocks with data lookups against live state;
- ordered test runs reconciling actual failures with expected ones;
- an injected provider collaborator, with an in-memory provider builtin.
"""
