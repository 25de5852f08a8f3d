"""Example plugin definition for pytest-checkrun.

The example plugin:
- registers an expression function (`double`),
- registers a custom YAML instruction (`!fmt`),
- registers a provider (`recording`) backed by the in-memory provider.

The module is intended for documentation and testing purposes and
serves as a reference for plugin authors implementing their own
extensions.
"""

from pytest_checkrun.builtins.providers import MemoryProvider
from pytest_checkrun.extensions import Function, Plugin, ProviderFactory

from .instructions import fmt

double = Function(
    name='double',
    title='Double a number',
    function=lambda value: value * 2,
)

recording = ProviderFactory(
    name='recording',
    title='Recording provider',
    factory=MemoryProvider,
)

example = Plugin(
    name='example',
    functions=[double],
    instructions=[fmt],
    providers=[recording],
)
