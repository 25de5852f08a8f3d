"""Extensions discovery and extension loading infrastructure.

This module defines a mixin responsible for discovering, loading, and
registering plugins exposed via Python entry points.

Plugins are loaded defensively: individual failures do not interrupt
the loading process unless strict mode is enabled. Each plugin may
contribute expression functions, YAML instructions, and providers.
"""

from typing import TYPE_CHECKING
from warnings import warn

from pydantic import ValidationError

from pytest_checkrun.errors import PluginError, PluginWarning
from pytest_checkrun.extensions import Plugin

if TYPE_CHECKING:
    from importlib.metadata import EntryPoint

    from pytest_checkrun.extensions import BaseInstruction, Function, Instruction, ProviderFactory


class ExtensionsLoaderMixin:
    """Mixin defining plugin extension loading behavior.

    Attributes:
        strict_mode: If True, any plugin loading issue raises an error.
            If False, issues are emitted as warnings and loading continues.
        functions: Expression functions by name.
        instructions: Compiled YAML instructions by tag name.
        providers: Provider factories by name.
    """

    strict_mode: bool = False

    functions: dict[str, 'Function']
    instructions: dict[str, type['BaseInstruction']]
    providers: dict[str, 'ProviderFactory']

    def add_function(self, function: 'Function',
                     entrypoint: 'EntryPoint | None' = None) -> None:
        """Register an expression function.

        Args:
            function: Declarative function definition.
            entrypoint: Entry point from which the function was loaded,
                if applicable. Used for diagnostics and warnings.

        Raises:
            PluginError: If the function shadows another on strict mode.
        """
        module, qualname = self.resolve_plugin_names(function, entrypoint)

        if function.name in self.functions and (error := self.emit_plugin_issue(
            f'Function {qualname!r} from {module!r} is shadowing an existing',
            entrypoint,
        )):
            raise error

        self.functions[function.name] = function

    def add_instruction(self, instruction: 'Instruction',
                        entrypoint: 'EntryPoint | None' = None) -> None:
        """Register an instruction.

        Args:
            instruction: Declarative instruction definition.
            entrypoint: Entry point from which the instruction was loaded, if applicable.

        Raises:
            PluginError: If instruction is invalid on strict mode.
        """
        module, qualname = self.resolve_plugin_names(instruction, entrypoint)

        if instruction.name in self.instructions and (error := self.emit_plugin_issue(
            f'Instruction {qualname!r} from {module!r} is shadowing an existing',
            entrypoint,
        )):
            raise error

        self.instructions[instruction.name] = instruction.build()

    def add_provider(self, provider: 'ProviderFactory',
                     entrypoint: 'EntryPoint | None' = None) -> None:
        """Register a provider factory.

        Args:
            provider: Declarative provider definition.
            entrypoint: Entry point from which the provider was loaded, if applicable.

        Raises:
            PluginError: If the provider shadows another on strict mode.
        """
        module, qualname = self.resolve_plugin_names(provider, entrypoint)

        if provider.name in self.providers and (error := self.emit_plugin_issue(
            f'Provider {qualname!r} from {module!r} is shadowing an existing',
            entrypoint,
        )):
            raise error

        self.providers[provider.name] = provider

    @staticmethod
    def resolve_plugin_names(item: 'Function | Instruction | ProviderFactory',
                             entrypoint: 'EntryPoint | None' = None) -> tuple[str, str]:
        """Resolve plugin display names for a definition.

        Args:
            item: Declarative definition.
            entrypoint: Entry point from which the definition was loaded, if applicable.

        Returns:
            Tuple with a module name and a qualified name for a definition.
        """
        namespace = entrypoint.name if entrypoint else 'builtins'

        return (
            f'{entrypoint.value if entrypoint else item.__module__}',
            f'{namespace}.{item.name}',
        )

    def emit_plugin_issue(self, message: str,
                          entrypoint: 'EntryPoint | None' = None) -> Exception | None:
        """Emit a plugin warning or return the exception.

        Args:
            message: Warning message to emit.
            entrypoint: Entry point from which the definition was loaded, if applicable.

        Returns:
            PluginError on strict mode, otherwise `None`
                with producing a PluginWarning.
        """
        if self.strict_mode:
            return PluginError(message, entrypoint=entrypoint)

        warn(message, category=PluginWarning, stacklevel=2)

        return None

    def _load_plugin(self, entrypoint: 'EntryPoint') -> None:
        """Load and process a single plugin entry point.

        Args:
            entrypoint: Entry point describing the plugin to load.

        Raises:
            PluginError: If any loading issues occur on strict mode.
        """
        try:
            plugin = entrypoint.load()

        except ValidationError as base:
            if error := self.emit_plugin_issue(
                f'Failed to validate entrypoint {entrypoint.name!r}',
                entrypoint,
            ):
                raise error from base
            return None

        except Exception as base:
            if error := self.emit_plugin_issue(
                f'Failed to load entrypoint {entrypoint.name!r}',
                entrypoint,
            ):
                raise error from base
            return None

        if not isinstance(plugin, Plugin):
            if error := self.emit_plugin_issue(
                f'Loaded from entrypoint {entrypoint.name!r} object is not a plugin',
                entrypoint,
            ):
                raise error
            return None

        for function in plugin.functions:
            self.add_function(function, entrypoint)

        for instruction in plugin.instructions:
            self.add_instruction(instruction, entrypoint)

        for provider in plugin.providers:
            self.add_provider(provider, entrypoint)

    def clear_plugins(self) -> None:
        """Clear all registered extensions."""
        self.functions = {}
        self.instructions = {}
        self.providers = {}

    def load_plugins(self) -> None:
        """Load plugins via entry points and register their extensions.

        Discovers plugins from the `checkrun_plugins` entry point group.

        Raises:
            PluginError: If any loading issues occur on strict mode.
        """
        from importlib.metadata import entry_points  # noqa: PLC0415

        for entrypoint in entry_points().select(group='checkrun_plugins'):
            self._load_plugin(entrypoint)
