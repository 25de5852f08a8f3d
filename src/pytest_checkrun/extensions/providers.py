"""Declarative provider definitions."""

from collections.abc import Callable, Mapping
from typing import Any

from pydantic import Field

from pytest_checkrun.engine.provider import Provider
from pytest_checkrun.models import DescribedMixin, SchemaModel
from pytest_checkrun.names import Name  # noqa: TC001

#: Called with the provider options of a configuration document.
type ProviderBuilder = Callable[[Mapping[str, Any]], Provider]


class ProviderFactory(DescribedMixin, SchemaModel):
    """Named factory of provider collaborators.

    Configuration documents select a provider by this name, globally
    with `provider:` or per resource and data lookup.
    """

    name: Name = Field(
        title='Provider name',
        description='Name configuration documents select the provider by.',
    )

    factory: ProviderBuilder = Field(
        title='Provider factory',
        description='Callable building a provider from its configured options.',
    )

    def build(self, options: Mapping[str, Any] | None = None) -> Provider:
        """Create a provider instance."""
        return self.factory(options or {})
