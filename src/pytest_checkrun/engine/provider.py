"""Provider collaborator boundary.

The engines never talk to a provider directly. Every call goes through
a `ProviderGateway`, which bounds it with a timeout, applies the retry
policy of the caller, and turns any failure into an `ExternalError`.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from time import sleep
from typing import TYPE_CHECKING, Any

import structlog

from pytest_checkrun.errors import ExternalError, ProviderTimeoutError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from pytest_checkrun.values import Value

logger = structlog.get_logger(__name__)

#: Attributes of a realized resource or a data lookup result.
type Attributes = Mapping[str, Value]


class Provider(ABC):
    """Capability performing resource lifecycle actions and data lookups.

    Implementations may be called from several threads at once and must
    protect their own state.
    """

    @abstractmethod
    def create(self, resource_type: str, attributes: 'Attributes') -> 'Attributes':
        """Create a resource.

        Args:
            resource_type: Type part of the resource address.
            attributes: Resolved configured attributes.

        Returns:
            Attributes of the created resource including computed ones.
            The `id` attribute identifies the resource in later calls.
        """

    @abstractmethod
    def read(self, resource_type: str, resource_id: str) -> 'Attributes | None':
        """Read a resource, returning None when it does not exist."""

    @abstractmethod
    def update(self, resource_type: str, resource_id: str,
               attributes: 'Attributes') -> 'Attributes':
        """Update a resource in place and return its new attributes."""

    @abstractmethod
    def delete(self, resource_type: str, resource_id: str) -> None:
        """Delete a resource."""

    @abstractmethod
    def query(self, data_type: str, query: 'Attributes') -> 'Attributes':
        """Perform a read-only data lookup."""

    def close(self) -> None:  # noqa: B027
        """Release resources held by the provider."""


class ProviderGateway:
    """Bounded, retrying access to a provider.

    Attributes:
        name: Name the provider is registered with.
        provider: The wrapped provider.
        timeout: Maximum number of seconds of a single call.
    """

    def __init__(self, name: str, provider: Provider, *,
                 timeout: float = 30.0, max_workers: int = 4) -> None:
        """Initialize a gateway.

        Args:
            name: Name the provider is registered with.
            provider: The wrapped provider.
            timeout: Maximum number of seconds of a single call.
            max_workers: Number of threads performing provider calls.
        """
        self.name = name
        self.provider = provider
        self.timeout = timeout

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f'checkrun-{name}',
        )

    def call(self, operation: str, *args: Any,  # noqa: ANN401
             attempts: int = 1, delay: float = 0.0) -> Any:  # noqa: ANN401
        """Call a provider operation.

        Args:
            operation: Name of the `Provider` method.
            *args: Positional arguments of the operation.
            attempts: Total number of attempts before giving up.
            delay: Fixed number of seconds between attempts.

        Returns:
            The operation result.

        Raises:
            ExternalError: If every attempt fails.
            ProviderTimeoutError: If the last attempt timed out.
        """
        method: Callable[..., Any] = getattr(self.provider, operation)
        log = logger.bind(provider=self.name, operation=operation)

        for attempt in range(1, attempts + 1):
            try:
                result = self._call_once(method, operation, args)

            except ExternalError as error:
                if attempt >= attempts:
                    log.warning('provider_call_failed', attempt=attempt, error=error.message)
                    raise
                log.info('provider_call_retry', attempt=attempt, delay=delay, error=error.message)
                sleep(delay)
                continue

            log.debug('provider_call', attempt=attempt)
            return result

        raise ExternalError('No attempts were made', provider=self.name, operation=operation)

    def _call_once(self, method: 'Callable[..., Any]', operation: str,
                   args: tuple[Any, ...]) -> Any:  # noqa: ANN401
        """Perform a single bounded call."""
        future = self._executor.submit(method, *args)

        try:
            return future.result(timeout=self.timeout)

        except FutureTimeoutError as base:
            future.cancel()
            raise ProviderTimeoutError(
                f'Provider {self.name!r} did not answer {operation!r} within {self.timeout}s',
                provider=self.name,
                operation=operation,
            ) from base

        except ExternalError:
            raise

        except Exception as base:
            raise ExternalError(
                f'Provider {self.name!r} failed on {operation!r}: {base}',
                provider=self.name,
                operation=operation,
            ) from base

    def create(self, resource_type: str, attributes: 'Attributes') -> 'Attributes':
        """Create a resource."""
        return self.call('create', resource_type, attributes)

    def read(self, resource_type: str, resource_id: str) -> 'Attributes | None':
        """Read a resource."""
        return self.call('read', resource_type, resource_id)

    def update(self, resource_type: str, resource_id: str,
               attributes: 'Attributes') -> 'Attributes':
        """Update a resource."""
        return self.call('update', resource_type, resource_id, attributes)

    def delete(self, resource_type: str, resource_id: str) -> None:
        """Delete a resource."""
        self.call('delete', resource_type, resource_id)

    def query(self, data_type: str, query: 'Attributes', *,
              attempts: int = 1, delay: float = 0.0) -> 'Attributes':
        """Perform a data lookup with a retry policy."""
        return self.call('query', data_type, query, attempts=attempts, delay=delay)

    def close(self) -> None:
        """Stop the worker threads and close the provider."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.provider.close()
