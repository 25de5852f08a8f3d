"""In-memory provider.

The `memory` provider keeps resources in process memory. It is the
default provider of configuration documents and the collaborator used
by tests, so runs can be exercised without any real infrastructure.

Options:
    defaults: Computed attributes per resource type, merged under the
        configured attributes on create. For example
        `{aws_instance: {instance_state: running}}`.
    data: Static records per data type, returned by lookups in addition
        to the created resources of that type.
"""

from collections import defaultdict
from copy import deepcopy
from itertools import count
from threading import RLock
from typing import TYPE_CHECKING, Any

from pytest_checkrun.engine.provider import Provider
from pytest_checkrun.errors import ExternalError
from pytest_checkrun.expressions.nodes import values_equal
from pytest_checkrun.extensions import ProviderFactory

if TYPE_CHECKING:
    from collections.abc import Mapping

    from pytest_checkrun.engine.provider import Attributes


class MemoryProvider(Provider):
    """Provider storing resources in a dictionary.

    Every call is recorded in `calls` as `(operation, type, id)`, which
    lets tests observe which side effects were attempted.

    The public create/read/update/delete methods may also be called
    directly to simulate changes made outside of the runner.
    """

    def __init__(self, options: 'Mapping[str, Any] | None' = None) -> None:
        """Initialize an empty provider.

        Args:
            options: Provider options, see the module documentation.
        """
        options = options or {}

        self.defaults: dict[str, dict[str, Any]] = deepcopy(dict(options.get('defaults') or {}))
        self.data: dict[str, list[dict[str, Any]]] = deepcopy(dict(options.get('data') or {}))

        self.resources: defaultdict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.calls: list[tuple[str, str, str | None]] = []

        self._ids = count(1)
        self._lock = RLock()

    def _record(self, operation: str, resource_type: str, resource_id: str | None = None) -> None:
        self.calls.append((operation, resource_type, resource_id))

    def _get(self, resource_type: str, resource_id: str) -> dict[str, Any]:
        try:
            return self.resources[resource_type][resource_id]
        except KeyError:
            raise ExternalError(
                f'Resource {resource_type}.{resource_id} does not exist',
                provider='memory',
            ) from None

    def create(self, resource_type: str, attributes: 'Attributes') -> 'Attributes':
        """Create a resource with a generated id."""
        with self._lock:
            resource_id = f'{resource_type.split('_')[-1][:4]}-{next(self._ids):08x}'
            record = {
                **deepcopy(self.defaults.get(resource_type, {})),
                **deepcopy(dict(attributes)),
                'id': resource_id,
            }
            self.resources[resource_type][resource_id] = record
            self._record('create', resource_type, resource_id)

            return deepcopy(record)

    def read(self, resource_type: str, resource_id: str) -> 'Attributes | None':
        """Read a resource."""
        with self._lock:
            self._record('read', resource_type, resource_id)
            record = self.resources[resource_type].get(resource_id)

            return deepcopy(record) if record is not None else None

    def update(self, resource_type: str, resource_id: str,
               attributes: 'Attributes') -> 'Attributes':
        """Merge attributes into an existing resource."""
        with self._lock:
            record = self._get(resource_type, resource_id)
            record.update(deepcopy(dict(attributes)))
            record['id'] = resource_id
            self._record('update', resource_type, resource_id)

            return deepcopy(record)

    def delete(self, resource_type: str, resource_id: str) -> None:
        """Delete a resource."""
        with self._lock:
            self._get(resource_type, resource_id)
            del self.resources[resource_type][resource_id]
            self._record('delete', resource_type, resource_id)

    def query(self, data_type: str, query: 'Attributes') -> 'Attributes':
        """Find resources and static records matching all query attributes.

        Attributes match by kind and value, so `1` never matches `true`.

        Returns:
            A mapping with `items`, `ids` and `count`. When exactly one
            record matches, its attributes are also merged at the top
            level, so `data.<name>.<attribute>` reads it directly.
        """
        with self._lock:
            self._record('query', data_type)
            records = [
                *self.resources[data_type].values(),
                *self.data.get(data_type, []),
            ]
            items = [
                deepcopy(record)
                for record in records
                if all(values_equal(record.get(key), value) for key, value in query.items())
            ]

        result: dict[str, Any] = {}
        if len(items) == 1:
            result.update(items[0])

        result.update(
            items=items,
            ids=[item['id'] for item in items if 'id' in item],
            count=len(items),
        )

        return result


#: Provider factory for `provider: memory`.
memory = ProviderFactory(
    name='memory',
    title='In-memory provider',
    factory=MemoryProvider,
)
