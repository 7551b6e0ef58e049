"""
Read views for traversals.

A view is a snapshot of the committed state of the store, overlaid with the pending changes of the
transaction the traversal belongs to. Views take no locks. Index lookups made through a view are
only answered while the store is still at the view's commit sequence; afterwards they return None
and the caller scans instead.
"""

import typing

from propgraph.data_structs import element_data
from propgraph.data_types import indices
from propgraph.data_types import typedefs

if typing.TYPE_CHECKING:
    from propgraph.data_control import store
    from propgraph.data_control import transactions

PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)


class GraphView:
    """The graph as seen by one traversal."""

    def __init__(self, graph_store: 'store.GraphStore',
                 transaction: 'transactions.Transaction' = None):
        self._store = graph_store
        self._transaction = transaction
        snapshot = graph_store.snapshot()
        self._sequence = snapshot.sequence
        self._registries = snapshot.registries
        self._enabled = snapshot.enabled_indexes

        # Elements whose state in the view may differ from what the store's indexes hold.
        self._touched: typing.Set[indices.PersistentDataID] = set()

        if transaction is not None:
            upserts, deletions = transaction.pending_changes()
            for index_type, registry in upserts.items():
                self._registries[index_type].update(registry)
                self._touched.update(registry)
            for index_type, deleted in deletions.items():
                for index in deleted:
                    self._registries[index_type].pop(index, None)
                self._touched.update(deleted)

        self._names: typing.Optional[typing.Dict[typing.Tuple[type, str],
                                                 indices.SchemaID]] = None

    def __repr__(self) -> str:
        return '<%s at sequence %d>' % (type(self).__name__, self._sequence)

    @property
    def sequence(self) -> int:
        """The commit sequence of the snapshot the view is built on."""
        return self._sequence

    def get(self, index: 'PersistentIDType') -> typing.Optional[element_data.ElementData]:
        return self._registries[type(index)].get(index)

    def iter(self, index_type: typing.Type['PersistentIDType']) \
            -> typing.Iterator[element_data.ElementData]:
        """Iterate over the data of every element of the type, in index order. Changes made to the
        view while iterating don't affect the iteration."""
        registry = self._registries[index_type]
        return iter([registry[index] for index in sorted(registry)])

    def find_name(self, index_type: typing.Type[indices.SchemaID],
                  name: str) -> typing.Optional[indices.SchemaID]:
        if self._names is None:
            self._names = {
                (schema_type, data.name): data.index
                for schema_type in indices.NAMED_ID_TYPES
                for data in self._registries[schema_type].values()
            }
        return self._names.get((index_type, name))

    def name_of(self, schema_id: indices.SchemaID) -> str:
        data = self.get(schema_id)
        assert isinstance(data, element_data.SchemaData), schema_id
        return data.name

    def iter_enabled_indexes(self, kind: typedefs.IndexKind) \
            -> typing.Iterator[element_data.IndexData]:
        """Iterate over the definitions of the view's ENABLED indexes of the given kind."""
        for index_id in sorted(self._enabled):
            definition = self.get(index_id)
            if definition is not None and definition.kind is kind:
                yield definition

    def reload(self, *indexes: indices.PersistentDataID) -> None:
        """Refresh the elements from the transaction, after the traversal changed them."""
        assert self._transaction is not None
        for index in indexes:
            data = self._transaction.peek(index)
            if data is None:
                self._registries[type(index)].pop(index, None)
            else:
                self._registries[type(index)][index] = data
            self._touched.add(index)
            if isinstance(index, indices.SchemaID):
                self._names = None

    def lookup(self, definition: element_data.IndexData, key: typing.Sequence, *,
               vertex_id: indices.VertexID = None,
               direction: typedefs.Direction = typedefs.Direction.BOTH) \
            -> typing.Optional[typing.FrozenSet]:
        """Return candidates for the index key: a superset of the members the index would hold for
        the key if it covered the view's state. Candidates must be verified by the caller. Return
        None if the index can't answer for this view."""
        if definition.index not in self._enabled:
            return None
        kind = definition.kind
        if kind is not typedefs.IndexKind.COMPOSITE and vertex_id in self._touched:
            return None
        members = self._store.lookup_by_index(definition.index, key, vertex_id=vertex_id,
                                              direction=direction, at_sequence=self._sequence)
        if members is None:
            return None
        if kind is typedefs.IndexKind.COMPOSITE:
            element_type = definition.element_type
            registry = self._registries[element_type]
            return members | {index for index in self._touched
                              if isinstance(index, element_type) and index in registry}
        if kind is typedefs.IndexKind.EDGE:
            vertex_data = self.get(vertex_id)
            if vertex_data is None:
                return frozenset()
            assert isinstance(vertex_data, element_data.VertexData)
            return members | (vertex_data.incident(direction) & self._touched)
        return members
