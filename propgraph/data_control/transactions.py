"""The Transaction is to the GraphDB Connection as the GraphStore is to the GraphDB itself. The
Transaction hides the low-level implementation details of data storage away from the Connection, so
the Connection can focus on providing a convenient high-level interface to the underlying data."""

import contextlib
import itertools
import logging
import threading
import typing

import propgraph.data_control.base as interface
from propgraph.data_structs import element_data
from propgraph.data_structs import transaction_data
from propgraph.data_types import exceptions
from propgraph.data_types import indices
from propgraph.data_types import typedefs

if typing.TYPE_CHECKING:
    from propgraph.data_control import store

_logger = logging.getLogger(__name__)

PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)

MetaProperties = typing.Mapping[indices.PropertyKeyID, typedefs.SimpleDataType]


class Transaction(interface.BaseController[transaction_data.TransactionData]):
    """Temporarily stores modifications of a transaction until they are ready to be committed or
    rolled back. Manages the locks into the underlying store that prevent conflicts if there are
    multiple concurrent transactions in progress."""

    def __init__(self, graph_store: 'store.GraphStore'):
        super().__init__(graph_store.new_transaction_data())
        self._store = graph_store
        self._thread = threading.current_thread()
        self._is_open = True

    @property
    def is_open(self) -> bool:
        """Whether the transaction is open. Attempts to use the transaction after it has been closed
        will cause a ConnectionClosedError to be raised."""
        return self._is_open

    @property
    def aborted(self) -> bool:
        """Whether a lock request of the transaction has been refused. An aborted transaction can
        only be rolled back; committing it raises a ConflictError."""
        return self._data.aborted

    @property
    def new_schema(self) -> typing.Set[indices.SchemaID]:
        return self._data.new_schema()

    def __del__(self):
        if getattr(self, '_is_open', False):
            try:
                self.close()
            except exceptions.GraphError:
                # Collected on a different thread than the one that opened it. The thread's locks
                # died with it.
                pass

    def __getattribute__(self, name):
        # This forces a ConnectionClosedError if anybody tries to use the transaction after it's
        # been closed.
        if name == '_data' and not super().__getattribute__('_is_open'):
            raise exceptions.ConnectionClosedError()
        return super().__getattribute__(name)

    def close(self) -> None:
        """Close the transaction. If there are pending changes, they are rolled back."""
        if self._is_open:
            # Roll back any pending changes.
            self.rollback()

            # And make it impossible to make new changes.
            self._is_open = False

    def _check_thread(self) -> None:
        if threading.current_thread() is not self._thread:
            raise exceptions.InvalidThreadError("Transaction opened on %s used from %s." %
                                                (self._thread.name,
                                                 threading.current_thread().name))

    def _release_locks(self) -> None:
        """Release the locks that were acquired in the store on behalf of the transaction."""
        with self._data.registry_lock:
            for access_manager in self._data.iter_managers():
                access_manager.release_store_locks()

    def commit(self) -> None:
        """Atomically validate and write any cached changes through to the underlying store. Then
        clear the pending changes and release any held locks of the store. If the changes cannot be
        applied, everything is rolled back and the error is raised."""
        self._check_thread()
        if self._data.aborted:
            reason = self._data.abort_reason
            self.rollback()
            raise exceptions.ConflictError("Transaction was aborted: %s" % reason) from reason
        batch = self._data.to_batch()
        if batch:
            try:
                self._store.apply_mutations(batch)
            except exceptions.GraphError:
                self.rollback()
                raise
        self._release_locks()
        self._data.clear()

    def rollback(self) -> None:
        """Clear any pending changes without writing them, and release any held locks of the
        underlying store."""
        self._check_thread()
        self._release_locks()
        self._data.clear()

    # Schema

    def _add_schema(self, index_type: typing.Type[indices.SchemaID], name: str, *args,
                    **kwargs) -> indices.SchemaID:
        if not isinstance(name, str) or not name:
            raise ValueError("Schema names must be non-empty strings: %r" % (name,))
        with self._data.add(index_type, name, *args, **kwargs) as schema_data:
            self._data.allocate_name(name, schema_data.index)
        _logger.debug("Added %r in %r.", schema_data, self)
        return schema_data.index

    def add_property_key(self, name: str, data_type: type = str,
                         cardinality: typedefs.Cardinality = typedefs.Cardinality.SINGLE) \
            -> indices.PropertyKeyID:
        """Add a new property key with the given name, and return its index."""
        if data_type not in typedefs.SUPPORTED_DATA_TYPES:
            raise exceptions.SchemaError("Unsupported data type for property key %r: %r" %
                                         (name, data_type))
        return self._add_schema(indices.PropertyKeyID, name, data_type, cardinality)

    def add_vertex_label(self, name: str) -> indices.VertexLabelID:
        """Add a new vertex label with the given name, and return its index."""
        return self._add_schema(indices.VertexLabelID, name)

    def add_edge_label(self, name: str,
                       multiplicity: typedefs.Multiplicity = typedefs.Multiplicity.MULTI) \
            -> indices.EdgeLabelID:
        """Add a new edge label with the given name, and return its index."""
        return self._add_schema(indices.EdgeLabelID, name, multiplicity)

    def add_index(self, name: str, kind: typedefs.IndexKind,
                  keys: typing.Sequence[indices.PropertyKeyID], *,
                  element_type: typing.Type[indices.ElementID] = indices.VertexID,
                  unique: bool = False,
                  relation_type: typing.Optional[indices.SchemaID] = None,
                  direction: typedefs.Direction = typedefs.Direction.BOTH) -> indices.IndexID:
        """Add a new index definition, and return its index. The index starts out INSTALLED."""
        if kind is typedefs.IndexKind.COMPOSITE:
            if relation_type is not None:
                raise exceptions.SchemaError("Composite indexes have no relation type.")
            if element_type not in (indices.VertexID, indices.EdgeID):
                raise exceptions.SchemaError("Composite indexes cover vertices or edges.")
        elif kind is typedefs.IndexKind.EDGE:
            if not isinstance(relation_type, indices.EdgeLabelID):
                raise exceptions.SchemaError("Edge indexes require an edge label.")
            element_type = indices.EdgeID
        else:
            if not isinstance(relation_type, indices.PropertyKeyID):
                raise exceptions.SchemaError("Property indexes require a property key.")
            element_type = indices.VertexID
        if not keys:
            raise exceptions.SchemaError("An index must cover at least one property key.")
        if len(set(keys)) != len(keys):
            raise exceptions.SchemaError("An index cannot cover the same key twice.")
        if unique and kind is not typedefs.IndexKind.COMPOSITE:
            raise exceptions.SchemaError("Only composite indexes can enforce uniqueness.")
        with contextlib.ExitStack() as context_stack:
            for key_id in keys:
                if not isinstance(key_id, indices.PropertyKeyID):
                    raise exceptions.SchemaError("Not a property key: %r" % (key_id,))
                context_stack.enter_context(self._data.read(key_id))
            if relation_type is not None:
                context_stack.enter_context(self._data.read(relation_type))
            return self._add_schema(indices.IndexID, name, kind, keys,
                                    element_type=element_type, unique=unique,
                                    relation_type=relation_type, direction=direction)

    # Vertices

    def add_vertex(self, label_id: indices.VertexLabelID) -> indices.VertexID:
        """Add a new vertex with the given label. Return the new vertex's index."""
        if not isinstance(label_id, indices.VertexLabelID):
            raise exceptions.SchemaError("Not a vertex label: %r" % (label_id,))
        with self._data.add(indices.VertexID, label_id) as vertex_data, \
                self._data.read(label_id):
            pass
        return vertex_data.index

    def remove_vertex(self, vertex_id: indices.VertexID) -> None:
        """Remove an existing vertex, together with its incident edges."""
        # If there are incident edges, and we can get write access to all of them and the other
        # vertices they connect to, we can go ahead with the removal, but we must remove the edges,
        # too.
        with contextlib.ExitStack() as context_stack:
            vertex_data = context_stack.enter_context(self._data.remove(vertex_id))
            assert isinstance(vertex_data, element_data.VertexData)
            neighbors: typing.Dict[indices.VertexID, element_data.VertexData] = {}
            for edge_id in set(itertools.chain(vertex_data.outbound, vertex_data.inbound)):
                edge_data = context_stack.enter_context(self._data.remove(edge_id))
                assert isinstance(edge_data, element_data.EdgeData)
                other_id = edge_data.other_end(vertex_id)
                if other_id == vertex_id:
                    # It's a loop. Its only vertex is going away anyway.
                    continue
                if other_id not in neighbors:
                    neighbors[other_id] = context_stack.enter_context(self._data.update(other_id))
                neighbor = neighbors[other_id]
                neighbor.inbound.discard(edge_id)
                neighbor.outbound.discard(edge_id)

    # Edges

    def _edge_label_unlocked(self, edge_id: indices.EdgeID) -> indices.EdgeLabelID:
        # Edge labels never change, and the edge can't be removed while the caller holds the write
        # lock of one of its vertices, so no lock on the edge itself is required.
        with self._data.registry_lock:
            edge_data = self._data.get_data(edge_id)
        assert isinstance(edge_data, element_data.EdgeData)
        return edge_data.label

    def add_edge(self, label_id: indices.EdgeLabelID, source_id: indices.VertexID,
                 sink_id: indices.VertexID) -> indices.EdgeID:
        """Add a new edge with the given label, source, and sink, and return its index. Raise a
        SchemaError if the edge would violate the label's multiplicity."""
        if not isinstance(label_id, indices.EdgeLabelID):
            raise exceptions.SchemaError("Not an edge label: %r" % (label_id,))
        with contextlib.ExitStack() as context_stack:
            edge_data = context_stack.enter_context(
                self._data.add(indices.EdgeID, label_id, source_id, sink_id)
            )
            label_data = context_stack.enter_context(self._data.read(label_id))
            assert isinstance(label_data, element_data.EdgeLabelData)
            source_data = context_stack.enter_context(self._data.update(source_id))
            assert isinstance(source_data, element_data.VertexData)
            if source_id == sink_id:
                # It's a loop. Don't try to acquire a second write lock to the same vertex.
                sink_data = source_data
            else:
                sink_data = context_stack.enter_context(self._data.update(sink_id))
                assert isinstance(sink_data, element_data.VertexData)
            multiplicity = label_data.multiplicity
            if multiplicity is typedefs.Multiplicity.SIMPLE:
                for other_edge_id in source_data.outbound & sink_data.inbound:
                    if self._edge_label_unlocked(other_edge_id) == label_id:
                        raise exceptions.SchemaError(
                            "Edge label %r allows only one edge between %r and %r." %
                            (label_data.name, source_id, sink_id)
                        )
            if multiplicity.unique_out:
                for other_edge_id in source_data.outbound:
                    if self._edge_label_unlocked(other_edge_id) == label_id:
                        raise exceptions.SchemaError(
                            "Edge label %r allows only one outgoing edge from %r." %
                            (label_data.name, source_id)
                        )
            if multiplicity.unique_in:
                for other_edge_id in sink_data.inbound:
                    if self._edge_label_unlocked(other_edge_id) == label_id:
                        raise exceptions.SchemaError(
                            "Edge label %r allows only one incoming edge to %r." %
                            (label_data.name, sink_id)
                        )
            source_data.outbound.add(edge_data.index)
            sink_data.inbound.add(edge_data.index)
        return edge_data.index

    def remove_edge(self, edge_id: indices.EdgeID) -> None:
        """Remove an existing edge."""
        with self._data.remove(edge_id) as edge_data:
            edge_data: element_data.EdgeData
            with self._data.update(edge_data.source) as source:
                source: element_data.VertexData
                if edge_data.source == edge_data.sink:
                    # It's a loop. We shouldn't try to acquire it twice.
                    sink = source
                    source.outbound.discard(edge_id)
                    sink.inbound.discard(edge_id)
                else:
                    with self._data.update(edge_data.sink) as sink:
                        sink: element_data.VertexData
                        source.outbound.discard(edge_id)
                        sink.inbound.discard(edge_id)

    # Properties

    def _coerce(self, key_id: indices.PropertyKeyID,
                value: typedefs.SimpleDataType) -> typing.Tuple[typedefs.SimpleDataType,
                                                                typedefs.Cardinality]:
        if not isinstance(key_id, indices.PropertyKeyID):
            raise exceptions.SchemaError("Not a property key: %r" % (key_id,))
        with self._data.read(key_id) as key_data:
            key_data: element_data.PropertyKeyData
            try:
                return typedefs.coerce_value(key_data.data_type, value), key_data.cardinality
            except TypeError as error:
                raise exceptions.SchemaError("Invalid value for property key %r: %s" %
                                             (key_data.name, error)) from None

    def _coerce_meta(self, meta: typing.Optional[MetaProperties]) \
            -> typing.Tuple[typing.Tuple[indices.PropertyKeyID, typedefs.SimpleDataType], ...]:
        if not meta:
            return ()
        result = []
        for meta_key_id, meta_value in meta.items():
            meta_value, _ = self._coerce(meta_key_id, meta_value)
            result.append((meta_key_id, meta_value))
        return tuple(result)

    def add_vertex_value(self, vertex_id: indices.VertexID, key_id: indices.PropertyKeyID,
                         value: typedefs.SimpleDataType,
                         meta: MetaProperties = None) -> element_data.PropertyOccurrence:
        """Give the vertex a value for the property key, honoring the key's cardinality: a SINGLE
        value replaces the previous one, a SET value is added unless already present, and a LIST
        value is always appended. Return the resulting occurrence."""
        value, cardinality = self._coerce(key_id, value)
        occurrence = element_data.PropertyOccurrence(value, self._coerce_meta(meta))
        with self._data.update(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            occurrences = vertex_data.properties.setdefault(key_id, [])
            if cardinality is typedefs.Cardinality.SINGLE:
                occurrences[:] = [occurrence]
            elif cardinality is typedefs.Cardinality.SET:
                for existing in occurrences:
                    if existing.value == value:
                        return existing
                occurrences.append(occurrence)
            else:
                occurrences.append(occurrence)
        return occurrence

    def remove_vertex_values(self, vertex_id: indices.VertexID, key_id: indices.PropertyKeyID,
                             value: typedefs.SimpleDataType = None) -> int:
        """Remove the vertex's values for the property key; all of them, or only those equal to
        the given value. Return the number of values removed."""
        with self._data.update(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            occurrences = vertex_data.properties.get(key_id, [])
            remaining = [occurrence for occurrence in occurrences
                         if value is not None and occurrence.value != value]
            removed = len(occurrences) - len(remaining)
            if remaining:
                vertex_data.properties[key_id] = remaining
            else:
                vertex_data.properties.pop(key_id, None)
        return removed

    def set_vertex_meta(self, vertex_id: indices.VertexID, key_id: indices.PropertyKeyID,
                        value: typedefs.SimpleDataType, meta_key_id: indices.PropertyKeyID,
                        meta_value: typing.Optional[typedefs.SimpleDataType]) -> int:
        """Set (or, with a meta value of None, clear) a meta-property on the vertex's occurrences
        of the given value. Return the number of occurrences changed."""
        if meta_value is not None:
            meta_value, _ = self._coerce(meta_key_id, meta_value)
        with self._data.update(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            occurrences = vertex_data.properties.get(key_id, [])
            changed = 0
            for position, occurrence in enumerate(occurrences):
                if occurrence.value == value:
                    occurrences[position] = occurrence.with_meta(meta_key_id, meta_value)
                    changed += 1
        return changed

    def set_edge_value(self, edge_id: indices.EdgeID, key_id: indices.PropertyKeyID,
                       value: typedefs.SimpleDataType) -> None:
        """Set the key's value for the edge. If the key already has a value for the edge,
        overwrite it. A value of None removes the key."""
        if value is None:
            self.remove_edge_value(edge_id, key_id)
            return
        value, cardinality = self._coerce(key_id, value)
        if cardinality is not typedefs.Cardinality.SINGLE:
            raise exceptions.SchemaError("Edge properties must have SINGLE cardinality: %r" %
                                         (key_id,))
        with self._data.update(edge_id) as edge_data:
            edge_data: element_data.EdgeData
            edge_data.properties[key_id] = value

    def remove_edge_value(self, edge_id: indices.EdgeID, key_id: indices.PropertyKeyID) -> bool:
        """If the key has a value for the edge, remove it. Return whether a value was removed."""
        with self._data.update(edge_id) as edge_data:
            edge_data: element_data.EdgeData
            return edge_data.properties.pop(key_id, None) is not None

    # Traversal support

    def peek(self, index: 'PersistentIDType') -> typing.Optional[element_data.ElementData]:
        """Return the element's data as the transaction currently sees it, or None if the element
        doesn't exist. No locks are taken; the data must not be modified."""
        with self._data.registry_lock:
            try:
                return self._data.get_data(index)
            except KeyError:
                return None

    def pending_changes(self) -> typing.Tuple[
            typing.Dict[typing.Type[indices.PersistentDataID],
                        typing.Dict[indices.PersistentDataID, element_data.ElementData]],
            typing.Dict[typing.Type[indices.PersistentDataID],
                        typing.Set[indices.PersistentDataID]]]:
        """Return copies of the transaction's uncommitted element data and pending deletions, by
        index type."""
        with self._data.registry_lock:
            upserts = {index_type: dict(registry)
                       for index_type, registry in self._data.registry_map.items()}
            deletions = {index_type: set(deleted)
                         for index_type, deleted in self._data.pending_deletion_map.items()}
        return upserts, deletions
