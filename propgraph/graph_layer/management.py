"""
Management sessions, for changing the schema and managing indexes.

    management = db.open_management()
    ident = management.make_property_key('ident', str)
    management.build_index('byIdent', [ident], unique=True)
    management.commit()
    management.await_graph_index_status('byIdent', IndexStatus.ENABLED)

Schema made through a session is created together, as a single transaction, when the session
commits. Index actions only apply to committed indexes; they take effect right away, and their
progress is reported through the returned job handles.
"""

import logging
import typing

from propgraph.data_control import jobs
from propgraph.data_types import exceptions
from propgraph.data_types import indices
from propgraph.data_types import typedefs
from propgraph.graph_layer import elements

if typing.TYPE_CHECKING:
    from propgraph.graph_layer import connections
    from propgraph.graph_layer import graph_db

_logger = logging.getLogger(__name__)

KeyRef = typing.Union[str, elements.PropertyKey]
IndexRef = typing.Union[str, elements.GraphIndex]


class ManagementSession:
    """A session for schema and index management. Committing or rolling back the session closes
    it; waiting for index statuses still works afterwards."""

    def __init__(self, db: 'graph_db.GraphDB'):
        self._db = db
        self._connection: 'connections.GraphDBConnection' = db.connect()

    def __repr__(self) -> str:
        return '%s(%r)' % (type(self).__name__, self._db)

    @property
    def is_open(self) -> bool:
        return self._connection.is_open

    @property
    def _controller(self):
        return self._connection.controller

    def commit(self) -> None:
        """Create the session's schema, and close the session."""
        created = len(self._controller.new_schema)
        try:
            self._connection.commit()
        finally:
            self._connection.close()
        _logger.info("Management session committed %d new schema elements.", created)

    def rollback(self) -> None:
        """Discard the session's schema, and close the session."""
        self._connection.close()

    close = rollback

    def __enter__(self) -> 'ManagementSession':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.is_open:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()

    # Schema

    def make_property_key(self, name: str, data_type: type = str,
                          cardinality: typedefs.Cardinality = typedefs.Cardinality.SINGLE) \
            -> elements.PropertyKey:
        return elements.PropertyKey(self._connection,
                                    self._controller.add_property_key(name, data_type,
                                                                      cardinality))

    def make_vertex_label(self, name: str) -> elements.VertexLabel:
        return elements.VertexLabel(self._connection, self._controller.add_vertex_label(name))

    def make_edge_label(self, name: str,
                        multiplicity: typedefs.Multiplicity = typedefs.Multiplicity.MULTI) \
            -> elements.EdgeLabel:
        return elements.EdgeLabel(self._connection,
                                  self._controller.add_edge_label(name, multiplicity))

    def get_property_key(self, name: str) -> typing.Optional[elements.PropertyKey]:
        return self._connection.get_property_key(name)

    def get_vertex_label(self, name: str) -> typing.Optional[elements.VertexLabel]:
        return self._connection.get_vertex_label(name)

    def get_edge_label(self, name: str) -> typing.Optional[elements.EdgeLabel]:
        return self._connection.get_edge_label(name)

    def contains_property_key(self, name: str) -> bool:
        return self.get_property_key(name) is not None

    def contains_vertex_label(self, name: str) -> bool:
        return self.get_vertex_label(name) is not None

    def contains_edge_label(self, name: str) -> bool:
        return self.get_edge_label(name) is not None

    # Index definitions

    def _key_ids(self, keys: typing.Iterable[KeyRef]) -> typing.List[indices.PropertyKeyID]:
        result = []
        for key in keys:
            key_id = self._connection.resolve_key(key)
            if key_id is None:
                raise exceptions.SchemaError("Unknown property key: %r" % (key,))
            result.append(key_id)
        return result

    def build_index(self, name: str, keys: typing.Sequence[KeyRef], *,
                    element_type: typing.Type[elements.PropertiedElement] = elements.Vertex,
                    unique: bool = False) -> elements.GraphIndex:
        """Define a composite index over the properties of vertices (or edges). The index is
        created when the session commits."""
        if element_type is elements.Vertex:
            index_type = indices.VertexID
        elif element_type is elements.Edge:
            index_type = indices.EdgeID
        else:
            raise ValueError("Composite indexes cover vertices or edges, not %r." %
                             (element_type,))
        index_id = self._controller.add_index(name, typedefs.IndexKind.COMPOSITE,
                                              self._key_ids(keys), element_type=index_type,
                                              unique=unique)
        return elements.GraphIndex(self._connection, index_id)

    def build_edge_index(self, edge_label: typing.Union[str, elements.EdgeLabel], name: str,
                         direction: typedefs.Direction,
                         keys: typing.Sequence[KeyRef]) -> elements.GraphIndex:
        """Define a vertex-centric index over the incident edges of the label, keyed by edge
        properties."""
        if isinstance(edge_label, elements.EdgeLabel):
            label_id = edge_label.index
        else:
            label_id = self._controller.find_edge_label(edge_label)
            if label_id is None:
                raise exceptions.SchemaError("Unknown edge label: %r" % (edge_label,))
        index_id = self._controller.add_index(name, typedefs.IndexKind.EDGE, self._key_ids(keys),
                                              relation_type=label_id, direction=direction)
        return elements.GraphIndex(self._connection, index_id)

    def build_property_index(self, property_key: KeyRef, name: str,
                             keys: typing.Sequence[KeyRef]) -> elements.GraphIndex:
        """Define a vertex-centric index over the occurrences of the property key, keyed by their
        meta-properties."""
        key_id, = self._key_ids([property_key])
        index_id = self._controller.add_index(name, typedefs.IndexKind.PROPERTY,
                                              self._key_ids(keys), relation_type=key_id)
        return elements.GraphIndex(self._connection, index_id)

    def get_graph_index(self, name: str) -> typing.Optional[elements.GraphIndex]:
        index = self._connection.get_index(name)
        if index is None or index.is_relation_index:
            return None
        return index

    def get_relation_index(self, relation_type: typing.Union[str, elements.SchemaElement],
                           name: str) -> typing.Optional[elements.GraphIndex]:
        index = self._connection.get_index(name)
        if index is None or not index.is_relation_index:
            return None
        if isinstance(relation_type, elements.SchemaElement):
            relation_type = relation_type.name
        if index.relation_type.name != relation_type:
            return None
        return index

    def contains_graph_index(self, name: str) -> bool:
        return self.get_graph_index(name) is not None

    def contains_relation_index(self, relation_type: typing.Union[str, elements.SchemaElement],
                                name: str) -> bool:
        return self.get_relation_index(relation_type, name) is not None

    def get_graph_indexes(self, element_type: typing.Type[elements.PropertiedElement] =
                          elements.Vertex) -> typing.List[elements.GraphIndex]:
        """Return the composite indexes over the element type."""
        result = []
        for index_id in self._controller.iter_all(indices.IndexID):
            definition = self._controller.get_index_definition(index_id)
            if definition.kind is typedefs.IndexKind.COMPOSITE and \
                    definition.element_type is element_type.index_type():
                result.append(elements.GraphIndex(self._connection, index_id))
        return result

    def get_relation_indexes(self, relation_type: typing.Union[str, elements.SchemaElement]) \
            -> typing.List[elements.GraphIndex]:
        """Return the vertex-centric indexes of the edge label or property key."""
        if isinstance(relation_type, elements.SchemaElement):
            relation_type = relation_type.name
        result = []
        for index_id in self._controller.iter_all(indices.IndexID):
            index = elements.GraphIndex(self._connection, index_id)
            if index.is_relation_index and index.relation_type.name == relation_type:
                result.append(index)
        return result

    # Index lifecycle

    def _committed_index(self, index: typing.Union[IndexRef, indices.IndexID]) -> indices.IndexID:
        if isinstance(index, elements.GraphIndex):
            index = index.index
        if self.is_open:
            if isinstance(index, indices.IndexID):
                index_id = index
            else:
                index_id = self._controller.find_index(index)
            if index_id is not None and index_id in self._controller.new_schema:
                raise exceptions.IndexStateError("Index %r has to be committed first." %
                                                 (index,))
        return self._db.index_manager.resolve(index)

    def update_index(self, index: IndexRef, action: typedefs.SchemaAction) -> jobs.IndexJob:
        """Request an index action, such as REINDEX or DISABLE_INDEX, and return the handle of the
        job carrying it out."""
        return self._db.index_manager.update_index(self._committed_index(index), action)

    def await_graph_index_status(self, name: str,
                                 status: typedefs.IndexStatus = typedefs.IndexStatus.REGISTERED,
                                 timeout: float = None) -> typedefs.IndexStatus:
        """Block until the composite index reaches the status in every partition. Return the
        index's effective status."""
        return self._db.index_manager.await_status(self._committed_index(name), status, timeout)

    def await_relation_index_status(self, name: str,
                                    relation_type: typing.Union[str, elements.SchemaElement],
                                    status: typedefs.IndexStatus =
                                    typedefs.IndexStatus.REGISTERED,
                                    timeout: float = None) -> typedefs.IndexStatus:
        """Block until the relation index of the edge label or property key reaches the status in
        every partition. Return the index's effective status."""
        index_id = self._committed_index(name)
        definition = self._db.index_manager.get_definition(index_id)
        if isinstance(relation_type, elements.SchemaElement):
            relation_type = relation_type.index
        elif definition.relation_type is not None:
            relation_type = self._db.store.find_schema(type(definition.relation_type),
                                                       relation_type)
        if definition.relation_type is None or definition.relation_type != relation_type:
            raise exceptions.NotFoundError("No relation index %r on %r." % (name, relation_type))
        return self._db.index_manager.await_status(index_id, status, timeout)
