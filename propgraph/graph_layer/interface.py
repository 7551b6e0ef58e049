"""
Shared functionality of both the graph database and transactional connections to it.
"""

import abc
import typing

from propgraph.data_control import transactions
from propgraph.data_types import exceptions
from propgraph.data_types import indices
from propgraph.data_types import typedefs
from propgraph.graph_layer import elements
from propgraph.graph_layer import traversal

if typing.TYPE_CHECKING:
    from propgraph.data_control import index_manager
    from propgraph.data_control import store

# The label of vertices added without one.
DEFAULT_VERTEX_LABEL = 'vertex'

KeyRef = typing.Union[str, elements.PropertyKey]
VertexRef = typing.Union[elements.Vertex, indices.VertexID, int]
EdgeRef = typing.Union[elements.Edge, indices.EdgeID, int]


class GraphDBInterface(metaclass=abc.ABCMeta):
    """The outward-facing, public interface shared by both the graph database and the transactional
    connections to it."""

    def __repr__(self) -> str:
        return '%s(%r)' % (type(self).__name__, self.store)

    @property
    @abc.abstractmethod
    def controller(self) -> transactions.Transaction:
        """The transaction that reads and writes on behalf of this interface."""
        raise NotImplementedError()

    @property
    @abc.abstractmethod
    def store(self) -> 'store.GraphStore':
        raise NotImplementedError()

    @property
    def index_manager(self) -> 'index_manager.IndexManager':
        return self.store.index_manager

    @property
    def auto_schema(self) -> bool:
        """Whether unknown property keys and labels are created on first use."""
        return self.store.settings.auto_schema

    # Schema

    def resolve_key(self, key: KeyRef, value: typedefs.SimpleDataType = None) \
            -> typing.Optional[indices.PropertyKeyID]:
        """Return the ID of the property key. If there is no key by that name and a value is given,
        create the key with the value's data type, provided automatic schema creation is enabled.
        Otherwise return None for unknown keys."""
        if isinstance(key, elements.PropertyKey):
            return key.index
        key_id = self.controller.find_property_key(key)
        if key_id is None and value is not None:
            if not self.auto_schema:
                raise exceptions.SchemaError("Unknown property key: %r" % (key,))
            key_id = self.controller.add_property_key(key, typedefs.infer_data_type(value))
        return key_id

    def _resolve_label(self, label, label_type: typing.Type[elements.SchemaElement]):
        if isinstance(label, label_type):
            return label.index
        index_type = label_type.index_type()
        label_id = self.controller.find_schema(index_type, label)
        if label_id is None:
            if not self.auto_schema:
                raise exceptions.SchemaError("Unknown %s: %r" % (label_type.__name__, label))
            if index_type is indices.VertexLabelID:
                label_id = self.controller.add_vertex_label(label)
            else:
                label_id = self.controller.add_edge_label(label)
        return label_id

    def get_property_key(self, name: str) -> typing.Optional[elements.PropertyKey]:
        key_id = self.controller.find_property_key(name)
        return None if key_id is None else elements.PropertyKey(self, key_id)

    def get_vertex_label(self, name: str) -> typing.Optional[elements.VertexLabel]:
        label_id = self.controller.find_vertex_label(name)
        return None if label_id is None else elements.VertexLabel(self, label_id)

    def get_edge_label(self, name: str) -> typing.Optional[elements.EdgeLabel]:
        label_id = self.controller.find_edge_label(name)
        return None if label_id is None else elements.EdgeLabel(self, label_id)

    def get_index(self, name: str) -> typing.Optional[elements.GraphIndex]:
        index_id = self.controller.find_index(name)
        return None if index_id is None else elements.GraphIndex(self, index_id)

    # Vertices

    def _vertex_id(self, vertex: VertexRef) -> indices.VertexID:
        if isinstance(vertex, elements.Vertex):
            return vertex.index
        return indices.VertexID(vertex)

    def _edge_id(self, edge: EdgeRef) -> indices.EdgeID:
        if isinstance(edge, elements.Edge):
            return edge.index
        return indices.EdgeID(edge)

    def get_vertex(self, index: VertexRef) -> elements.Vertex:
        """Look up a vertex by index and return it. If no vertex with that index exists, raise a
        NotFoundError."""
        vertex_id = self._vertex_id(index)
        if not self.controller.has_element(vertex_id):
            raise exceptions.NotFoundError(vertex_id)
        return elements.Vertex(self, vertex_id)

    def vertices(self) -> typing.List[elements.Vertex]:
        return [elements.Vertex(self, vertex_id)
                for vertex_id in self.controller.iter_all(indices.VertexID)]

    def add_vertex(self, label: typing.Union[str, elements.VertexLabel] = None,
                   **properties: typedefs.SimpleDataType) -> elements.Vertex:
        """Add a new vertex to the database and return it."""
        label_id = self._resolve_label(DEFAULT_VERTEX_LABEL if label is None else label,
                                       elements.VertexLabel)
        vertex = elements.Vertex(self, self.controller.add_vertex(label_id))
        for key, value in properties.items():
            self.add_vertex_property(vertex, key, value)
        return vertex

    def add_vertex_property(self, vertex: VertexRef, key: KeyRef,
                            value: typedefs.SimpleDataType,
                            **meta: typedefs.SimpleDataType) -> elements.VertexProperty:
        vertex_id = self._vertex_id(vertex)
        key_id = self.resolve_key(key, value)
        if key_id is None:
            raise exceptions.SchemaError("Property values cannot be None.")
        meta_ids = {self.resolve_key(meta_key, meta_value): meta_value
                    for meta_key, meta_value in meta.items() if meta_value is not None}
        occurrence = self.controller.add_vertex_value(vertex_id, key_id, value, meta_ids)
        return elements.VertexProperty(self, vertex_id, key_id, occurrence)

    def find_vertices(self, label: str = None,
                      **properties: typedefs.SimpleDataType) -> typing.List[elements.Vertex]:
        """Return the vertices with the label (if given) that have all of the property values."""
        steps = self.traversal().V()
        if label is not None:
            steps = steps.has_label(label)
        for key, value in properties.items():
            steps = steps.has(key, value)
        return steps.to_list()

    # Edges

    def get_edge(self, index: EdgeRef) -> elements.Edge:
        """Look up an existing edge by its index and return it. If no edge with that index exists,
        raise a NotFoundError."""
        edge_id = self._edge_id(index)
        if not self.controller.has_element(edge_id):
            raise exceptions.NotFoundError(edge_id)
        return elements.Edge(self, edge_id)

    def edges(self) -> typing.List[elements.Edge]:
        return [elements.Edge(self, edge_id)
                for edge_id in self.controller.iter_all(indices.EdgeID)]

    def add_edge(self, label: typing.Union[str, elements.EdgeLabel], source: VertexRef,
                 sink: VertexRef, **properties: typedefs.SimpleDataType) -> elements.Edge:
        """Add a new edge to the database and return it."""
        label_id = self._resolve_label(label, elements.EdgeLabel)
        edge = elements.Edge(self, self.controller.add_edge(label_id, self._vertex_id(source),
                                                            self._vertex_id(sink)))
        for key, value in properties.items():
            self.set_edge_property(edge, key, value)
        return edge

    def set_edge_property(self, edge: EdgeRef, key: KeyRef,
                          value: typing.Optional[typedefs.SimpleDataType]) -> None:
        edge_id = self._edge_id(edge)
        key_id = self.resolve_key(key, value)
        if key_id is None:
            return
        self.controller.set_edge_value(edge_id, key_id, value)

    # Traversals

    def traversal(self) -> 'traversal.TraversalSource':
        """Start a traversal over the graph, as seen from this interface's transaction."""
        return traversal.TraversalSource(self)
