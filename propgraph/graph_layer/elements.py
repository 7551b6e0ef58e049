"""
Graph elements.

Graph elements are high-level interfaces that serve as index-based references to the underlying data
in the database. Multiple elements can refer to the same underlying data if they share the same
index; in this case, they will compare as equal to each other. An element is bound to the graph
interface (connection or database) it was obtained from, and reads and writes through that
interface's transaction.
"""

import abc
import typing

from propgraph.data_structs import element_data
from propgraph.data_types import indices
from propgraph.data_types import typedefs

if typing.TYPE_CHECKING:
    from propgraph.graph_layer import interface


PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)


class Element(typing.Generic[PersistentIDType], abc.ABC):
    """Abstract base class for all graph element types."""

    @classmethod
    @abc.abstractmethod
    def index_type(cls) -> typing.Type[PersistentIDType]:
        """The type of index that elements of this type are associated with."""
        raise NotImplementedError()

    def __init__(self, graph: 'interface.GraphDBInterface', index: PersistentIDType):
        if not isinstance(index, self.index_type()):
            raise TypeError(index, self.index_type())
        self._graph = graph
        self._index = index

    def __repr__(self) -> str:
        return '%s(%s)' % (type(self).__name__, int(self._index))

    @property
    def _controller(self):
        return self._graph.controller

    @property
    def index(self) -> PersistentIDType:
        """The index associated with this element."""
        return self._index

    @property
    def id(self) -> int:
        return int(self._index)

    def exists(self) -> bool:
        """Whether the element exists, as seen from the element's transaction."""
        return self._controller.has_element(self._index)

    def __eq__(self, other: 'Element') -> bool:
        return (type(self) is type(other) and
                self._index == other._index)

    def __ne__(self, other: 'Element') -> bool:
        return not (type(self) is type(other) and
                    self._index == other._index)

    def __hash__(self) -> int:
        return hash(type(self)) ^ (hash(self._index) << 3)


class SchemaElement(Element[PersistentIDType]):
    """Base class for named, immutable schema elements."""

    def __repr__(self) -> str:
        return '%s(%r)' % (type(self).__name__, self.name)

    @property
    def name(self) -> str:
        return self._controller.get_schema_name(self._index)


class PropertyKey(SchemaElement[indices.PropertyKeyID]):
    """Property keys name the properties of vertices and edges, and declare the data type and
    cardinality of their values."""

    @classmethod
    def index_type(cls) -> typing.Type[indices.PropertyKeyID]:
        return indices.PropertyKeyID

    @property
    def data_type(self) -> type:
        return self._controller.get_property_key_data_type(self._index)

    @property
    def cardinality(self) -> typedefs.Cardinality:
        return self._controller.get_property_key_cardinality(self._index)


class VertexLabel(SchemaElement[indices.VertexLabelID]):
    """Vertex labels categorize vertices."""

    @classmethod
    def index_type(cls) -> typing.Type[indices.VertexLabelID]:
        return indices.VertexLabelID


class EdgeLabel(SchemaElement[indices.EdgeLabelID]):
    """Edge labels categorize edges, and constrain how many edges of the label a vertex can
    have."""

    @classmethod
    def index_type(cls) -> typing.Type[indices.EdgeLabelID]:
        return indices.EdgeLabelID

    @property
    def multiplicity(self) -> typedefs.Multiplicity:
        return self._controller.get_edge_label_multiplicity(self._index)


class GraphIndex(SchemaElement[indices.IndexID]):
    """An index definition. Graph (composite) indexes cover vertices or edges; relation indexes
    cover the incident edges or property occurrences of individual vertices."""

    @classmethod
    def index_type(cls) -> typing.Type[indices.IndexID]:
        return indices.IndexID

    @property
    def _definition(self) -> element_data.IndexData:
        return self._controller.get_index_definition(self._index)

    @property
    def kind(self) -> typedefs.IndexKind:
        return self._definition.kind

    @property
    def is_relation_index(self) -> bool:
        return self._definition.kind.is_relation_index

    @property
    def unique(self) -> bool:
        return self._definition.unique

    @property
    def direction(self) -> typedefs.Direction:
        return self._definition.direction

    @property
    def keys(self) -> typing.List[PropertyKey]:
        """The covered property keys, in order."""
        return [PropertyKey(self._graph, key_id) for key_id in self._definition.keys]

    @property
    def relation_type(self) -> typing.Optional[typing.Union[EdgeLabel, PropertyKey]]:
        relation_type = self._definition.relation_type
        if relation_type is None:
            return None
        if isinstance(relation_type, indices.EdgeLabelID):
            return EdgeLabel(self._graph, relation_type)
        return PropertyKey(self._graph, relation_type)

    @property
    def status(self) -> typedefs.IndexStatus:
        """The effective status of the index."""
        return self._graph.index_manager.status(self._index)

    @property
    def partition_statuses(self) -> typing.Tuple[typedefs.IndexStatus, ...]:
        return self._graph.index_manager.partition_statuses(self._index)


class PropertiedElement(Element[PersistentIDType]):
    """Base class for vertices and edges."""

    @abc.abstractmethod
    def values(self, key: typing.Union[str, PropertyKey]) -> typing.List[typedefs.SimpleDataType]:
        """Return the element's values for the key."""
        raise NotImplementedError()

    @abc.abstractmethod
    def keys(self) -> typing.List[str]:
        """Return the names of the keys the element has values for."""
        raise NotImplementedError()

    @abc.abstractmethod
    def remove(self) -> None:
        """Remove the element from the database."""
        raise NotImplementedError()

    def value(self, key: typing.Union[str, PropertyKey], default=None):
        """Return the element's value for the key, or the default if it has none. Multi-valued keys
        return their first value."""
        values = self.values(key)
        return values[0] if values else default

    def __getitem__(self, key: typing.Union[str, PropertyKey]):
        values = self.values(key)
        if not values:
            raise KeyError(key)
        return values[0]

    def __contains__(self, key: typing.Union[str, PropertyKey]) -> bool:
        return bool(self.values(key))

    def value_map(self) -> typing.Dict[str, typing.List[typedefs.SimpleDataType]]:
        return {key: self.values(key) for key in self.keys()}


class Vertex(PropertiedElement[indices.VertexID]):
    """Vertices are GraphElements that can be linked to each other via Edges. Vertices know which
    Edges are inbound and which are outbound. Each Vertex always has a VertexLabel, which can never
    be changed once the Vertex is created.

    VertexID is the index type, used to uniquely identify which Vertex is referred to. VertexData is
    an internally used data class for the attributes of the Vertex. Vertex is an *indirect
    reference* to the VertexData, via the VertexID, and serves as the externally accessible
    interface. Multiple Vertex instances can refer to the same VertexData if they have the same
    VertexID."""

    @classmethod
    def index_type(cls) -> typing.Type[indices.VertexID]:
        """The type of index that vertices are associated with."""
        return indices.VertexID

    @property
    def label(self) -> VertexLabel:
        """The label of the vertex."""
        return VertexLabel(self._graph, self._controller.get_vertex_label(self._index))

    def keys(self) -> typing.List[str]:
        return [self._controller.get_schema_name(key_id)
                for key_id in self._controller.iter_vertex_property_keys(self._index)]

    def values(self, key: typing.Union[str, PropertyKey]) -> typing.List[typedefs.SimpleDataType]:
        key_id = self._graph.resolve_key(key)
        if key_id is None:
            return []
        return self._controller.get_vertex_values(self._index, key_id)

    def properties(self, key: typing.Union[str, PropertyKey] = None) \
            -> typing.List['VertexProperty']:
        """Return the vertex's property occurrences, for one key or all of them."""
        if key is None:
            key_ids = self._controller.iter_vertex_property_keys(self._index)
        else:
            key_id = self._graph.resolve_key(key)
            key_ids = [] if key_id is None else [key_id]
        return [VertexProperty(self._graph, self._index, key_id, occurrence)
                for key_id in key_ids
                for occurrence in self._controller.get_vertex_occurrences(self._index, key_id)]

    def property(self, key: typing.Union[str, PropertyKey], value: typedefs.SimpleDataType,
                 **meta: typedefs.SimpleDataType) -> 'VertexProperty':
        """Give the vertex a value for the key, with optional meta-properties. A SINGLE key's value
        is replaced, a SET key's value is added if it's new, and a LIST key's value is appended."""
        return self._graph.add_vertex_property(self, key, value, **meta)

    def remove_property(self, key: typing.Union[str, PropertyKey],
                        value: typedefs.SimpleDataType = None) -> int:
        """Remove the vertex's values for the key; all of them, or those equal to the value. Return
        the number of values removed."""
        key_id = self._graph.resolve_key(key)
        if key_id is None:
            return 0
        return self._controller.remove_vertex_values(self._index, key_id, value)

    def remove(self) -> None:
        """Remove the vertex from the database, together with its incident edges."""
        self._controller.remove_vertex(self._index)

    def count_outbound(self) -> int:
        """Return the number of outbound edges from the vertex."""
        return self._controller.count_vertex_outbound(self._index)

    def iter_outbound(self) -> typing.Iterator['Edge']:
        """Return an iterator over the outbound edges from the vertex."""
        for edge_id in self._controller.iter_vertex_outbound(self._index):
            yield Edge(self._graph, edge_id)

    def count_inbound(self) -> int:
        """Return the number of inbound edges to the vertex."""
        return self._controller.count_vertex_inbound(self._index)

    def iter_inbound(self) -> typing.Iterator['Edge']:
        """Return an iterator over the inbound edges to the vertex."""
        for edge_id in self._controller.iter_vertex_inbound(self._index):
            yield Edge(self._graph, edge_id)

    def add_edge_to(self, edge_label: typing.Union[str, EdgeLabel], sink: 'Vertex',
                    **properties: typedefs.SimpleDataType) -> 'Edge':
        """Add an outbound edge to another vertex."""
        return self._graph.add_edge(edge_label, self, sink, **properties)

    def add_edge_from(self, edge_label: typing.Union[str, EdgeLabel], source: 'Vertex',
                      **properties: typedefs.SimpleDataType) -> 'Edge':
        """Add an inbound edge from another vertex."""
        return self._graph.add_edge(edge_label, source, self, **properties)


class Edge(PropertiedElement[indices.EdgeID]):
    """Edges are GraphElements that link two Vertices together. Edges are always directed. Each Edge
    always has an associated EdgeLabel, which can never be changed once the Edge is created.

    EdgeID is the index type, used to uniquely identify which Edge is referred to. EdgeData is an
    internally used data class for the attributes of the Edge. Edge is an *indirect reference* to
    the EdgeData, via the EdgeID, and serves as the externally accessible interface. Multiple Edge
    instances can refer to the same EdgeData if they have the same EdgeID."""

    @classmethod
    def index_type(cls) -> typing.Type[indices.EdgeID]:
        """The type of index that edges are associated with."""
        return indices.EdgeID

    @property
    def label(self) -> EdgeLabel:
        """The label of the edge."""
        return EdgeLabel(self._graph, self._controller.get_edge_label(self._index))

    @property
    def source(self) -> Vertex:
        """The source (origin) vertex of the edge. (All edges are directed.)"""
        return Vertex(self._graph, self._controller.get_edge_source(self._index))

    @property
    def sink(self) -> Vertex:
        """The sink (destination) vertex of the edge. (All edges are directed.)"""
        return Vertex(self._graph, self._controller.get_edge_sink(self._index))

    def keys(self) -> typing.List[str]:
        return [self._controller.get_schema_name(key_id)
                for key_id in self._controller.iter_edge_property_keys(self._index)]

    def values(self, key: typing.Union[str, PropertyKey]) -> typing.List[typedefs.SimpleDataType]:
        key_id = self._graph.resolve_key(key)
        if key_id is None:
            return []
        value = self._controller.get_edge_value(self._index, key_id)
        return [] if value is None else [value]

    def property(self, key: typing.Union[str, PropertyKey],
                 value: typedefs.SimpleDataType) -> None:
        """Set the edge's value for the key. A value of None removes it."""
        self._graph.set_edge_property(self, key, value)

    def remove_property(self, key: typing.Union[str, PropertyKey]) -> bool:
        key_id = self._graph.resolve_key(key)
        if key_id is None:
            return False
        return self._controller.remove_edge_value(self._index, key_id)

    def remove(self) -> None:
        """Remove the edge from the database."""
        self._controller.remove_edge(self._index)


class VertexProperty:
    """One occurrence of a vertex property: a value, together with its meta-properties. Property
    occurrences are values, not references; the object doesn't change when the vertex does."""

    def __init__(self, graph: 'interface.GraphDBInterface', vertex_id: indices.VertexID,
                 key_id: indices.PropertyKeyID, occurrence: element_data.PropertyOccurrence):
        self._graph = graph
        self._vertex_id = vertex_id
        self._key_id = key_id
        self._occurrence = occurrence

    def __repr__(self) -> str:
        return 'VertexProperty(%s, %r, %r)' % (int(self._vertex_id), self.key, self.value)

    def __eq__(self, other) -> bool:
        return isinstance(other, VertexProperty) and \
            (self._vertex_id, self._key_id, self._occurrence) == \
            (other._vertex_id, other._key_id, other._occurrence)

    def __hash__(self) -> int:
        return hash((self._vertex_id, self._key_id, self._occurrence))

    @property
    def vertex(self) -> Vertex:
        return Vertex(self._graph, self._vertex_id)

    @property
    def key(self) -> str:
        return self._graph.controller.get_schema_name(self._key_id)

    @property
    def value(self) -> typedefs.SimpleDataType:
        return self._occurrence.value

    @property
    def meta(self) -> typing.Dict[str, typedefs.SimpleDataType]:
        """The meta-properties of the occurrence, by key name."""
        return {self._graph.controller.get_schema_name(key_id): value
                for key_id, value in self._occurrence.meta}

    def meta_value(self, key: typing.Union[str, PropertyKey], default=None):
        key_id = self._graph.resolve_key(key)
        if key_id is None:
            return default
        return self._occurrence.get_meta(key_id, default)

    def property(self, key: typing.Union[str, PropertyKey],
                 value: typing.Optional[typedefs.SimpleDataType]) -> 'VertexProperty':
        """Set a meta-property on the occurrence (and on any equal occurrences of the same key).
        Return the updated occurrence."""
        key_id = self._graph.resolve_key(key, value)
        if key_id is None:
            # Clearing a meta-property nobody has ever set.
            return self
        self._graph.controller.set_vertex_meta(self._vertex_id, self._key_id,
                                               self._occurrence.value, key_id, value)
        return VertexProperty(self._graph, self._vertex_id, self._key_id,
                              self._occurrence.with_meta(key_id, value))

    def remove(self) -> None:
        """Remove the occurrence's value from the vertex."""
        self._graph.controller.remove_vertex_values(self._vertex_id, self._key_id,
                                                    self._occurrence.value)


class Property(typing.NamedTuple):
    """A property of an edge."""

    element: Edge
    key: str
    value: typedefs.SimpleDataType
