"""
Data structures associated with each type of graph element.

Element data is copy-on-write: the store never modifies an element data object after it has been
registered. Updates are made to a copy, which then replaces the registered object. Readers holding
a reference to the old object therefore see a stable, consistent version of the element.
"""

import itertools
import typing

import propgraph.data_types.indices as indices
import propgraph.data_types.typedefs as typedefs

PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)


class PropertyOccurrence(typing.NamedTuple):
    """One value of a vertex property, together with the meta-properties attached to it. Immutable;
    changing a meta-property replaces the occurrence."""

    value: typedefs.SimpleDataType
    meta: typing.Tuple[typing.Tuple[indices.PropertyKeyID, typedefs.SimpleDataType], ...] = ()

    def get_meta(self, key_id: indices.PropertyKeyID, default=None):
        for meta_key_id, meta_value in self.meta:
            if meta_key_id == key_id:
                return meta_value
        return default

    def with_meta(self, key_id: indices.PropertyKeyID,
                  value: typing.Optional[typedefs.SimpleDataType]) -> 'PropertyOccurrence':
        meta = tuple((meta_key_id, meta_value) for meta_key_id, meta_value in self.meta
                     if meta_key_id != key_id)
        if value is not None:
            meta += ((key_id, value),)
        return PropertyOccurrence(self.value, meta)


class ElementData(typing.Generic[PersistentIDType]):
    """Base class for graph element internal data types."""

    def __init__(self, index: PersistentIDType, *_args, **_kwargs):
        # Uniquely identifies the element, given its element type:
        self._index = index

    def __repr__(self) -> str:
        return '<%s %r>' % (type(self).__name__, self._index)

    @property
    def index(self) -> PersistentIDType:
        """The index of the element."""
        return self._index

    def __copy__(self):
        result = type(self).__new__(type(self))
        result.__dict__.update(self.__dict__)
        return result


class SchemaData(ElementData[PersistentIDType]):
    """Base class for the data of named, immutable schema elements."""

    def __init__(self, index: PersistentIDType, name: str):
        super().__init__(index)
        self._name = name

    def __repr__(self) -> str:
        return '<%s %r %r>' % (type(self).__name__, self._index, self._name)

    @property
    def name(self) -> str:
        return self._name


class PropertyKeyData(SchemaData[indices.PropertyKeyID]):
    """Internal data for property keys."""

    def __init__(self, index: indices.PropertyKeyID, name: str, data_type: type = str,
                 cardinality: typedefs.Cardinality = typedefs.Cardinality.SINGLE):
        super().__init__(index, name)
        if data_type not in typedefs.SUPPORTED_DATA_TYPES:
            raise TypeError("Unsupported data type for property key %r: %r" % (name, data_type))
        self._data_type = data_type
        self._cardinality = cardinality

    @property
    def data_type(self) -> type:
        return self._data_type

    @property
    def cardinality(self) -> typedefs.Cardinality:
        return self._cardinality


class VertexLabelData(SchemaData[indices.VertexLabelID]):
    """Internal data for vertex labels."""


class EdgeLabelData(SchemaData[indices.EdgeLabelID]):
    """Internal data for edge labels."""

    def __init__(self, index: indices.EdgeLabelID, name: str,
                 multiplicity: typedefs.Multiplicity = typedefs.Multiplicity.MULTI):
        super().__init__(index, name)
        self._multiplicity = multiplicity

    @property
    def multiplicity(self) -> typedefs.Multiplicity:
        return self._multiplicity


class IndexData(SchemaData[indices.IndexID]):
    """Internal data for index definitions. The index's status is not part of its definition; it
    is tracked per partition by the index manager."""

    def __init__(self, index: indices.IndexID, name: str, kind: typedefs.IndexKind,
                 keys: typing.Sequence[indices.PropertyKeyID], *,
                 element_type: typing.Type[indices.ElementID] = indices.VertexID,
                 unique: bool = False,
                 relation_type: typing.Optional[indices.SchemaID] = None,
                 direction: typedefs.Direction = typedefs.Direction.BOTH):
        super().__init__(index, name)
        if not keys:
            raise ValueError("An index must cover at least one property key.")
        if unique and kind is not typedefs.IndexKind.COMPOSITE:
            raise ValueError("Only composite indexes can enforce uniqueness.")
        if kind is typedefs.IndexKind.EDGE:
            assert isinstance(relation_type, indices.EdgeLabelID)
        elif kind is typedefs.IndexKind.PROPERTY:
            assert isinstance(relation_type, indices.PropertyKeyID)
        else:
            assert relation_type is None
        self._kind = kind
        self._keys = tuple(keys)
        self._element_type = element_type
        self._unique = unique
        self._relation_type = relation_type
        self._direction = direction

    @property
    def kind(self) -> typedefs.IndexKind:
        return self._kind

    @property
    def keys(self) -> typing.Tuple[indices.PropertyKeyID, ...]:
        """The covered property keys, in order."""
        return self._keys

    @property
    def element_type(self) -> typing.Type[indices.ElementID]:
        """The type of element indexed by a composite index."""
        return self._element_type

    @property
    def unique(self) -> bool:
        return self._unique

    @property
    def relation_type(self) -> typing.Optional[indices.SchemaID]:
        """The edge label (edge indexes) or property key (property indexes) of a relation index."""
        return self._relation_type

    @property
    def direction(self) -> typedefs.Direction:
        """The edge directions covered by an edge index."""
        return self._direction


class PropertiedElementData(ElementData[PersistentIDType]):
    """Base class for the data of elements that carry properties and a label."""

    def __init__(self, index: PersistentIDType, label: indices.SchemaID):
        super().__init__(index)
        self._label = label

    @property
    def label(self) -> indices.SchemaID:
        return self._label

    def iter_property_keys(self) -> typing.Iterator[indices.PropertyKeyID]:
        raise NotImplementedError()

    def values(self, key_id: indices.PropertyKeyID) -> typing.List[typedefs.SimpleDataType]:
        """Return the values the element holds for the property key."""
        raise NotImplementedError()

    def key_tuples(self, key_ids: typing.Sequence[indices.PropertyKeyID]) \
            -> typing.Iterator[tuple]:
        """Yield every tuple of values the element holds for the keys, in key order. Nothing is
        yielded if the element is missing any of the keys."""
        value_lists = [self.values(key_id) for key_id in key_ids]
        if not all(value_lists):
            return
        yield from itertools.product(*(dict.fromkeys(values) for values in value_lists))


class VertexData(PropertiedElementData[indices.VertexID]):
    """Internal data for vertices."""

    def __init__(self, index: indices.VertexID, label: indices.VertexLabelID):
        super().__init__(index, label)
        self._properties: typing.Dict[indices.PropertyKeyID, typing.List[PropertyOccurrence]] = {}

        # Adjacency is kept on both ends of each edge so traversals never need a global edge scan.
        self._inbound: typing.Set[indices.EdgeID] = set()
        self._outbound: typing.Set[indices.EdgeID] = set()

    def __copy__(self):
        result = super().__copy__()
        result._properties = {key_id: list(occurrences)
                              for key_id, occurrences in self._properties.items()}
        result._inbound = set(self._inbound)
        result._outbound = set(self._outbound)
        return result

    @property
    def label(self) -> indices.VertexLabelID:
        """The label of the vertex."""
        return self._label

    @property
    def properties(self) -> typing.Dict[indices.PropertyKeyID, typing.List[PropertyOccurrence]]:
        """The property occurrences of the vertex, by property key."""
        return self._properties

    @property
    def outbound(self) -> typing.Set[indices.EdgeID]:
        """The outbound edges from the vertex."""
        return self._outbound

    @property
    def inbound(self) -> typing.Set[indices.EdgeID]:
        """The inbound edges to the vertex."""
        return self._inbound

    def iter_property_keys(self) -> typing.Iterator[indices.PropertyKeyID]:
        return iter(self._properties)

    def values(self, key_id: indices.PropertyKeyID) -> typing.List[typedefs.SimpleDataType]:
        return [occurrence.value for occurrence in self._properties.get(key_id, ())]

    def occurrences(self, key_id: indices.PropertyKeyID) -> typing.List[PropertyOccurrence]:
        return list(self._properties.get(key_id, ()))

    def incident(self, direction: typedefs.Direction) -> typing.Set[indices.EdgeID]:
        if direction is typedefs.Direction.OUT:
            return set(self._outbound)
        if direction is typedefs.Direction.IN:
            return set(self._inbound)
        return self._outbound | self._inbound


class EdgeData(PropertiedElementData[indices.EdgeID]):
    """Internal data for edges."""

    def __init__(self, index: indices.EdgeID, label: indices.EdgeLabelID,
                 source: indices.VertexID, sink: indices.VertexID):
        super().__init__(index, label)
        self._source = source
        self._sink = sink
        self._properties: typing.Dict[indices.PropertyKeyID, typedefs.SimpleDataType] = {}

    def __copy__(self):
        result = super().__copy__()
        result._properties = dict(self._properties)
        return result

    @property
    def label(self) -> indices.EdgeLabelID:
        """The label associated with the edge."""
        return self._label

    @property
    def source(self) -> indices.VertexID:
        """The source (origin) vertex of the edge."""
        return self._source

    @property
    def sink(self) -> indices.VertexID:
        """The sink (destination) vertex of the edge."""
        return self._sink

    @property
    def properties(self) -> typing.Dict[indices.PropertyKeyID, typedefs.SimpleDataType]:
        return self._properties

    def iter_property_keys(self) -> typing.Iterator[indices.PropertyKeyID]:
        return iter(self._properties)

    def values(self, key_id: indices.PropertyKeyID) -> typing.List[typedefs.SimpleDataType]:
        if key_id in self._properties:
            return [self._properties[key_id]]
        return []

    def other_end(self, vertex_id: indices.VertexID) -> indices.VertexID:
        return self._sink if vertex_id == self._source else self._source


ELEMENT_TYPE_MAP: typing.Mapping[typing.Type[indices.PersistentDataID],
                                 typing.Type[ElementData]] = {
    indices.PropertyKeyID: PropertyKeyData,
    indices.VertexLabelID: VertexLabelData,
    indices.EdgeLabelID: EdgeLabelData,
    indices.IndexID: IndexData,
    indices.VertexID: VertexData,
    indices.EdgeID: EdgeData,
}
