"""
Shared functionality provided by both the graph store and transactions.
"""

import typing

import propgraph.data_structs.element_data as element_data
import propgraph.data_structs.interface as interface
import propgraph.data_types.indices as indices
import propgraph.data_types.typedefs as typedefs

PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)
DataInterfaceType = typing.TypeVar('DataInterfaceType', bound=interface.DataInterface)


class BaseController(typing.Generic[DataInterfaceType]):
    """Base class for shared functionality in store and transaction types. Everything here is
    read-only; modifications are made through transactions."""

    def __init__(self, data: DataInterfaceType):
        self._data = data

    def has_element(self, index: 'PersistentIDType') -> bool:
        """Return whether an element with the given index exists."""
        with self._data.registry_lock:
            try:
                self._data.get_data(index)
            except KeyError:
                return False
        return True

    def iter_all(self, index_type: typing.Type['PersistentIDType']) \
            -> typing.List['PersistentIDType']:
        """Return the indices of all existing elements of the given type."""
        with self._data.registry_lock:
            return sorted(self._data.iter_all(index_type))

    # Schema

    def get_schema_name(self, schema_id: indices.SchemaID) -> str:
        """Get the name of an existing property key, label, or index."""
        with self._data.read(schema_id) as schema_data:
            schema_data: element_data.SchemaData
            return schema_data.name

    def find_schema(self, index_type: typing.Type[indices.SchemaID],
                    name: str) -> typing.Optional[indices.SchemaID]:
        """Find the schema element of the given type with the given name and return its index. If
        no such element exists, return None."""
        with self._data.find(index_type, name) as schema_data:
            if schema_data is None:
                return None
            return schema_data.index

    def find_property_key(self, name: str) -> typing.Optional[indices.PropertyKeyID]:
        return self.find_schema(indices.PropertyKeyID, name)

    def find_vertex_label(self, name: str) -> typing.Optional[indices.VertexLabelID]:
        return self.find_schema(indices.VertexLabelID, name)

    def find_edge_label(self, name: str) -> typing.Optional[indices.EdgeLabelID]:
        return self.find_schema(indices.EdgeLabelID, name)

    def find_index(self, name: str) -> typing.Optional[indices.IndexID]:
        return self.find_schema(indices.IndexID, name)

    def get_property_key_data_type(self, key_id: indices.PropertyKeyID) -> type:
        with self._data.read(key_id) as key_data:
            key_data: element_data.PropertyKeyData
            return key_data.data_type

    def get_property_key_cardinality(self, key_id: indices.PropertyKeyID) \
            -> typedefs.Cardinality:
        with self._data.read(key_id) as key_data:
            key_data: element_data.PropertyKeyData
            return key_data.cardinality

    def get_edge_label_multiplicity(self, label_id: indices.EdgeLabelID) \
            -> typedefs.Multiplicity:
        with self._data.read(label_id) as label_data:
            label_data: element_data.EdgeLabelData
            return label_data.multiplicity

    def get_index_definition(self, index_id: indices.IndexID) -> element_data.IndexData:
        """Return the definition of an existing index. Definitions are immutable."""
        with self._data.read(index_id) as index_data:
            return index_data

    # Vertices

    def get_vertex_label(self, vertex_id: indices.VertexID) -> indices.VertexLabelID:
        """Return the index of the label of an existing vertex."""
        with self._data.read(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            return vertex_data.label

    def iter_vertex_property_keys(self, vertex_id: indices.VertexID) \
            -> typing.List[indices.PropertyKeyID]:
        """Return the keys that have values for the vertex."""
        with self._data.read(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            return list(vertex_data.iter_property_keys())

    def get_vertex_values(self, vertex_id: indices.VertexID,
                          key_id: indices.PropertyKeyID) -> typing.List[typedefs.SimpleDataType]:
        """Return the values the vertex holds for the key, in insertion order."""
        with self._data.read(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            return vertex_data.values(key_id)

    def get_vertex_occurrences(self, vertex_id: indices.VertexID,
                               key_id: indices.PropertyKeyID) \
            -> typing.List[element_data.PropertyOccurrence]:
        """Return the property occurrences, including meta-properties, the vertex holds for the
        key."""
        with self._data.read(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            return vertex_data.occurrences(key_id)

    def count_vertex_outbound(self, vertex_id: indices.VertexID) -> int:
        """Return the number of outbound edges from an existing vertex."""
        with self._data.read(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            return len(vertex_data.outbound)

    def iter_vertex_outbound(self, vertex_id: indices.VertexID) -> typing.List[indices.EdgeID]:
        """Return the indices of the outbound edges from an existing vertex."""
        with self._data.read(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            return sorted(vertex_data.outbound)

    def count_vertex_inbound(self, vertex_id: indices.VertexID) -> int:
        """Return the number of inbound edges to an existing vertex."""
        with self._data.read(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            return len(vertex_data.inbound)

    def iter_vertex_inbound(self, vertex_id: indices.VertexID) -> typing.List[indices.EdgeID]:
        """Return the indices of the inbound edges to an existing vertex."""
        with self._data.read(vertex_id) as vertex_data:
            vertex_data: element_data.VertexData
            return sorted(vertex_data.inbound)

    # Edges

    def get_edge_label(self, edge_id: indices.EdgeID) -> indices.EdgeLabelID:
        """Get the index of an edge's label."""
        with self._data.read(edge_id) as edge_data:
            edge_data: element_data.EdgeData
            return edge_data.label

    def get_edge_source(self, edge_id: indices.EdgeID) -> indices.VertexID:
        """Get the index of an edge's source vertex."""
        with self._data.read(edge_id) as edge_data:
            edge_data: element_data.EdgeData
            return edge_data.source

    def get_edge_sink(self, edge_id: indices.EdgeID) -> indices.VertexID:
        """Get the index of an edge's sink vertex."""
        with self._data.read(edge_id) as edge_data:
            edge_data: element_data.EdgeData
            return edge_data.sink

    def iter_edge_property_keys(self, edge_id: indices.EdgeID) \
            -> typing.List[indices.PropertyKeyID]:
        with self._data.read(edge_id) as edge_data:
            edge_data: element_data.EdgeData
            return list(edge_data.iter_property_keys())

    def get_edge_value(self, edge_id: indices.EdgeID, key_id: indices.PropertyKeyID,
                       default=None) -> typing.Optional[typedefs.SimpleDataType]:
        """Look up and return the key's value for the edge. If the edge has no value associated
        with the key, return the default."""
        with self._data.read(edge_id) as edge_data:
            edge_data: element_data.EdgeData
            return edge_data.properties.get(key_id, default)
