"""
Physical storage of index entries.

Every index stores entries of the form (bucket, key, member). A composite index has a single
bucket, keys are tuples of covered property values, and members are element IDs. Relation indexes
are vertex-centric: each bucket belongs to one vertex (and, for edge indexes, one direction), so a
lookup only ever touches the entries of a single vertex.
"""

import abc
import typing

from propgraph.data_structs import element_data
from propgraph.data_types import indices
from propgraph.data_types import typedefs

Entry = typing.Tuple[typing.Hashable, tuple, typing.Hashable]


class IndexEntries(abc.ABC):
    """Base class for the entry stores of the different index kinds."""

    def __init__(self, definition: element_data.IndexData):
        self._definition = definition
        self._buckets: typing.Dict[typing.Hashable, typing.Dict[tuple, typing.Set]] = {}

    def __repr__(self) -> str:
        return '%s(%r)' % (type(self).__name__, self._definition.name)

    @property
    def definition(self) -> element_data.IndexData:
        return self._definition

    def __len__(self) -> int:
        return sum(len(members) for bucket in self._buckets.values()
                   for members in bucket.values())

    @abc.abstractmethod
    def entries_for(self, data: typing.Optional[element_data.ElementData]) -> typing.Set[Entry]:
        """Return the entries the index holds for the element data. Elements the index does not
        cover, and elements missing any covered key, have no entries."""
        raise NotImplementedError()

    def iter_entries(self) -> typing.Iterator[Entry]:
        for bucket_id, bucket in self._buckets.items():
            for key, members in bucket.items():
                for member in members:
                    yield bucket_id, key, member

    def add_entries(self, entries: typing.Iterable[Entry]) -> None:
        for bucket_id, key, member in entries:
            self._buckets.setdefault(bucket_id, {}).setdefault(key, set()).add(member)

    def remove_entries(self, entries: typing.Iterable[Entry]) -> None:
        for bucket_id, key, member in entries:
            bucket = self._buckets.get(bucket_id)
            if bucket is None:
                continue
            members = bucket.get(key)
            if members is None:
                continue
            members.discard(member)
            if not members:
                del bucket[key]
                if not bucket:
                    del self._buckets[bucket_id]

    def replace(self, entries: typing.Iterable[Entry]) -> None:
        """Discard every entry and store the given ones instead."""
        self._buckets = {}
        self.add_entries(entries)

    def clear(self) -> None:
        self._buckets = {}

    def get(self, bucket_id: typing.Hashable, key: tuple) -> typing.FrozenSet:
        return frozenset(self._buckets.get(bucket_id, {}).get(key, ()))


class CompositeIndexEntries(IndexEntries):
    """Exact-match index over a tuple of property values of vertices or edges."""

    def entries_for(self, data: typing.Optional[element_data.ElementData]) -> typing.Set[Entry]:
        if not isinstance(data, element_data.PropertiedElementData):
            return set()
        if not isinstance(data.index, self._definition.element_type):
            return set()
        return {(None, key, data.index) for key in data.key_tuples(self._definition.keys)}

    def lookup(self, key: tuple) -> typing.FrozenSet[indices.ElementID]:
        return self.get(None, tuple(key))

    def find_conflicts(self, entries: typing.Iterable[Entry],
                       removed: typing.Iterable[Entry] = ()) \
            -> typing.Optional[typing.Tuple[tuple, typing.List[indices.ElementID]]]:
        """For a unique index, check whether adding the entries would map any key to more than one
        element, given that the removed entries are dropped first. Return the first conflicting key
        and the elements sharing it, or None."""
        dropped: typing.Dict[tuple, typing.Set[indices.ElementID]] = {}
        for _, key, member in removed:
            dropped.setdefault(key, set()).add(member)
        claimed: typing.Dict[tuple, indices.ElementID] = {}
        for _, key, member in entries:
            existing = [element_id for element_id in self.lookup(key)
                        if element_id != member and element_id not in dropped.get(key, ())]
            if existing:
                return key, existing + [member]
            if claimed.get(key, member) != member:
                return key, [claimed[key], member]
            claimed[key] = member
        return None

    def iter_duplicates(self) -> typing.Iterator[typing.Tuple[tuple, typing.FrozenSet]]:
        """Yield every key that maps to more than one element, with the elements."""
        for key, members in self._buckets.get(None, {}).items():
            if len(members) > 1:
                yield key, frozenset(members)


class EdgeIndexEntries(IndexEntries):
    """Vertex-centric index over the incident edges of one edge label, keyed by edge properties.
    Buckets are (vertex ID, direction) pairs."""

    def entries_for(self, data: typing.Optional[element_data.ElementData]) -> typing.Set[Entry]:
        if not isinstance(data, element_data.EdgeData):
            return set()
        if data.label != self._definition.relation_type:
            return set()
        direction = self._definition.direction
        result = set()
        for key in data.key_tuples(self._definition.keys):
            if direction.covers(typedefs.Direction.OUT):
                result.add(((data.source, typedefs.Direction.OUT), key, data.index))
            if direction.covers(typedefs.Direction.IN):
                result.add(((data.sink, typedefs.Direction.IN), key, data.index))
        return result

    def lookup(self, vertex_id: indices.VertexID, direction: typedefs.Direction,
               key: tuple) -> typing.FrozenSet[indices.EdgeID]:
        if direction is typedefs.Direction.BOTH:
            return (self.get((vertex_id, typedefs.Direction.OUT), tuple(key)) |
                    self.get((vertex_id, typedefs.Direction.IN), tuple(key)))
        return self.get((vertex_id, direction), tuple(key))


class PropertyIndexEntries(IndexEntries):
    """Vertex-centric index over the occurrences of one property key, keyed by the occurrences'
    meta-properties. Buckets are vertex IDs and members are the occurrences themselves."""

    def entries_for(self, data: typing.Optional[element_data.ElementData]) -> typing.Set[Entry]:
        if not isinstance(data, element_data.VertexData):
            return set()
        result = set()
        for occurrence in data.occurrences(self._definition.relation_type):
            key = tuple(occurrence.get_meta(key_id) for key_id in self._definition.keys)
            if None in key:
                continue
            result.add((data.index, key, occurrence))
        return result

    def lookup(self, vertex_id: indices.VertexID,
               key: tuple) -> typing.FrozenSet[element_data.PropertyOccurrence]:
        return self.get(vertex_id, tuple(key))


ENTRIES_TYPE_MAP: typing.Mapping[typedefs.IndexKind, typing.Type[IndexEntries]] = {
    typedefs.IndexKind.COMPOSITE: CompositeIndexEntries,
    typedefs.IndexKind.EDGE: EdgeIndexEntries,
    typedefs.IndexKind.PROPERTY: PropertyIndexEntries,
}


def new_entries(definition: element_data.IndexData) -> IndexEntries:
    """Create an empty entry store of the right kind for the index definition."""
    return ENTRIES_TYPE_MAP[definition.kind](definition)
