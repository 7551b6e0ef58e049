"""
The unit of change applied to the graph store, and the change log records it leaves behind.
"""

import typing

from propgraph.data_structs import element_data
from propgraph.data_types import indices


class MutationBatch:
    """The net mutations of one transaction: new versions of added or updated elements, IDs of
    removed elements, and newly allocated schema names. A batch is applied to the store atomically
    or not at all."""

    def __init__(self, owner: typing.Any = None):
        # The reservation owner for the names in the batch.
        self.owner = owner
        self.upserts: typing.Dict[typing.Type[indices.PersistentDataID],
                                  typing.Dict[indices.PersistentDataID,
                                              element_data.ElementData]] = \
            {index_type: {} for index_type in indices.PERSISTENT_ID_TYPES}
        self.deletions: typing.Dict[typing.Type[indices.PersistentDataID],
                                    typing.Set[indices.PersistentDataID]] = \
            {index_type: set() for index_type in indices.PERSISTENT_ID_TYPES}
        self.names: typing.Dict[typing.Type[indices.SchemaID],
                                typing.Dict[str, indices.SchemaID]] = \
            {index_type: {} for index_type in indices.NAMED_ID_TYPES}

    def __repr__(self) -> str:
        return '<%s: %d upserts, %d deletions>' % (
            type(self).__name__,
            sum(len(upserts) for upserts in self.upserts.values()),
            sum(len(deletions) for deletions in self.deletions.values()),
        )

    def __bool__(self) -> bool:
        return any(self.upserts.values()) or any(self.deletions.values())

    def upsert(self, data: element_data.ElementData) -> None:
        index_type = type(data.index)
        self.deletions[index_type].discard(data.index)
        self.upserts[index_type][data.index] = data

    def delete(self, index: indices.PersistentDataID) -> None:
        self.upserts[type(index)].pop(index, None)
        self.deletions[type(index)].add(index)

    def touched(self, index_type: typing.Type[indices.PersistentDataID]) \
            -> typing.Set[indices.PersistentDataID]:
        """The IDs of all elements of the given type that the batch adds, updates, or removes."""
        return self.upserts[index_type].keys() | self.deletions[index_type]

    def iter_upserts(self) -> typing.Iterator[element_data.ElementData]:
        for index_type in indices.PERSISTENT_ID_TYPES:
            yield from self.upserts[index_type].values()

    def iter_deletions(self) -> typing.Iterator[indices.PersistentDataID]:
        for index_type in indices.PERSISTENT_ID_TYPES:
            yield from self.deletions[index_type]

    @classmethod
    def from_record(cls, record: 'ChangeRecord') -> 'MutationBatch':
        batch = cls()
        for data in record.upserts:
            batch.upsert(data)
            if isinstance(data, element_data.SchemaData):
                batch.names[type(data.index)][data.name] = data.index
        for index in record.deletions:
            batch.delete(index)
        return batch


class ChangeRecord(typing.NamedTuple):
    """A committed batch, as kept in the store's change log."""

    sequence: int
    upserts: typing.Tuple[element_data.ElementData, ...]
    deletions: typing.FrozenSet[indices.PersistentDataID]

    @property
    def touched(self) -> typing.FrozenSet[indices.PersistentDataID]:
        return frozenset(data.index for data in self.upserts) | self.deletions
