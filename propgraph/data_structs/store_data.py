"""
Internal state of the graph store.
"""

import collections
import threading
import typing

from propgraph.data_structs import index_entries
from propgraph.data_structs import interface
from propgraph.data_structs import mutations
from propgraph.data_types import allocators
from propgraph.data_types import data_access
from propgraph.data_types import exceptions
from propgraph.data_types import indices
from propgraph.data_types import typedefs

PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)


class StoreData(interface.DataInterface[None, data_access.StoreAccessManager]):
    """The internal data of the GraphStore. Only basic data structures and accessors should appear
    in this class. Store behavior should be determined entirely in the GraphStore and IndexManager
    classes."""

    __NON_PERSISTENT_ATTRIBUTES = (
        'access_map',
        'registry_lock',
    )

    def __init__(self, partitions: int = 1, change_log_size: int = 10000):
        super().__init__()

        self.store_data = None

        self.id_allocator_map = {
            index_type: allocators.IndexAllocator(index_type)
            for index_type in indices.PERSISTENT_ID_TYPES
        }

        self.registry_map = {index_type: {} for index_type in indices.PERSISTENT_ID_TYPES}
        self.registry_stack_map = self.registry_map
        self.pending_deletion_map = None

        self.name_allocator_map = {
            index_type: allocators.NameAllocator(str, index_type)
            for index_type in indices.NAMED_ID_TYPES
            if index_type is not indices.IndexID
        }
        self.name_allocator_map[indices.IndexID] = \
            allocators.NameAllocator(str, indices.IndexID, exceptions.DuplicateIndexError)
        self.name_allocator_stack_map = self.name_allocator_map

        # Number of the most recent commit. Bumped once per applied batch.
        self.commit_sequence = 0
        self.change_log: typing.Deque[mutations.ChangeRecord] = \
            collections.deque(maxlen=change_log_size)

        # Per-partition index statuses, the status each index is being moved to, and the status to
        # fall back to when a running reindex fails.
        self.partitions = partitions
        self.index_status_map: typing.Dict[indices.IndexID, typing.List[typedefs.IndexStatus]] = {}
        self.index_target_map: typing.Dict[indices.IndexID, typedefs.IndexStatus] = {}
        self.prior_status_map: typing.Dict[indices.IndexID, typedefs.IndexStatus] = {}
        self.index_entries_map: typing.Dict[indices.IndexID, index_entries.IndexEntries] = {}

        # Protects object creation, deletion, lock state changes, index status, and commits
        self.registry_lock = threading.Lock()

    def __getstate__(self):
        state = self.__dict__.copy()
        for name in self.__NON_PERSISTENT_ATTRIBUTES:
            del state[name]
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self.registry_lock = threading.Lock()
        # Locks belong to live threads, so every element starts out unlocked.
        self.access_map = {
            index_type: {index: data_access.StoreAccessManager(index) for index in registry}
            for index_type, registry in self.registry_map.items()
        }

    @property
    def change_log_size(self) -> typing.Optional[int]:
        return self.change_log.maxlen

    def resize(self, partitions: int, change_log_size: int) -> None:
        """Adapt loaded data to the current settings. Indexes keep their effective status."""
        if partitions != self.partitions:
            for index_id, statuses in self.index_status_map.items():
                effective = min(statuses, key=lambda status: status.rank)
                self.index_status_map[index_id] = [effective] * partitions
            self.partitions = partitions
        if change_log_size != self.change_log.maxlen:
            self.change_log = collections.deque(self.change_log, maxlen=change_log_size)

    def access(self, index: 'PersistentIDType') -> data_access.StoreAccessManager:
        """Return the access manager with the given index. Raise a KeyError if
        no data is associated with the index.

        Note: The registry lock must be held while calling this method.
        """
        assert self.registry_lock.locked()
        return self.access_map[type(index)][index]

    def new_access(self, index: 'PersistentIDType') -> data_access.StoreAccessManager:
        return data_access.StoreAccessManager(index)

    def allocate_name(self, name: str, index: indices.SchemaID) -> None:
        """Allocate a new name for the index."""
        allocator = self.name_allocator_map[type(index)]
        allocator.allocate(name, index)

    def effective_status(self, index_id: indices.IndexID) -> typedefs.IndexStatus:
        """The lowest-ranked partition status of the index.

        Note: The registry lock must be held while calling this method.
        """
        assert self.registry_lock.locked()
        try:
            statuses = self.index_status_map[index_id]
        except KeyError:
            raise exceptions.NotFoundError(index_id) from None
        return min(statuses, key=lambda status: status.rank)

    def is_maintained(self, index_id: indices.IndexID) -> bool:
        """Whether commits have to keep the index's entries up to date. This is the case as soon
        as any partition has acknowledged a maintained status."""
        return any(status.maintained for status in self.index_status_map[index_id])

    def touched_since(self, sequence: int) -> typing.Optional[typing.Set[indices.PersistentDataID]]:
        """Return the IDs of the elements touched by commits after the given sequence number, or
        None if the change log no longer reaches back that far.

        Note: The registry lock must be held while calling this method.
        """
        assert self.registry_lock.locked()
        if sequence == self.commit_sequence:
            return set()
        if not self.change_log or self.change_log[0].sequence > sequence + 1:
            return None
        touched = set()
        for record in self.change_log:
            if record.sequence > sequence:
                touched.update(record.touched)
        return touched
