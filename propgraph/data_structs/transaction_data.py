"""
Internal state of the transaction.
"""

import collections
import typing

from propgraph.data_structs import interface
from propgraph.data_structs import mutations
from propgraph.data_structs import store_data as store_data_module
from propgraph.data_types import allocators
from propgraph.data_types import data_access
from propgraph.data_types import exceptions
from propgraph.data_types import indices

PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)


class TransactionData(interface.DataInterface[store_data_module.StoreData,
                                              data_access.TransactionAccessManager]):
    """The internal data of the Transaction. Only basic data structures and accessors should appear
    in this class. Transaction behavior should be determined entirely in the Transaction class."""

    def __init__(self, store_data: store_data_module.StoreData):
        super().__init__()

        self.store_data = store_data

        # Just pass through to the underlying store. We don't care if an ID gets skipped and is
        # never recovered, because we have an infinite supply and their values only need to be
        # unique.
        self.id_allocator_map = store_data.id_allocator_map

        self.name_allocator_map = {
            index_type: allocators.NameAllocator(str, index_type, store_allocator.duplicate_error)
            for index_type, store_allocator in store_data.name_allocator_map.items()
        }

        self.name_allocator_stack_map = {
            index_type: collections.ChainMap(self.name_allocator_map[index_type],
                                             store_allocator)
            for index_type, store_allocator in store_data.name_allocator_map.items()
        }

        self.registry_map = {index_type: {} for index_type in store_data.registry_map}

        self.registry_stack_map = {
            index_type: collections.ChainMap(self.registry_map[index_type], store_registry)
            for index_type, store_registry in store_data.registry_map.items()
        }

        # Objects that will be deleted on commit
        self.pending_deletion_map = {index_type: set() for index_type in self.registry_map}

        # Lock both the transaction and the underlying store at once.
        self.registry_lock = store_data.registry_lock

        # Set when a lock request of the transaction has been refused. An aborted transaction can
        # only be rolled back.
        self.abort_reason: typing.Optional[exceptions.ConflictError] = None

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None

    def abort(self, reason: exceptions.ConflictError) -> None:
        if self.abort_reason is None:
            self.abort_reason = reason

    def access(self, index: 'PersistentIDType') -> data_access.TransactionAccessManager:
        """Return the access manager with the given index. Raise a KeyError if
        no data is associated with the index.

        Note: The registry lock must be held while calling this method.
        """
        assert self.registry_lock.locked()
        if index in self.pending_deletion_map[type(index)]:
            raise KeyError(index)
        if index not in self.access_map[type(index)] and \
                index in self.store_data.access_map[type(index)]:
            manager = self.store_data.access_map[type(index)][index]
            manager = manager.get_transaction_level_manager()
            self.access_map[type(index)][index] = manager
            return manager
        return self.access_map[type(index)][index]

    def new_access(self, index: 'PersistentIDType') -> data_access.TransactionAccessManager:
        return data_access.StoreAccessManager(index).get_transaction_level_manager()

    def allocate_name(self, name: str, index: indices.SchemaID) -> None:
        """Allocate a new name for the index, reserving it in the store so no other transaction
        can claim it before this one terminates."""
        transaction_name_allocator = self.name_allocator_map[type(index)]
        store_name_allocator = self.store_data.name_allocator_map[type(index)]
        transaction_name_allocator.allocate(name, index)
        try:
            store_name_allocator.reserve(name, self)
        except exceptions.DuplicateNameError:
            transaction_name_allocator.deallocate(name)
            raise

    def iter_managers(self) -> typing.Iterator[data_access.TransactionAccessManager]:
        for managers in self.access_map.values():
            yield from managers.values()

    def new_schema(self) -> typing.Set[indices.SchemaID]:
        """The IDs of the schema elements created by the transaction."""
        return {index for index_type in indices.NAMED_ID_TYPES
                for index in self.registry_map[index_type]}

    def to_batch(self) -> mutations.MutationBatch:
        """Collect the net effect of the transaction."""
        batch = mutations.MutationBatch(owner=self)
        for registry in self.registry_map.values():
            for data in registry.values():
                batch.upsert(data)
        for deletions in self.pending_deletion_map.values():
            for index in deletions:
                batch.delete(index)
        for index_type, allocator in self.name_allocator_map.items():
            batch.names[index_type].update(allocator)
        return batch

    def clear(self) -> None:
        """Discard all pending changes and give up the store-level name reservations."""
        for index_type in self.registry_map:
            self.registry_map[index_type].clear()
            self.pending_deletion_map[index_type].clear()
            self.access_map[index_type].clear()
        for index_type, allocator in self.name_allocator_map.items():
            allocator.clear()
            self.store_data.name_allocator_map[index_type].cancel_all_reservations(self)
        self.abort_reason = None
