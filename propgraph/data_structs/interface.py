"""
Shared interface provided by both store data and transaction data.
"""

import abc
import threading
import typing

import propgraph.data_structs.operation_contexts as contexts
from propgraph.data_structs import element_data
from propgraph.data_types import allocators
from propgraph.data_types import data_access
from propgraph.data_types import indices

ParentStoreData = typing.Optional['DataInterface']

PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)
AccessManagerType = typing.TypeVar('AccessManagerType',
                                   bound=data_access.AccessManagerInterface)
ParentStoreDataType = typing.TypeVar('ParentStoreDataType', bound=ParentStoreData)


class DataInterface(typing.Generic[ParentStoreDataType, AccessManagerType],
                    metaclass=abc.ABCMeta):
    """Abstract base class for graph store data container classes."""

    store_data: typing.Optional[ParentStoreDataType]

    element_type_map = element_data.ELEMENT_TYPE_MAP

    id_allocator_map: typing.Mapping[typing.Type[indices.PersistentDataID],
                                     allocators.IndexAllocator]
    registry_map: typing.Mapping[typing.Type[indices.PersistentDataID],
                                 typing.MutableMapping[indices.PersistentDataID,
                                                       element_data.ElementData]]
    registry_stack_map: typing.Mapping[typing.Type[indices.PersistentDataID],
                                       typing.MutableMapping[indices.PersistentDataID,
                                                             element_data.ElementData]]
    access_map: typing.Mapping[typing.Type[indices.PersistentDataID],
                               typing.MutableMapping[indices.PersistentDataID,
                                                     AccessManagerType]]

    pending_deletion_map: typing.Optional[
        typing.Mapping[typing.Type[indices.PersistentDataID],
                       typing.MutableSet[indices.PersistentDataID]]
    ]

    name_allocator_map: typing.Mapping[typing.Type[indices.SchemaID],
                                       allocators.NameAllocator[str, indices.SchemaID]]
    name_allocator_stack_map: typing.Mapping[typing.Type[indices.SchemaID],
                                             typing.Mapping[str, indices.SchemaID]]

    # Protects object creation, deletion, lock state changes, and commits
    registry_lock: threading.Lock

    def __init__(self):
        self.access_map = {index_type: {} for index_type in indices.PERSISTENT_ID_TYPES}

    def add(self, index_type: typing.Type['PersistentIDType'], *args, **kwargs) \
            -> 'typing.ContextManager[element_data.ElementData[PersistentIDType]]':
        """A context manager which adds a new element of the given type if no
        exceptions occur in the `with` body.

        Note: Do not hold the registry lock while calling this method.

        Usage:
            with data.add(VertexID, label_id) as vertex_data:
                assert isinstance(vertex_data, VertexData)
                # Perform validation and/or do things to the element data before
                # it is added. If an exception is raised here, the element won't
                # be added.
        """
        return contexts.Adding(self, index_type, *args, **kwargs)

    def read(self, index: 'PersistentIDType') \
            -> 'typing.ContextManager[element_data.ElementData[PersistentIDType]]':
        """A context manager which provides read access to a data element and revokes
        it upon exiting the `with` block.

        Note: Do not hold the registry lock while calling this method.

        Usage:
            with data.read(element_id) as element_data:
                # A read lock to the data element is held for the duration of this
                # block. Access the data element, but do not modify it.
        """
        return contexts.Reading(self, index)

    def update(self, index: 'PersistentIDType') \
            -> 'typing.ContextManager[element_data.ElementData[PersistentIDType]]':
        """A context manager which provides update (modify) access to a data element
        and revokes it upon exiting the `with` block. Raising an exception cancels
        the update.

        Note: Do not hold the registry lock while calling this method.

        Usage:
            with data.update(element_id) as element_data:
                # A write lock to the data element is held for the duration of this
                # block. Modify the copy freely. If no exception is raised, the
                # copy replaces the registered data. Otherwise, it is discarded.
        """
        return contexts.Updating(self, index)

    def find(self, index_type: typing.Type['PersistentIDType'], name: str) \
            -> 'typing.ContextManager[typing.Optional[element_data.ElementData[PersistentIDType]]]':
        """A context manager which looks up a schema element by name and provides read
        access to it for the duration of the `with` block.

        Note: Do not hold the registry lock while calling this method.

        Usage:
            with data.find(PropertyKeyID, "ident") as key_data:
                assert key_data is None or isinstance(key_data, PropertyKeyData)
        """
        return contexts.Finding(self, index_type, name)

    def remove(self, index: 'PersistentIDType') \
            -> 'typing.ContextManager[element_data.ElementData[PersistentIDType]]':
        """A context manager which removes an element if no exceptions occur in the
        `with` body.

        Note: Do not hold the registry lock while calling this method.

        Usage:
            with data.remove(element_id) as element_data:
                # A write lock to the data element is held for the duration of this
                # block. If no exception is raised, the element will be deleted.
                # Otherwise, nothing changes.
        """
        return contexts.Removing(self, index)

    def abort(self, reason: Exception) -> None:
        """Record that a lock request was refused. Only transactions can be aborted; the store
        just lets the error propagate."""

    def is_pending_deletion(self, index: 'PersistentIDType') -> bool:
        return bool(self.pending_deletion_map) and \
            index in self.pending_deletion_map[type(index)]

    def get_data(self, index: 'PersistentIDType') -> 'element_data.ElementData[PersistentIDType]':
        """Return the element data associated with the given index. Raise a KeyError if
        no data is associated with the index.

        Note: The registry lock must be held while calling this method.
        """
        assert self.registry_lock.locked()
        if self.is_pending_deletion(index):
            raise KeyError(index)
        return self.registry_stack_map[type(index)][index]

    @abc.abstractmethod
    def access(self, index: 'PersistentIDType') -> AccessManagerType:
        """Return the access manager for the given index. Raise a KeyError if
        no data is associated with the index.

        Note: The registry lock must be held while calling this method.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    def new_access(self, index: 'PersistentIDType') -> AccessManagerType:
        """Return a new access manager for a newly added element."""
        raise NotImplementedError()

    def iter_all(self, index_type: typing.Type['PersistentIDType']) \
            -> typing.Iterator['PersistentIDType']:
        """Return an iterator over all existing element indices of the given type.

        Note: The registry lock must be held while calling this method.
        """
        assert self.registry_lock.locked()
        if self.pending_deletion_map is not None:
            pending_deletions = self.pending_deletion_map[index_type]
            yield from (self.registry_map[index_type].keys() |
                        self.store_data.registry_map[index_type].keys()) - pending_deletions
        else:
            yield from self.registry_map[index_type]

    def find_name(self, index_type: typing.Type[indices.SchemaID],
                  name: str) -> typing.Optional[indices.SchemaID]:
        """Return the index the name is allocated to, if any."""
        index = self.name_allocator_stack_map[index_type].get(name)
        if index is None or self.is_pending_deletion(index):
            return None
        return index

    @abc.abstractmethod
    def allocate_name(self, name: str, index: indices.SchemaID) -> None:
        """Assign a name to an index."""
        raise NotImplementedError()
