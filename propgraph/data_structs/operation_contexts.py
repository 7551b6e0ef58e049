"""Context managers for safely interacting with DataInterface contents. These classes ensure that
the appropriate locks are held and data constraints are met whenever the store or a transaction
touches its data. They also serve as convenient generalizations across element types for the
operations that need to be performed on them."""

import abc
import copy
import typing

from propgraph.data_structs import element_data
from propgraph.data_types import exceptions
from propgraph.data_types import indices

if typing.TYPE_CHECKING:
    from propgraph.data_structs import interface


PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)


def _not_found(index: indices.PersistentDataID) -> exceptions.NotFoundError:
    return exceptions.NotFoundError(index)


def _acquire(data: 'interface.DataInterface', index: indices.PersistentDataID, write: bool = False):
    access = data.access(index)
    try:
        if write:
            access.acquire_write()
        else:
            access.acquire_read()
    except exceptions.ConflictError as error:
        data.abort(error)
        raise


class Adding(typing.Generic[PersistentIDType]):
    """Context manager for adding an element to the store or a transaction."""

    def __init__(self, data: 'interface.DataInterface', index_type: typing.Type[PersistentIDType],
                 *args, **kwargs):
        self._data = data
        self._index_type = index_type
        self._element_data: typing.Optional[element_data.ElementData[PersistentIDType]] = None
        self._args = args
        self._kwargs = kwargs

    def _begin(self):
        assert self._element_data is None
        index = self._data.id_allocator_map[self._index_type].new_id()
        self._element_data = self._data.element_type_map[self._index_type](index, *self._args,
                                                                           **self._kwargs)

    def _commit(self):
        assert self._element_data
        with self._data.registry_lock:
            registry = self._data.registry_map[self._index_type]
            assert self._element_data.index not in registry
            access = self._data.access_map[self._index_type]
            assert self._element_data.index not in access
            # Register a copy, so that a caller who holds on to the data returned by the context
            # manager can't affect the registry through it.
            registry[self._element_data.index] = copy.copy(self._element_data)
            access[self._element_data.index] = self._data.new_access(self._element_data.index)
        self._element_data = None

    def _rollback(self):
        self._element_data = None

    def __enter__(self) -> 'element_data.ElementData[PersistentIDType]':
        self._begin()
        assert self._element_data is not None
        return self._element_data

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self._commit()
        else:
            self._rollback()


class Reading(typing.Generic[PersistentIDType]):
    """Context manager for gaining read access to an element using index lookup."""

    def __init__(self, data: 'interface.DataInterface', index: PersistentIDType):
        self._data = data
        self._index = index
        self._element_data: typing.Optional[element_data.ElementData] = None

    def __enter__(self) -> 'element_data.ElementData[PersistentIDType]':
        with self._data.registry_lock:
            if self._data.is_pending_deletion(self._index):
                raise _not_found(self._index)
            try:
                _acquire(self._data, self._index)
            except KeyError:
                raise _not_found(self._index) from None
            registry_entry = self._data.registry_stack_map[type(self._index)][self._index]
        self._element_data = registry_entry
        # Changes to the returned copy have no lasting effect.
        return copy.copy(registry_entry)

    def __exit__(self, exc_type, exc_val, exc_tb):
        assert self._element_data is not None
        with self._data.registry_lock:
            self._data.access(self._element_data.index).release_read()
        self._element_data = None


class Finding(typing.Generic[PersistentIDType]):
    """Context manager for gaining read access to a schema element using name lookup."""

    def __init__(self, data: 'interface.DataInterface', index_type: typing.Type[PersistentIDType],
                 name: str):
        self._data = data
        self._index_type = index_type
        self._name = name
        self._element_data = None

    def __enter__(self) -> typing.Optional[element_data.ElementData[PersistentIDType]]:
        assert self._element_data is None
        with self._data.registry_lock:
            index = self._data.find_name(self._index_type, self._name)
            if index is None:
                return None
            _acquire(self._data, index)
            registry_entry = self._data.registry_stack_map[self._index_type][index]
        self._element_data = registry_entry
        # Changes to the returned copy have no lasting effect.
        return copy.copy(registry_entry)

    def __exit__(self, exc_type, exc_val, exc_tb):
        # The element data is None if nothing was found with the given name.
        if self._element_data is not None:
            with self._data.registry_lock:
                self._data.access(self._element_data.index).release_read()
        self._element_data = None


class WriteAccessContextBase(typing.Generic[PersistentIDType], abc.ABC):
    """Base class for context managers for gaining write access to an element."""

    def __init__(self, data: 'interface.DataInterface', index: PersistentIDType):
        assert index is not None
        self._data = data
        self._index = index
        self._temporary_element_data: typing.Optional[element_data.ElementData] = None

    @abc.abstractmethod
    def _early_validation(self):
        """Perform early checks to verify that the requested access can be granted. Raise an
        exception if access should not be granted."""
        raise NotImplementedError()

    @abc.abstractmethod
    def _do_commit(self):
        """Apply the actual change to the underlying data."""
        raise NotImplementedError()

    def _begin(self):
        with self._data.registry_lock:
            if self._data.is_pending_deletion(self._index):
                raise _not_found(self._index)
            self._early_validation()
            registered = self._data.registry_stack_map[type(self._index)].get(self._index, None)
            if registered is None:
                raise _not_found(self._index)
            _acquire(self._data, self._index, write=True)
            # Copy-on-write: the registered object is never modified. If the data lives in the
            # store and not the transaction, the copy is written to the transaction on commit,
            # while the store-level write lock keeps anyone else from modifying the original
            # until the transaction terminates.
            temporary_data = copy.copy(registered)
        assert isinstance(temporary_data, element_data.ElementData)
        self._temporary_element_data = temporary_data

    def _commit(self):
        assert self._temporary_element_data is not None
        with self._data.registry_lock:
            access = self._data.access(self._index)
            self._do_commit()
            access.release_write()
        self._temporary_element_data = None

    def _rollback(self):
        assert self._temporary_element_data is not None
        # Just release the write lock and discard the changes.
        with self._data.registry_lock:
            self._data.access(self._index).release_write()
        self._temporary_element_data = None

    def __enter__(self) -> 'element_data.ElementData[PersistentIDType]':
        self._begin()
        assert self._temporary_element_data is not None
        return self._temporary_element_data

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self._commit()
        else:
            self._rollback()


class Updating(WriteAccessContextBase[PersistentIDType]):
    """Context manager for gaining update (modify) access to an element."""

    def _early_validation(self):
        if not isinstance(self._index, indices.ElementID):
            raise exceptions.SchemaError("Schema elements are immutable: %r" % (self._index,))

    def _do_commit(self):
        # Whether it's a transaction or the store, the new version replaces the old one in the
        # local registry. Register a copy so that a caller who holds on to the data returned by
        # the context manager can't affect the registry through it.
        self._data.registry_map[type(self._index)][self._index] = \
            copy.copy(self._temporary_element_data)


class Removing(WriteAccessContextBase[PersistentIDType]):
    """Context manager for gaining remove access to an element."""

    def _early_validation(self):
        if not isinstance(self._index, indices.ElementID):
            raise exceptions.SchemaError("Schema elements cannot be removed: %r" % (self._index,))

    def _do_commit(self):
        registry = self._data.registry_map[type(self._index)]
        if self._index in registry:
            del registry[self._index]
        if self._data.pending_deletion_map is None:
            # For the store only, the access manager goes away with the element.
            del self._data.access_map[type(self._index)][self._index]
        else:
            # For transactions only, the removal is recorded, to prevent pass-through to the
            # store in future operations.
            self._data.pending_deletion_map[type(self._index)].add(self._index)
