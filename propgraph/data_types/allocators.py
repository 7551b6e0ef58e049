import threading
import typing

from propgraph.data_types import exceptions

KeyType = typing.TypeVar('KeyType', bound=typing.Hashable)
IndexType = typing.TypeVar('IndexType', bound=int)


class IndexAllocator(typing.Generic[IndexType]):
    """Generates unique IDs of a given integer type. Thread-safe."""

    def __init__(self, index_type: typing.Type[IndexType]):
        self._next_id = 0
        self._index_type = index_type
        self._lock = threading.Lock()

    def __getstate__(self):
        return self._next_id, self._index_type

    def __setstate__(self, state):
        self._next_id, self._index_type = state
        self._lock = threading.Lock()

    @property
    def index_type(self) -> typing.Type[IndexType]:
        return self._index_type

    @property
    def total_allocated(self) -> int:
        return self._next_id

    def new_id(self) -> IndexType:
        with self._lock:
            allocated_id = self._next_id
            self._next_id += 1
        return self._index_type(allocated_id)

    def skip_past(self, index: int) -> None:
        """Make sure the index is never handed out, e.g. after replaying an externally created
        element."""
        with self._lock:
            self._next_id = max(self._next_id, int(index) + 1)


class NameAllocator(typing.Generic[KeyType, IndexType], typing.MutableMapping[KeyType, IndexType]):
    """Assigns names to indices in a guaranteed one-to-one mapping. A name can be reserved by an
    owner (a transaction) before it is allocated, which keeps other owners from claiming it in the
    meantime. Thread-safe."""

    def __init__(self, key_type: typing.Type[KeyType], index_type: typing.Type[IndexType],
                 duplicate_error: typing.Type[exceptions.DuplicateNameError] =
                 exceptions.DuplicateNameError):
        self._key_type = key_type
        self._index_type = index_type
        self._duplicate_error = duplicate_error
        self._key_map: typing.Dict[KeyType, IndexType] = {}
        self._index_map: typing.Dict[IndexType, KeyType] = {}
        self._reserved: typing.Dict[KeyType, typing.Any] = {}
        self._lock = threading.Lock()

    def __getstate__(self):
        # Reservations belong to live transactions and are never persisted.
        return self._key_type, self._index_type, self._duplicate_error, self._key_map

    def __setstate__(self, state):
        self._key_type, self._index_type, self._duplicate_error, self._key_map = state
        self._index_map = {index: key for key, index in self._key_map.items()}
        self._reserved = {}
        self._lock = threading.Lock()

    @property
    def key_type(self) -> typing.Type[KeyType]:
        return self._key_type

    @property
    def index_type(self) -> typing.Type[IndexType]:
        return self._index_type

    @property
    def duplicate_error(self) -> typing.Type[exceptions.DuplicateNameError]:
        return self._duplicate_error

    def __setitem__(self, key: KeyType, index: IndexType) -> None:
        self.allocate(key, index)

    def __delitem__(self, key: KeyType) -> None:
        self.deallocate(key)

    def __getitem__(self, key: KeyType) -> IndexType:
        index = self.get_index(key)
        if index is None:
            raise KeyError(key)
        return index

    def __contains__(self, key: object) -> bool:
        return key in self._key_map

    def __len__(self) -> int:
        return len(self._key_map)

    def __iter__(self) -> typing.Iterator[KeyType]:
        return iter(self._key_map)

    def is_reserved(self, key: KeyType) -> bool:
        return key in self._reserved

    def reserved_by(self, key: KeyType) -> typing.Any:
        return self._reserved.get(key, None)

    def reserve(self, key: KeyType, owner: typing.Any) -> None:
        with self._lock:
            if self._reserved.get(key, owner) is not owner:
                raise self._duplicate_error("Name %r is already reserved." % (key,))
            if key in self._key_map:
                raise self._duplicate_error("Name %r is already allocated." % (key,))
            self._reserved[key] = owner

    def cancel_all_reservations(self, owner: typing.Any) -> None:
        with self._lock:
            keys = [key for key, reservation_owner in self._reserved.items()
                    if reservation_owner is owner]
            for key in keys:
                del self._reserved[key]

    def allocate(self, key: KeyType, index: IndexType, owner: typing.Any = None) -> None:
        with self._lock:
            if self._reserved.get(key, owner) is not owner:
                raise self._duplicate_error("Name %r is already reserved." % (key,))
            if self._key_map.get(key, index) != index:
                raise self._duplicate_error("Name %r is already allocated." % (key,))
            if self._index_map.get(index, key) != key:
                raise KeyError("Index %r is already named." % (index,))
            self._reserved.pop(key, None)
            self._key_map[key] = index
            self._index_map[index] = key

    def deallocate(self, key: KeyType) -> IndexType:
        with self._lock:
            if key not in self._key_map:
                raise KeyError("Name %r is not allocated." % (key,))
            index = self._key_map.pop(key)
            del self._index_map[index]
        return index

    def get_index(self, key: KeyType) -> typing.Optional[IndexType]:
        return self._key_map.get(key, None)

    def get_key(self, index: IndexType) -> typing.Optional[KeyType]:
        return self._index_map.get(index, None)

    def update(self, other: typing.Mapping[KeyType, IndexType], owner: typing.Any = None) -> None:
        """Allocate every name in the other mapping at once, releasing the owner's reservations of
        them. Either all names are allocated or, if any of them conflicts, none are."""
        if other is self:
            return
        with self._lock:
            for key, index in other.items():
                if self._reserved.get(key, owner) is not owner:
                    raise self._duplicate_error("Name %r is already reserved." % (key,))
                if self._key_map.get(key, index) != index:
                    raise self._duplicate_error("Name %r is already allocated." % (key,))
            updated_keys = self._key_map.copy()
            updated_keys.update(other)
            updated_indices = {index: key for key, index in updated_keys.items()}
            if len(updated_keys) != len(updated_indices):
                raise KeyError("Two or more names would be assigned to the same index.")
            for key in other:
                if key in self._reserved and self._reserved[key] is owner:
                    del self._reserved[key]
            self._key_map = updated_keys
            self._index_map = updated_indices

    def clear(self) -> None:
        with self._lock:
            self._key_map.clear()
            self._index_map.clear()
            self._reserved.clear()
