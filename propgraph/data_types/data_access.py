"""Locking-related classes for managing concurrent access to the data of individual elements.

Locks are never waited on. A request that cannot be granted immediately raises a ConflictError,
which aborts the requesting transaction. All lock state changes happen while the store's registry
lock is held, so the managers themselves need no synchronization of their own."""

import abc
import threading
import typing

from propgraph.data_types import exceptions

if typing.TYPE_CHECKING:
    from propgraph.data_types import indices


class AccessLock:
    """A context manager for acquiring and releasing a lock."""

    def __init__(self, enter, leave):
        self.enter = enter
        self.leave = leave

    def __enter__(self) -> 'AccessLock':
        self.enter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.leave()


class AccessManagerInterface(abc.ABC):
    """Interface for managers of read and write access to a data element."""

    @property
    def read_lock(self) -> AccessLock:
        """A context manager for automatically acquiring and releasing the element's read lock.
        Read locks are non-exclusive with each other, but cannot be held at the same time that
        another thread holds a write lock."""
        return AccessLock(self.acquire_read, self.release_read)

    @property
    def write_lock(self) -> AccessLock:
        """A context manager for automatically acquiring and releasing the element's write lock.
        Write locks are exclusive."""
        return AccessLock(self.acquire_write, self.release_write)

    @property
    @abc.abstractmethod
    def index(self) -> 'indices.PersistentDataID':
        """The index of the data element whose access is being managed."""
        raise NotImplementedError()

    @property
    @abc.abstractmethod
    def is_read_locked(self) -> bool:
        raise NotImplementedError()

    @property
    @abc.abstractmethod
    def is_write_locked(self) -> bool:
        raise NotImplementedError()

    @abc.abstractmethod
    def acquire_read(self):
        """Acquire a read lock on the element for the current thread."""
        raise NotImplementedError()

    @abc.abstractmethod
    def release_read(self):
        """Release a read lock on the element for the current thread."""
        raise NotImplementedError()

    @abc.abstractmethod
    def acquire_write(self):
        """Acquire a write lock on the element for the current thread."""
        raise NotImplementedError()

    @abc.abstractmethod
    def release_write(self):
        """Release a write lock on the element for the current thread."""
        raise NotImplementedError()


class StoreAccessManager(AccessManagerInterface):
    """Manager for read and write access to a data element in the graph store. Locks are owned by
    threads; a thread's own read locks never block its write requests."""

    def __init__(self, index: 'indices.PersistentDataID'):
        self._index = index
        self._read_locked_by: typing.Dict[threading.Thread, int] = {}
        self._write_locked_by: typing.Optional[threading.Thread] = None

    def __repr__(self) -> str:
        return '%s(%r)' % (type(self).__name__, self._index)

    @property
    def index(self) -> 'indices.PersistentDataID':
        return self._index

    @property
    def is_read_locked(self) -> bool:
        return bool(self._read_locked_by)

    @property
    def is_write_locked(self) -> bool:
        return self._write_locked_by is not None

    @property
    def write_locked_by(self) -> typing.Optional[threading.Thread]:
        """The thread that owns the currently held write lock, if any."""
        return self._write_locked_by

    def get_transaction_level_manager(self) -> 'TransactionAccessManager':
        """Return a transaction-level access manager layered over this one."""
        return TransactionAccessManager(self)

    def acquire_read(self):
        if self._write_locked_by:
            raise exceptions.ConflictError("%r is being written by %s." %
                                           (self._index, self._write_locked_by.name))
        thread = threading.current_thread()
        self._read_locked_by[thread] = self._read_locked_by.get(thread, 0) + 1

    def release_read(self):
        thread = threading.current_thread()
        reads_held = self._read_locked_by.get(thread, 0)
        assert reads_held > 0, "%r is not read locked by %s." % (self._index, thread.name)
        if reads_held > 1:
            self._read_locked_by[thread] = reads_held - 1
        else:
            del self._read_locked_by[thread]

    def acquire_write(self):
        thread = threading.current_thread()
        if self._read_locked_by and (len(self._read_locked_by) > 1 or
                                     thread not in self._read_locked_by):
            raise exceptions.ConflictError("%r is being read by another thread." % (self._index,))
        if self._write_locked_by:
            raise exceptions.ConflictError("%r is being written by %s." %
                                           (self._index, self._write_locked_by.name))
        self._write_locked_by = thread

    def release_write(self):
        thread = threading.current_thread()
        assert self._write_locked_by is thread, \
            "%r is not write locked by %s." % (self._index, thread.name)
        self._write_locked_by = None


class TransactionAccessManager(AccessManagerInterface):
    """Manager for read and write access to a data element within a transaction.

    Sits on top of a store access manager and implements *virtual* locking on behalf of the
    transaction, while the corresponding lock in the store is held until the transaction commits
    or rolls back.
    """

    def __init__(self, store_manager: StoreAccessManager):
        self._store_manager = store_manager
        self._thread = threading.current_thread()
        self._read_locked = 0
        self._write_locked = False
        self._store_read_lock_held = False
        self._store_write_lock_held = False

    @property
    def index(self) -> 'indices.PersistentDataID':
        return self._store_manager.index

    @property
    def store_manager(self) -> StoreAccessManager:
        return self._store_manager

    @property
    def is_read_locked(self) -> bool:
        return self._read_locked > 0

    @property
    def is_write_locked(self) -> bool:
        return self._write_locked

    @property
    def store_read_lock_held(self) -> bool:
        return self._store_read_lock_held

    @property
    def store_write_lock_held(self) -> bool:
        return self._store_write_lock_held

    def release_store_locks(self) -> None:
        """Release whatever store-level locks the transaction acquired through this manager."""
        # Store locks are owned by threads, so they can only be released where they were taken.
        if threading.current_thread() is not self._thread:
            raise exceptions.InvalidThreadError(self.index)
        assert not self._write_locked, "%r is still write locked." % self.index
        assert self._read_locked == 0, "%r is still read locked." % self.index
        if self._store_write_lock_held:
            self._store_manager.release_write()
            self._store_write_lock_held = False
        if self._store_read_lock_held:
            self._store_manager.release_read()
            self._store_read_lock_held = False

    def acquire_read(self):
        if not (self._store_read_lock_held or self._store_write_lock_held):
            # The store-level lock is kept until the transaction terminates.
            self._store_manager.acquire_read()
            self._store_read_lock_held = True
        self._read_locked += 1

    def release_read(self):
        assert self._read_locked > 0, "%r is not read locked." % self.index
        self._read_locked -= 1

    def acquire_write(self):
        if self._write_locked:
            raise exceptions.ConflictError("%r is already being written." % (self.index,))
        if not self._store_write_lock_held:
            # The store-level lock is kept until the transaction terminates.
            self._store_manager.acquire_write()
            self._store_write_lock_held = True
        self._write_locked = True

    def release_write(self):
        assert self._write_locked, "%r is not write locked." % self.index
        self._write_locked = False
