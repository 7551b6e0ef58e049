import contextlib
import threading
from unittest import TestCase

from propgraph.data_types.data_access import StoreAccessManager
from propgraph.data_types.exceptions import ConflictError, InvalidThreadError
from propgraph.data_types.indices import VertexID


def threaded_call(callback, *args, **kwargs):
    """Call the function in another thread. After the other thread finishes, return the result or
    raise the exception in the original thread. Basically we are just pretending this is
    multi-threaded so we can test code that looks at thread context."""
    thread_result = thread_error = None

    def catch(*args, **kwargs):
        nonlocal thread_result, thread_error
        try:
            thread_result = callback(*args, **kwargs)
        except BaseException as e:
            thread_error = e

    thread = threading.Thread(target=catch, args=args, kwargs=kwargs)
    thread.start()
    thread.join()
    if thread_error:
        raise thread_error
    else:
        return thread_result


@contextlib.contextmanager
def threaded_context(context):
    """Enter the context manager in another thread. Then return control to the original thread for
    the body of the with statement. Finally, when the with statement completes, exit the context
    from the other thread."""
    thread_error = yielded_value = None
    entered = threading.Event()
    done = threading.Event()

    def catch():
        nonlocal thread_error, yielded_value
        try:
            with context as yielded_value:
                entered.set()
                done.wait()
        except BaseException as e:
            thread_error = e
        finally:
            entered.set()

    secondary_thread = threading.Thread(target=catch)
    secondary_thread.start()
    entered.wait()
    if thread_error:
        secondary_thread.join()
        raise thread_error

    try:
        yield yielded_value
    finally:
        done.set()
        secondary_thread.join()
        if thread_error:
            raise thread_error


class TestStoreAccessManager(TestCase):

    def test_read_lock(self):
        manager = StoreAccessManager(VertexID(0))
        with manager.read_lock:
            self.assertTrue(manager.is_read_locked)
            with manager.read_lock:  # Nested read locks work
                pass
            with manager.write_lock:  # Write lock works if only this thread holds read lock
                pass
            # We can also acquire a read lock in another thread while we hold one
            threaded_call(manager.acquire_read)
            with self.assertRaises(ConflictError):
                # But a write lock request fails if there are multiple readers
                threaded_call(manager.acquire_write)
            with self.assertRaises(ConflictError):
                manager.acquire_write()

    def test_write_lock(self):
        manager = StoreAccessManager(VertexID(0))
        with manager.write_lock:  # We don't have to hold a read lock to acquire a write lock
            self.assertTrue(manager.is_write_locked)
            self.assertIs(manager.write_locked_by, threading.current_thread())
            with self.assertRaises(ConflictError):
                with manager.read_lock:  # We can't read while we are writing
                    pass
            with self.assertRaises(ConflictError):
                with manager.write_lock:  # Nested write locks don't work
                    pass
            with self.assertRaises(ConflictError):
                threaded_call(manager.acquire_read)  # Other threads can't read if we are writing
            with self.assertRaises(ConflictError):
                threaded_call(manager.acquire_write)  # Other threads can't write if we are writing
        self.assertFalse(manager.is_write_locked)
        threaded_call(manager.acquire_write)  # Other threads can do stuff once we are done

    def test_conflicts_are_retryable(self):
        manager = StoreAccessManager(VertexID(0))
        manager.acquire_write()
        with self.assertRaises(ConflictError) as context:
            threaded_call(manager.acquire_read)
        self.assertTrue(context.exception.retryable)

    def test_release_without_lock(self):
        manager = StoreAccessManager(VertexID(0))
        with self.assertRaises(AssertionError):
            manager.release_read()
        with self.assertRaises(AssertionError):
            manager.release_write()


class TestTransactionAccessManager(TestCase):

    def test_store_read_lock_held_until_release(self):
        store_manager = StoreAccessManager(VertexID(0))
        manager = store_manager.get_transaction_level_manager()
        self.assertEqual(VertexID(0), manager.index)
        with manager.read_lock:
            self.assertTrue(manager.is_read_locked)
            self.assertTrue(store_manager.is_read_locked)
        # The virtual lock is released, but the store lock is kept for the transaction.
        self.assertFalse(manager.is_read_locked)
        self.assertTrue(manager.store_read_lock_held)
        self.assertTrue(store_manager.is_read_locked)
        with self.assertRaises(ConflictError):
            threaded_call(store_manager.acquire_write)
        manager.release_store_locks()
        self.assertFalse(store_manager.is_read_locked)
        threaded_call(store_manager.acquire_write)

    def test_store_write_lock_held_until_release(self):
        store_manager = StoreAccessManager(VertexID(0))
        manager = store_manager.get_transaction_level_manager()
        with manager.write_lock:
            with self.assertRaises(ConflictError):
                manager.acquire_write()
            # Reading after writing reuses the store write lock.
            with manager.read_lock:
                pass
        self.assertTrue(manager.store_write_lock_held)
        self.assertTrue(store_manager.is_write_locked)
        with self.assertRaises(ConflictError):
            threaded_call(store_manager.acquire_read)
        manager.release_store_locks()
        self.assertFalse(store_manager.is_write_locked)

    def test_read_then_write_upgrades(self):
        store_manager = StoreAccessManager(VertexID(0))
        manager = store_manager.get_transaction_level_manager()
        with manager.read_lock:
            with manager.write_lock:
                self.assertTrue(store_manager.is_write_locked)
        manager.release_store_locks()
        self.assertFalse(store_manager.is_read_locked)
        self.assertFalse(store_manager.is_write_locked)

    def test_release_from_other_thread(self):
        store_manager = StoreAccessManager(VertexID(0))
        manager = store_manager.get_transaction_level_manager()
        with manager.read_lock:
            pass
        with self.assertRaises(InvalidThreadError):
            threaded_call(manager.release_store_locks)
        manager.release_store_locks()

    def test_release_while_locked(self):
        store_manager = StoreAccessManager(VertexID(0))
        manager = store_manager.get_transaction_level_manager()
        manager.acquire_read()
        with self.assertRaises(AssertionError):
            manager.release_store_locks()
        manager.release_read()
        manager.release_store_locks()
