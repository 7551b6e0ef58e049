import pickle
from unittest import TestCase

from propgraph.data_types.allocators import IndexAllocator, NameAllocator
from propgraph.data_types.exceptions import DuplicateIndexError, DuplicateNameError
from propgraph.data_types.indices import VertexID, EdgeID, PropertyKeyID
from test_propgraph.test_data_types.test_data_access import threaded_call


class TestIndexAllocator(TestCase):

    def test_index_type(self):
        allocator1 = IndexAllocator(VertexID)
        allocator2 = IndexAllocator(EdgeID)
        self.assertIs(allocator1.index_type, VertexID)
        self.assertIs(allocator2.index_type, EdgeID)

    def test_new_id(self):
        allocator = IndexAllocator(VertexID)
        index1 = allocator.new_id()
        self.assertIsInstance(index1, VertexID)
        index2 = allocator.new_id()
        self.assertIsInstance(index2, VertexID)
        self.assertNotEqual(index1, index2)

    def test_total_allocated(self):
        allocator = IndexAllocator(VertexID)
        self.assertEqual(allocator.total_allocated, 0)
        allocator.new_id()
        self.assertEqual(allocator.total_allocated, 1)
        allocator.new_id()
        self.assertEqual(allocator.total_allocated, 2)

    def test_skip_past(self):
        allocator = IndexAllocator(VertexID)
        allocator.skip_past(10)
        self.assertEqual(VertexID(11), allocator.new_id())
        allocator.skip_past(3)  # Never moves backwards
        self.assertEqual(VertexID(12), allocator.new_id())

    def test_pickle(self):
        allocator = IndexAllocator(VertexID)
        allocator.new_id()
        restored = pickle.loads(pickle.dumps(allocator))
        self.assertEqual(VertexID(1), restored.new_id())


class TestNameAllocator(TestCase):

    def test_key_type(self):
        allocator1 = NameAllocator(str, VertexID)
        allocator2 = NameAllocator(int, EdgeID)
        self.assertIs(allocator1.key_type, str)
        self.assertIs(allocator2.key_type, int)

    def test_index_type(self):
        allocator1 = NameAllocator(str, VertexID)
        allocator2 = NameAllocator(str, EdgeID)
        self.assertIs(allocator1.index_type, VertexID)
        self.assertIs(allocator2.index_type, EdgeID)

    def test_set_item(self):
        allocator = NameAllocator(str, VertexID)
        allocator['a'] = VertexID(0)
        self.assertEqual(VertexID(0), allocator.get_index('a'))
        self.assertEqual('a', allocator.get_key(VertexID(0)))

    def test_del_item(self):
        allocator = NameAllocator(str, VertexID)
        allocator.allocate('a', VertexID(0))
        allocator.allocate('b', VertexID(1))
        del allocator['a']
        self.assertEqual(1, len(allocator))
        self.assertEqual(['b'], list(allocator))

    def test_get_item(self):
        allocator = NameAllocator(str, VertexID)
        allocator.allocate('a', VertexID(0))
        self.assertEqual(VertexID(0), allocator['a'])
        self.assertIn('a', allocator)
        with self.assertRaises(KeyError):
            _index = allocator['b']

    def test_reserve(self):
        allocator = NameAllocator(str, VertexID)
        allocator.reserve('a', 'A')
        self.assertTrue(allocator.is_reserved('a'))
        self.assertEqual('A', allocator.reserved_by('a'))
        with self.assertRaises(DuplicateNameError):
            # Once it's reserved for one owner, another owner cannot reserve it.
            allocator.reserve('a', 'B')
        allocator.reserve('a', 'A')  # Multiple requests for the same reservation will succeed
        with self.assertRaises(DuplicateNameError):
            # Reservation blocks another owner from allocating it
            allocator.allocate('a', VertexID(0), 'B')
        with self.assertRaises(DuplicateNameError):
            # Reservation blocks an anonymous owner from allocating it
            allocator.allocate('a', VertexID(0))
        # Reservation does not block same owner from allocating it
        allocator.allocate('a', VertexID(0), 'A')
        self.assertFalse(allocator.is_reserved('a'))
        with self.assertRaises(DuplicateNameError):
            # When it's allocated, it cannot be reserved
            allocator.reserve('a', 'A')

    def test_cancel_all_reservations(self):
        allocator = NameAllocator(str, VertexID)
        allocator.reserve('a', 'A')
        allocator.reserve('b', 'A')
        allocator.reserve('c', 'B')
        allocator.cancel_all_reservations('A')
        allocator.reserve('a', 'B')
        allocator.reserve('b', 'B')
        with self.assertRaises(DuplicateNameError):
            allocator.reserve('c', 'A')  # Other owners are unaffected

    def test_allocate(self):
        allocator = NameAllocator(str, VertexID)
        allocator.allocate('a', VertexID(0))
        allocator.allocate('b', VertexID(1))  # Allocation succeeds for new name and new ID
        with self.assertRaises(DuplicateNameError):
            allocator.allocate('a', VertexID(2))  # Names must be unique
        with self.assertRaises(KeyError):
            allocator.allocate('c', VertexID(0))  # IDs must be unique
        allocator.allocate('a', VertexID(0))  # Identical repeat of existing allocation succeeds

    def test_duplicate_error_type(self):
        allocator = NameAllocator(str, PropertyKeyID, DuplicateIndexError)
        self.assertIs(DuplicateIndexError, allocator.duplicate_error)
        allocator.allocate('a', PropertyKeyID(0))
        with self.assertRaises(DuplicateIndexError):
            allocator.reserve('a', 'A')

    def test_deallocate(self):
        allocator = NameAllocator(str, VertexID)
        allocator.allocate('a', VertexID(0))
        self.assertEqual(VertexID(0), allocator.deallocate('a'))
        allocator.allocate('a', VertexID(1))  # Deallocated name can be reallocated
        allocator.allocate('b', VertexID(0))  # Deallocated ID can be reallocated
        with self.assertRaises(KeyError):
            allocator.deallocate('c')

    def test_update(self):
        allocator = NameAllocator(str, VertexID)
        allocator.allocate('a', VertexID(0))
        allocator.reserve('b', 'A')
        allocator.update({'b': VertexID(1), 'c': VertexID(2)}, 'A')
        self.assertEqual(VertexID(1), allocator['b'])
        self.assertEqual(VertexID(2), allocator['c'])
        self.assertFalse(allocator.is_reserved('b'))

    def test_update_without_owner(self):
        allocator = NameAllocator(str, VertexID)
        allocator.reserve('b', 'A')
        # Names nobody reserved are allocated without touching the reservations
        allocator.update({'a': VertexID(0), 'c': VertexID(2)})
        self.assertEqual(VertexID(0), allocator['a'])
        self.assertEqual(VertexID(2), allocator['c'])
        self.assertEqual('A', allocator.reserved_by('b'))
        self.assertFalse(allocator.is_reserved('a'))

    def test_update_is_all_or_nothing(self):
        allocator = NameAllocator(str, VertexID)
        allocator.allocate('a', VertexID(0))
        allocator.reserve('x', 'B')
        with self.assertRaises(DuplicateNameError):
            allocator.update({'b': VertexID(1), 'x': VertexID(2)}, 'A')
        self.assertNotIn('b', allocator)
        with self.assertRaises(DuplicateNameError):
            allocator.update({'c': VertexID(3), 'a': VertexID(4)})
        self.assertNotIn('c', allocator)
        with self.assertRaises(KeyError):
            # Two names cannot be assigned to the same index
            allocator.update({'d': VertexID(0)})
        self.assertEqual(1, len(allocator))

    def test_update_from_self(self):
        allocator = NameAllocator(str, VertexID)
        allocator.allocate('a', VertexID(0))
        allocator.update(allocator)
        self.assertEqual(VertexID(0), allocator['a'])
        self.assertEqual(1, len(allocator))

    def test_concurrent_reservations(self):
        allocator = NameAllocator(str, VertexID)
        allocator.reserve('a', 'A')
        with self.assertRaises(DuplicateNameError):
            threaded_call(allocator.reserve, 'a', 'B')

    def test_pickle_drops_reservations(self):
        allocator = NameAllocator(str, VertexID)
        allocator.allocate('a', VertexID(0))
        allocator.reserve('b', 'A')
        restored = pickle.loads(pickle.dumps(allocator))
        self.assertEqual(VertexID(0), restored['a'])
        self.assertEqual('a', restored.get_key(VertexID(0)))
        self.assertFalse(restored.is_reserved('b'))

    def test_clear(self):
        allocator = NameAllocator(str, VertexID)
        allocator.allocate('a', VertexID(0))
        allocator.reserve('c', 'C')
        allocator.clear()
        allocator.allocate('a', VertexID(1))  # After clear, all names are no longer allocated
        allocator.allocate('b', VertexID(0))  # After clear, all indices are no longer allocated
        allocator.allocate('c', VertexID(2), 'A')  # After clear, all reservations are canceled
