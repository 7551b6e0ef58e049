import pickle
from unittest import TestCase

from propgraph.data_types import indices


class TestUniqueID(TestCase):

    def test_equality_respects_type(self):
        self.assertEqual(indices.VertexID(1), indices.VertexID(1))
        self.assertNotEqual(indices.VertexID(1), indices.EdgeID(1))
        self.assertNotEqual(indices.VertexID(1), 1)
        self.assertTrue(indices.VertexID(1) != indices.EdgeID(1))

    def test_hash(self):
        mapping = {indices.VertexID(1): 'vertex'}
        self.assertEqual('vertex', mapping[indices.VertexID(1)])
        self.assertNotIn(indices.EdgeID(1), mapping)

    def test_ordering(self):
        self.assertEqual([indices.VertexID(1), indices.VertexID(2), indices.VertexID(3)],
                         sorted([indices.VertexID(3), indices.VertexID(1), indices.VertexID(2)]))

    def test_repr(self):
        self.assertEqual('VertexID(5)', repr(indices.VertexID(5)))

    def test_pickle(self):
        index = indices.IndexID(7)
        restored = pickle.loads(pickle.dumps(index))
        self.assertIsInstance(restored, indices.IndexID)
        self.assertEqual(index, restored)

    def test_type_groups(self):
        for index_type in indices.NAMED_ID_TYPES:
            self.assertTrue(issubclass(index_type, indices.SchemaID))
            self.assertIn(index_type, indices.PERSISTENT_ID_TYPES)
        for index_type in (indices.VertexID, indices.EdgeID):
            self.assertTrue(issubclass(index_type, indices.ElementID))
            self.assertNotIn(index_type, indices.NAMED_ID_TYPES)
        # Schema is applied before the elements that use it.
        self.assertLess(indices.PERSISTENT_ID_TYPES.index(indices.PropertyKeyID),
                        indices.PERSISTENT_ID_TYPES.index(indices.VertexID))
