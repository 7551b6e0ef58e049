from unittest import TestCase

from propgraph.data_structs.element_data import PropertyOccurrence, VertexData
from propgraph.data_structs.store_data import StoreData
from propgraph.data_types.exceptions import ConflictError, NotFoundError, SchemaError
from propgraph.data_types.indices import PropertyKeyID, VertexID, VertexLabelID
from test_propgraph.test_data_types.test_data_access import threaded_call, threaded_context


class TestOperationContexts(TestCase):

    def setUp(self) -> None:
        self.data = StoreData()
        with self.data.add(VertexLabelID, 'person') as label_data:
            self.label_id = label_data.index
        with self.data.registry_lock:
            self.data.allocate_name('person', self.label_id)
        with self.data.add(VertexID, self.label_id) as vertex_data:
            self.vertex_id = vertex_data.index

    def test_adding(self):
        with self.data.add(VertexID, self.label_id) as vertex_data:
            self.assertIsInstance(vertex_data, VertexData)
            index = vertex_data.index
        self.assertIn(index, self.data.registry_map[VertexID])
        with self.data.registry_lock:
            self.assertIn(index, self.data.access_map[VertexID])

    def test_adding_rolled_back(self):
        with self.assertRaises(RuntimeError):
            with self.data.add(VertexID, self.label_id) as vertex_data:
                index = vertex_data.index
                raise RuntimeError()
        self.assertNotIn(index, self.data.registry_map[VertexID])

    def test_reading(self):
        with self.data.read(self.vertex_id) as vertex_data:
            self.assertEqual(self.vertex_id, vertex_data.index)
            with self.data.registry_lock:
                self.assertTrue(self.data.access(self.vertex_id).is_read_locked)
            # Readers in other threads are not blocked, but writers are.
            threaded_call(lambda: self.data.read(self.vertex_id).__enter__())
            with self.assertRaises(ConflictError):
                threaded_call(lambda: self.data.update(self.vertex_id).__enter__())

    def test_reading_missing(self):
        with self.assertRaises(NotFoundError):
            with self.data.read(VertexID(100)):
                pass

    def test_reading_returns_copy(self):
        with self.data.read(self.vertex_id) as vertex_data:
            vertex_data.properties[PropertyKeyID(0)] = [PropertyOccurrence('x')]
        self.assertEqual({}, self.data.registry_map[VertexID][self.vertex_id].properties)

    def test_updating_is_copy_on_write(self):
        original = self.data.registry_map[VertexID][self.vertex_id]
        with self.data.update(self.vertex_id) as vertex_data:
            vertex_data.properties[PropertyKeyID(0)] = [PropertyOccurrence('x')]
            self.assertEqual({}, original.properties)
        updated = self.data.registry_map[VertexID][self.vertex_id]
        self.assertIsNot(original, updated)
        self.assertEqual(['x'], updated.values(PropertyKeyID(0)))
        self.assertEqual({}, original.properties)

    def test_updating_rolled_back(self):
        with self.assertRaises(RuntimeError):
            with self.data.update(self.vertex_id) as vertex_data:
                vertex_data.properties[PropertyKeyID(0)] = [PropertyOccurrence('x')]
                raise RuntimeError()
        self.assertEqual({}, self.data.registry_map[VertexID][self.vertex_id].properties)
        # The write lock was released.
        with self.data.update(self.vertex_id):
            pass

    def test_updating_while_written_elsewhere(self):
        with threaded_context(self.data.update(self.vertex_id)):
            with self.assertRaises(ConflictError):
                with self.data.update(self.vertex_id):
                    pass
            with self.assertRaises(ConflictError):
                with self.data.read(self.vertex_id):
                    pass

    def test_schema_is_immutable(self):
        with self.assertRaises(SchemaError):
            with self.data.update(self.label_id):
                pass
        with self.assertRaises(SchemaError):
            with self.data.remove(self.label_id):
                pass

    def test_finding(self):
        with self.data.find(VertexLabelID, 'person') as label_data:
            self.assertEqual(self.label_id, label_data.index)
        with self.data.find(VertexLabelID, 'nobody') as label_data:
            self.assertIsNone(label_data)

    def test_removing(self):
        with self.data.remove(self.vertex_id):
            pass
        self.assertNotIn(self.vertex_id, self.data.registry_map[VertexID])
        with self.assertRaises(NotFoundError):
            with self.data.read(self.vertex_id):
                pass

    def test_removing_rolled_back(self):
        with self.assertRaises(RuntimeError):
            with self.data.remove(self.vertex_id):
                raise RuntimeError()
        self.assertIn(self.vertex_id, self.data.registry_map[VertexID])
