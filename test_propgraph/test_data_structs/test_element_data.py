import copy
from unittest import TestCase

from propgraph.data_structs.element_data import EdgeData, IndexData, PropertyKeyData, \
    PropertyOccurrence, VertexData
from propgraph.data_types.indices import EdgeID, EdgeLabelID, IndexID, PropertyKeyID, VertexID, \
    VertexLabelID
from propgraph.data_types.typedefs import Cardinality, Direction, IndexKind

NAME = PropertyKeyID(0)
AGE = PropertyKeyID(1)
SINCE = PropertyKeyID(2)


class TestPropertyOccurrence(TestCase):

    def test_meta(self):
        occurrence = PropertyOccurrence('x')
        self.assertIsNone(occurrence.get_meta(SINCE))
        self.assertEqual('never', occurrence.get_meta(SINCE, 'never'))
        updated = occurrence.with_meta(SINCE, 'today')
        self.assertEqual('today', updated.get_meta(SINCE))
        self.assertEqual((), occurrence.meta)  # Occurrences are immutable
        replaced = updated.with_meta(SINCE, 'yesterday')
        self.assertEqual(((SINCE, 'yesterday'),), replaced.meta)
        self.assertEqual((), replaced.with_meta(SINCE, None).meta)


class TestSchemaData(TestCase):

    def test_property_key(self):
        data = PropertyKeyData(NAME, 'name', str, Cardinality.SET)
        self.assertEqual('name', data.name)
        self.assertIs(str, data.data_type)
        self.assertIs(Cardinality.SET, data.cardinality)
        with self.assertRaises(TypeError):
            PropertyKeyData(AGE, 'age', list)

    def test_index_definition(self):
        data = IndexData(IndexID(0), 'byName', IndexKind.COMPOSITE, [NAME], unique=True)
        self.assertEqual((NAME,), data.keys)
        self.assertTrue(data.unique)
        self.assertIs(VertexID, data.element_type)
        self.assertIsNone(data.relation_type)
        with self.assertRaises(ValueError):
            IndexData(IndexID(1), 'empty', IndexKind.COMPOSITE, [])
        with self.assertRaises(ValueError):
            IndexData(IndexID(2), 'uniqueEdges', IndexKind.EDGE, [NAME], unique=True,
                      relation_type=EdgeLabelID(0))
        edge_index = IndexData(IndexID(3), 'knowsBySince', IndexKind.EDGE, [SINCE],
                               relation_type=EdgeLabelID(0), direction=Direction.OUT)
        self.assertIs(Direction.OUT, edge_index.direction)
        self.assertEqual(EdgeLabelID(0), edge_index.relation_type)


class TestVertexData(TestCase):

    def setUp(self) -> None:
        self.vertex = VertexData(VertexID(0), VertexLabelID(0))
        self.vertex.properties[NAME] = [PropertyOccurrence('a'), PropertyOccurrence('b')]
        self.vertex.properties[AGE] = [PropertyOccurrence(3)]
        self.vertex.outbound.add(EdgeID(0))
        self.vertex.inbound.add(EdgeID(1))

    def test_values(self):
        self.assertEqual(['a', 'b'], self.vertex.values(NAME))
        self.assertEqual([], self.vertex.values(SINCE))
        self.assertEqual({NAME, AGE}, set(self.vertex.iter_property_keys()))

    def test_key_tuples(self):
        self.assertEqual({('a', 3), ('b', 3)}, set(self.vertex.key_tuples([NAME, AGE])))
        # Nothing is produced if a key is missing.
        self.assertEqual([], list(self.vertex.key_tuples([NAME, SINCE])))

    def test_incident(self):
        self.assertEqual({EdgeID(0)}, self.vertex.incident(Direction.OUT))
        self.assertEqual({EdgeID(1)}, self.vertex.incident(Direction.IN))
        self.assertEqual({EdgeID(0), EdgeID(1)}, self.vertex.incident(Direction.BOTH))

    def test_copy_is_independent(self):
        duplicate = copy.copy(self.vertex)
        duplicate.properties[NAME].append(PropertyOccurrence('c'))
        duplicate.outbound.add(EdgeID(5))
        self.assertEqual(['a', 'b'], self.vertex.values(NAME))
        self.assertNotIn(EdgeID(5), self.vertex.outbound)
        self.assertEqual(self.vertex.index, duplicate.index)
        self.assertEqual(self.vertex.label, duplicate.label)


class TestEdgeData(TestCase):

    def test_edge(self):
        edge = EdgeData(EdgeID(0), EdgeLabelID(0), VertexID(1), VertexID(2))
        self.assertEqual(VertexID(2), edge.other_end(VertexID(1)))
        self.assertEqual(VertexID(1), edge.other_end(VertexID(2)))
        self.assertEqual([], edge.values(SINCE))
        edge.properties[SINCE] = 'today'
        self.assertEqual(['today'], edge.values(SINCE))
        duplicate = copy.copy(edge)
        duplicate.properties[SINCE] = 'tomorrow'
        self.assertEqual('today', edge.properties[SINCE])
