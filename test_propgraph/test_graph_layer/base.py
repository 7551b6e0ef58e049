from typing import Type
from unittest import TestCase, SkipTest

from propgraph import config
from propgraph.data_types.exceptions import NotFoundError
from propgraph.data_types.indices import EdgeID, VertexID
from propgraph.data_types.typedefs import Cardinality, Multiplicity
from propgraph.graph_layer.connections import GraphDBConnection
from propgraph.graph_layer.elements import Edge, Vertex
from propgraph.graph_layer.graph_db import GraphDB
from propgraph.graph_layer.interface import GraphDBInterface

# Long enough to never fire in a healthy run, short enough to fail a hung one.
WAIT = 10.0


class GraphDBTestCase(TestCase):
    """Base class for test cases that need an open database, pre-populated with a small graph:

        (source:person {name: 'source'}) -[knows {since: 'before'}]-> (sink:person {name: 'sink'})
    """

    settings = config.StoreSettings(partitions=2, index_workers=2)

    def setUp(self) -> None:
        self.db = GraphDB(self.settings)
        self.addCleanup(self.db.close)

        with self.db.connect() as connection:
            source = connection.add_vertex('person', name='source')
            sink = connection.add_vertex('person', name='sink')
            edge = connection.add_edge('knows', source, sink, since='before')
        self.source_id: VertexID = source.index
        self.sink_id: VertexID = sink.index
        self.edge_id: EdgeID = edge.index

    def connect(self) -> GraphDBConnection:
        connection = self.db.connect()
        self.addCleanup(connection.close)
        return connection


class GraphDBInterfaceTestCase(GraphDBTestCase):
    """Tests shared by the database and its connections. Subclasses name the interface type to
    run them against."""

    graph_db_interface_subclass: Type[GraphDBInterface]

    @classmethod
    def setUpClass(cls) -> None:
        if cls.__name__.startswith('GraphDBInterface') and cls.__name__.endswith('TestCase'):
            raise SkipTest("Test case abstract base class %s ignored." % cls.__name__)
        assert hasattr(cls, 'graph_db_interface_subclass'), \
            "You need to define graph_db_interface_subclass in your unit test class %s" % \
            cls.__qualname__

    def setUp(self) -> None:
        super().setUp()
        if self.graph_db_interface_subclass is GraphDB:
            self.interface = self.db
        else:
            assert self.graph_db_interface_subclass is GraphDBConnection
            self.interface = self.connect()

    def test_repr(self):
        result = repr(self.interface)
        self.assertIsInstance(result, str)
        self.assertTrue(result)

    def test_vertices(self):
        self.assertEqual([self.source_id, self.sink_id],
                         [vertex.index for vertex in self.interface.vertices()])

    def test_get_vertex(self):
        with self.assertRaises(NotFoundError):
            self.interface.get_vertex(10 ** 6)
        with self.assertRaises(KeyError):
            self.interface.get_vertex(VertexID(10 ** 6))
        vertex = self.interface.get_vertex(self.source_id)
        self.assertIsInstance(vertex, Vertex)
        self.assertEqual(self.source_id, vertex.index)
        self.assertEqual(vertex, self.interface.get_vertex(int(self.source_id)))

    def test_add_vertex(self):
        vertex = self.interface.add_vertex('person', name='new')
        self.assertIsInstance(vertex, Vertex)
        self.assertTrue(vertex.exists())
        self.assertEqual('person', vertex.label.name)
        self.assertEqual('new', vertex['name'])
        self.assertIn(vertex, self.interface.vertices())

    def test_add_vertex_default_label(self):
        vertex = self.interface.add_vertex()
        self.assertEqual('vertex', vertex.label.name)
        self.assertEqual([], vertex.keys())

    def test_find_vertices(self):
        self.assertEqual([self.sink_id],
                         [vertex.index for vertex in
                          self.interface.find_vertices('person', name='sink')])
        self.assertEqual([], self.interface.find_vertices('person', name='nobody'))
        self.assertEqual([], self.interface.find_vertices('nonexistent_label'))
        vertex = self.interface.add_vertex('person', name='nobody')
        self.assertEqual([vertex], self.interface.find_vertices(name='nobody'))

    def test_edges(self):
        self.assertEqual([self.edge_id], [edge.index for edge in self.interface.edges()])

    def test_get_edge(self):
        with self.assertRaises(NotFoundError):
            self.interface.get_edge(EdgeID(10 ** 6))
        edge = self.interface.get_edge(self.edge_id)
        self.assertIsInstance(edge, Edge)
        self.assertEqual(self.source_id, edge.source.index)
        self.assertEqual(self.sink_id, edge.sink.index)

    def test_add_edge(self):
        # Reverse the direction of the existing edge.
        source = self.interface.get_vertex(self.sink_id)
        sink = self.interface.get_vertex(self.source_id)
        edge = self.interface.add_edge('knows', source, sink, since='now')
        self.assertIsInstance(edge, Edge)
        self.assertEqual('knows', edge.label.name)
        self.assertEqual(source, edge.source)
        self.assertEqual(sink, edge.sink)
        self.assertEqual('now', edge['since'])
        self.assertEqual(2, len(self.interface.edges()))

    def test_schema_lookup(self):
        name = self.interface.get_property_key('name')
        self.assertEqual('name', name.name)
        self.assertIs(str, name.data_type)
        self.assertIs(Cardinality.SINGLE, name.cardinality)
        self.assertEqual('person', self.interface.get_vertex_label('person').name)
        self.assertIs(Multiplicity.MULTI, self.interface.get_edge_label('knows').multiplicity)
        self.assertIsNone(self.interface.get_property_key('missing'))
        self.assertIsNone(self.interface.get_vertex_label('knows'))
        self.assertIsNone(self.interface.get_edge_label('person'))
        self.assertIsNone(self.interface.get_index('missing'))

    def test_automatic_schema(self):
        vertex = self.interface.add_vertex('thing', weight=1.5, count=3, active=True)
        self.assertIs(float, self.interface.get_property_key('weight').data_type)
        self.assertIs(int, self.interface.get_property_key('count').data_type)
        self.assertIs(bool, self.interface.get_property_key('active').data_type)
        self.assertEqual({'weight': [1.5], 'count': [3], 'active': [True]}, vertex.value_map())

    def test_traversal(self):
        self.assertEqual(['sink'],
                         self.interface.traversal().V().has('name', 'source')
                         .out('knows').values('name').to_list())
