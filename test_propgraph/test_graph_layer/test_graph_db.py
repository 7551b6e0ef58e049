import os
import tempfile
from unittest import TestCase, mock

from propgraph import config
from propgraph.data_types.exceptions import ConnectionClosedError, SchemaError
from propgraph.graph_layer.connections import GraphDBConnection
from propgraph.graph_layer.graph_db import GraphDB
from propgraph.graph_layer.management import ManagementSession
from test_propgraph.test_data_types.test_data_access import threaded_call
from test_propgraph.test_graph_layer import base


class TestGraphDB(base.GraphDBInterfaceTestCase):
    graph_db_interface_subclass = GraphDB

    def test_connect(self):
        connection = self.connect()
        self.assertIsInstance(connection, GraphDBConnection)
        self.assertTrue(connection.is_open)
        self.assertIsNot(connection, self.connect())

    def test_open_management(self):
        session = self.db.open_management()
        self.addCleanup(session.rollback)
        self.assertIsInstance(session, ManagementSession)
        self.assertTrue(session.is_open)

    def test_opened_on_construction(self):
        self.assertTrue(self.db.is_open)
        self.assertTrue(self.db.index_manager.running)

    def test_tx_is_per_thread(self):
        """
        Verify:
            * Each thread gets its own automatic transaction.
            * A thread keeps getting the same one until it is closed.
        """
        tx = self.db.tx()
        self.assertIs(tx, self.db.tx())
        other = threaded_call(self.db.tx)
        self.assertIsNot(tx, other)
        tx.close()
        self.assertIsNot(tx, self.db.tx())

    def test_changes_pending_until_tx_commit(self):
        """
        Verify:
            * Changes made through the database interface go to the calling thread's automatic
              transaction.
            * Other transactions don't see them before the automatic transaction commits.
        """
        self.db.add_vertex('person', name='pending')
        connection = self.connect()
        self.assertEqual([], connection.find_vertices(name='pending'))
        self.db.tx().commit()
        self.assertEqual(1, len(connection.find_vertices(name='pending')))

    def test_close(self):
        """
        Verify:
            * The store can no longer be reached, through the database or its connections.
            * Closing twice is harmless.
        """
        connection = self.connect()
        self.db.close()
        self.assertFalse(self.db.is_open)
        with self.assertRaises(ConnectionClosedError):
            _store = self.db.store
        self.assertFalse(connection.is_open)
        with self.assertRaises(ConnectionClosedError):
            connection.vertices()
        self.db.close()

    def test_close_rolls_back_automatic_transaction(self):
        self.db.add_vertex('person', name='discarded')
        tx = self.db.tx()
        self.db.close()
        self.assertFalse(tx.is_open)

    def test_context_manager_protocol(self):
        with GraphDB(self.settings) as db:
            self.assertTrue(db.is_open)
        self.assertFalse(db.is_open)

    def test_automatic_schema_disabled(self):
        with GraphDB(config.StoreSettings(partitions=2, auto_schema=False)) as db:
            with self.assertRaises(SchemaError):
                db.add_vertex('person')
            with db.open_management() as management:
                management.make_vertex_label('person')
                management.make_property_key('name', str)
            vertex = db.add_vertex('person', name='known')
            with self.assertRaises(SchemaError):
                vertex.property('unknown', 'value')
            self.assertEqual('known', vertex['name'])

    def test_from_env(self):
        with mock.patch.dict(os.environ, {'PROPGRAPH_PARTITIONS': '3',
                                          'PROPGRAPH_AUTO_SCHEMA': 'false'}):
            db = GraphDB.from_env(index_workers=1)
        self.addCleanup(db.close)
        self.assertEqual(3, db.settings.partitions)
        self.assertFalse(db.settings.auto_schema)
        self.assertEqual(1, db.settings.index_workers)


class TestGraphDBPersistence(TestCase):

    def setUp(self) -> None:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.save_dir = os.path.join(temp_dir.name, 'saves')
        self.settings = config.StoreSettings(partitions=2, save_dir=self.save_dir)

    def test_starts_empty_without_save(self):
        with GraphDB(self.settings) as db:
            self.assertEqual([], db.vertices())

    def test_saved_on_close_and_loaded_on_open(self):
        with GraphDB(self.settings) as db:
            with db.connect() as connection:
                source = connection.add_vertex('person', name='source')
                source.add_edge_to('knows', connection.add_vertex('person', name='sink'))
            # Uncommitted changes are not saved.
            db.add_vertex('person', name='uncommitted')
        self.assertEqual(1, len(os.listdir(self.save_dir)))

        with GraphDB(self.settings) as db:
            self.assertEqual(['source', 'sink'],
                             [vertex['name'] for vertex in db.vertices()])
            self.assertEqual(1, len(db.edges()))
            self.assertEqual([], db.find_vertices(name='uncommitted'))

    def test_save(self):
        with GraphDB(config.StoreSettings(partitions=2)) as db:
            db.add_vertex('person', name='saved')
            db.tx().commit()
            save_path = db.save(self.save_dir)
        self.assertTrue(os.path.isfile(save_path))
        self.assertTrue(save_path.endswith('.propgraph'))

        with GraphDB(self.settings) as db:
            self.assertEqual(1, len(db.find_vertices(name='saved')))
