from propgraph.data_types.exceptions import ConflictError, ConnectionClosedError, \
    UniquenessViolationError
from propgraph.graph_layer.connections import CommitOutcome, GraphDBConnection
from test_propgraph.test_data_types.test_data_access import threaded_call
from test_propgraph.test_graph_layer import base


class MockException(Exception):
    pass


class TestGraphDBConnection(base.GraphDBInterfaceTestCase):
    graph_db_interface_subclass = GraphDBConnection

    def test_context_manager_protocol_normal_exit(self):
        """
        Verify:
            * The context manager returns an open connection on entering the with block.
            * When exiting the `with` block normally:
                * Pending changes are committed.
                * The connection is automatically closed.
                * Any held references cannot be used.
        """
        with GraphDBConnection(self.db) as connection:
            self.assertIsInstance(connection, GraphDBConnection)
            self.assertTrue(connection.is_open)
            vertex = connection.add_vertex('person', name='new')
            self.assertEqual([], self.db.find_vertices(name='new'))
        self.assertFalse(connection.is_open)
        self.assertEqual([vertex], self.db.find_vertices(name='new'))
        with self.assertRaises(ConnectionClosedError):
            _label = vertex.label

    def test_context_manager_protocol_unhandled_exception(self):
        """
        Verify:
            * When exiting the `with` block due to exception:
                * Pending changes are rolled back.
                * The connection is automatically closed.
        """
        with self.assertRaises(MockException):
            with GraphDBConnection(self.db) as connection:
                connection.add_vertex('person', name='new')
                raise MockException()
        self.assertFalse(connection.is_open)
        self.assertEqual([], self.db.find_vertices(name='new'))

    def test_commit(self):
        """
        Verify:
            * Changes are not applied to the database before the commit.
            * Changes are applied to the database after the commit.
            * The connection stays open, and can be used for further changes.
        """
        connection = self.connect()
        source = connection.get_vertex(self.source_id)
        source.property('name', 'renamed')
        self.assertEqual([], self.db.find_vertices(name='renamed'))
        connection.commit()
        self.assertTrue(connection.is_open)
        self.assertEqual([self.source_id],
                         [vertex.index for vertex in self.db.find_vertices(name='renamed')])
        connection.add_vertex('person', name='later')
        connection.commit()
        self.assertEqual(1, len(self.db.find_vertices(name='later')))

    def test_rollback(self):
        """
        Verify:
            * Changes are discarded by a rollback.
            * The connection stays open, and can be used for further changes.
        """
        connection = self.connect()
        connection.get_vertex(self.source_id).remove()
        self.assertEqual([self.sink_id], [vertex.index for vertex in connection.vertices()])
        connection.rollback()
        self.assertTrue(connection.is_open)
        self.assertEqual([self.source_id, self.sink_id],
                         [vertex.index for vertex in connection.vertices()])
        self.assertTrue(connection.get_edge(self.edge_id).exists())

    def test_close(self):
        connection = self.connect()
        vertex = connection.add_vertex('person', name='closed')
        connection.close()
        self.assertFalse(connection.is_open)
        with self.assertRaises(ConnectionClosedError):
            connection.commit()
        with self.assertRaises(ConnectionClosedError):
            vertex.value('name')
        with self.assertRaises(ConnectionClosedError):
            connection.add_vertex('person')
        # Closing twice is harmless.
        connection.close()
        self.assertEqual([], self.db.find_vertices(name='closed'))

    def test_try_commit(self):
        connection = self.connect()
        connection.add_vertex('person', name='tried')
        outcome = connection.try_commit()
        self.assertIsInstance(outcome, CommitOutcome)
        self.assertTrue(outcome)
        self.assertTrue(outcome.committed)
        self.assertIsNone(outcome.error)
        self.assertFalse(outcome.retryable)
        self.assertEqual(1, len(self.db.find_vertices(name='tried')))

    def test_try_commit_uniqueness_violation(self):
        """
        Verify:
            * A commit that would break a unique index reports the violation without raising.
            * The violation is not retryable.
            * The pending changes are rolled back.
        """
        with self.db.open_management() as management:
            code = management.make_property_key('code', str)
            management.build_index('byCode', [code], unique=True)

        with self.db.connect() as connection:
            connection.add_vertex('person', code='x')

        connection = self.connect()
        connection.add_vertex('person', code='x', name='duplicate')
        outcome = connection.try_commit()
        self.assertFalse(outcome)
        self.assertIsInstance(outcome.error, UniquenessViolationError)
        self.assertFalse(outcome.retryable)
        self.assertEqual([], connection.find_vertices(name='duplicate'))
        self.assertEqual(1, len(self.db.find_vertices(code='x')))

    def test_try_commit_conflict(self):
        """
        Verify:
            * A refused lock request aborts the connection's pending changes.
            * Committing an aborted connection reports a retryable failure without raising.
            * The connection holding the lock is unaffected.
        """
        holder = self.connect()
        holder.get_vertex(self.source_id).property('name', 'held')

        def attempt():
            connection = self.db.connect()
            try:
                self.assertFalse(connection.aborted)
                with self.assertRaises(ConflictError):
                    connection.get_vertex(self.source_id).property('name', 'contested')
                aborted = connection.aborted
                return aborted, connection.try_commit()
            finally:
                connection.close()

        aborted, outcome = threaded_call(attempt)
        self.assertTrue(aborted)
        self.assertFalse(outcome.committed)
        self.assertIsInstance(outcome.error, ConflictError)
        self.assertTrue(outcome.retryable)

        holder.commit()
        self.assertEqual([self.source_id],
                         [vertex.index for vertex in self.db.find_vertices(name='held')])
