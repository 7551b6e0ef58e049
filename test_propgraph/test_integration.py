import threading
from concurrent import futures
from unittest import TestCase

from propgraph import config, walkthrough
from propgraph.data_control.store import GraphStore
from propgraph.data_types.exceptions import UniquenessViolationError
from propgraph.data_types.indices import EdgeID, VertexID
from propgraph.data_types.typedefs import IndexStatus, SchemaAction
from propgraph.graph_layer.graph_db import GraphDB

WAIT = 10.0


class IntegrationTestCase(TestCase):

    settings = config.StoreSettings(partitions=2, index_workers=2)

    def setUp(self) -> None:
        self.db = GraphDB(self.settings)
        self.addCleanup(self.db.close)

    def add_related_pair(self) -> None:
        with self.db.connect() as connection:
            uuid = connection.add_vertex('uuid', ident='u1', create_at='t1')
            user_id = connection.add_vertex('user_id', ident='user1', create_at='t2')
            uuid.add_edge_to('related', user_id, create_at='now')

    def build_unique_ident_index(self) -> None:
        """Index the existing 'ident' key, and bring the index all the way to ENABLED."""
        with self.db.open_management() as management:
            management.build_index('byIdent', ['ident'], unique=True)
        management = self.db.open_management()
        self.assertIs(IndexStatus.REGISTERED,
                      management.await_graph_index_status('byIdent', timeout=WAIT))
        job = management.update_index('byIdent', SchemaAction.REINDEX)
        management.commit()
        self.assertIs(IndexStatus.ENABLED, job.result(WAIT))


class TestGraphScenarios(IntegrationTestCase):

    def test_traverse_related(self):
        """
        Verify:
            * Vertices added with labels and properties in one connection are visible to the next.
            * Walking inbound edges from a label's vertices reaches the vertices at their sources.
        """
        self.add_related_pair()
        idents = [vertex.value('ident')
                  for vertex in self.db.traversal().V().has_label('user_id').in_('related')]
        self.assertEqual(['u1'], idents)
        self.assertEqual(['user1'], self.db.traversal().V().has_label('uuid').out('related')
                         .values('ident').to_list())
        self.assertEqual(['now'], self.db.traversal().E().has_label('related')
                         .values('create_at').to_list())

    def test_unique_index_rejects_duplicate(self):
        """
        Verify:
            * Once a unique index is enabled, a commit that would duplicate one of its keys fails.
            * The failed commit leaves nothing of its changes behind.
        """
        self.add_related_pair()
        self.build_unique_ident_index()

        connection = self.db.connect()
        self.addCleanup(connection.close)
        connection.add_vertex('uuid', ident='u1', create_at='t3')
        with self.assertRaises(UniquenessViolationError):
            connection.commit()

        matches = self.db.find_vertices(ident='u1')
        self.assertEqual(1, len(matches))
        self.assertEqual('t1', matches[0].value('create_at'))
        self.assertEqual(2, len(self.db.vertices()))

    def test_remove_all_vertices(self):
        """
        Verify:
            * Dropping every vertex also drops every edge.
            * Nothing is left for later traversals.
        """
        self.add_related_pair()
        with self.db.connect() as connection:
            connection.traversal().V().drop().iterate()
        self.assertEqual([], self.db.traversal().V().to_list())
        self.assertEqual([], self.db.traversal().E().to_list())
        self.assertEqual([], list(self.db.store.iter_all(EdgeID)))

    def test_concurrent_unique_commits(self):
        """
        Verify:
            * When two transactions race to commit the same key of an enabled unique index, at most
              one of them succeeds.
        """
        with self.db.open_management() as management:
            ident = management.make_property_key('ident', str)
            management.make_vertex_label('user')
            management.build_index('byIdent', [ident], unique=True)
        self.assertIs(IndexStatus.ENABLED, self.db.get_index('byIdent').status)

        barrier = threading.Barrier(2, timeout=WAIT)

        def attempt():
            connection = self.db.connect()
            try:
                connection.add_vertex('user', ident='same')
                barrier.wait()
                return connection.try_commit()
            finally:
                connection.close()

        with futures.ThreadPoolExecutor(2) as executor:
            outcomes = [future.result(WAIT)
                        for future in [executor.submit(attempt) for _ in range(2)]]

        self.assertEqual(1, sum(1 for outcome in outcomes if outcome.committed))
        failure, = [outcome for outcome in outcomes if not outcome.committed]
        self.assertIsInstance(failure.error, UniquenessViolationError)
        self.assertEqual(1, len(self.db.find_vertices(ident='same')))

    def test_reindex_covers_existing_and_concurrent_data(self):
        """
        Verify:
            * Reindexing picks up every element committed before the index existed.
            * Elements committed while the reindex job runs are indexed too.
            * Lookups through the enabled index find every element.
        """
        with self.db.connect() as connection:
            for number in range(20):
                connection.add_vertex('item', ident='early-%d' % number)
        with self.db.open_management() as management:
            management.build_index('byIdent', ['ident'])
        index_manager = self.db.index_manager
        index_manager.await_status('byIdent', IndexStatus.REGISTERED, WAIT)

        job = index_manager.reindex('byIdent')
        with self.db.connect() as connection:
            for number in range(5):
                connection.add_vertex('item', ident='late-%d' % number)
        self.assertIs(IndexStatus.ENABLED, job.result(WAIT))

        self.assertEqual(25, index_manager.count_entries('byIdent'))
        for ident in ['early-%d' % number for number in range(20)] + \
                ['late-%d' % number for number in range(5)]:
            traversal = self.db.traversal().V().has('ident', ident)
            self.assertIn("index 'byIdent'", traversal.explain()[0])
            self.assertEqual([ident], traversal.values('ident').to_list())

    def test_retiring_index_is_idempotent(self):
        """
        Verify:
            * Disabling an index that is already disabled completes without error.
            * Removing an index that is already removed completes without error.
            * A removed index holds no entries.
        """
        self.add_related_pair()
        self.build_unique_ident_index()
        index_manager = self.db.index_manager
        index_id = index_manager.resolve('byIdent')

        self.assertIs(IndexStatus.DISABLED, index_manager.disable_index(index_id).result(WAIT))
        self.assertIs(IndexStatus.DISABLED, index_manager.disable_index(index_id).result(WAIT))
        index_manager.await_status(index_id, IndexStatus.DISABLED, WAIT)
        self.assertIs(IndexStatus.REMOVED, index_manager.remove_index(index_id).result(WAIT))
        self.assertIs(IndexStatus.REMOVED, index_manager.remove_index(index_id).result(WAIT))
        self.assertEqual(0, index_manager.count_entries(index_id))

        # With the index gone, duplicates are accepted again.
        with self.db.connect() as connection:
            connection.add_vertex('uuid', ident='u1')
        self.assertEqual(2, len(self.db.find_vertices(ident='u1')))

    def test_replay_reproduces_store(self):
        """
        Verify:
            * Replaying a database's change log into an empty store reproduces the committed data.
        """
        self.add_related_pair()
        with self.db.connect() as connection:
            connection.traversal().V().has('ident', 'user1').property('create_at', 't4').iterate()

        store = self.db.store
        replica = GraphStore(config.StoreSettings())
        self.assertEqual(store.commit_sequence, replica.replay(store.changes_since(0)))
        self.assertEqual(sorted(store.iter_all(VertexID)), sorted(replica.iter_all(VertexID)))
        self.assertEqual(sorted(store.iter_all(EdgeID)), sorted(replica.iter_all(EdgeID)))
        key_id = store.find_property_key('create_at')
        self.assertEqual(key_id, replica.find_property_key('create_at'))
        for vertex_id in store.iter_all(VertexID):
            self.assertEqual(store.get_vertex_values(vertex_id, key_id),
                             replica.get_vertex_values(vertex_id, key_id))
            self.assertEqual(store.iter_vertex_outbound(vertex_id),
                             replica.iter_vertex_outbound(vertex_id))


class TestWalkthrough(IntegrationTestCase):

    def test_run(self):
        """
        Verify:
            * The walkthrough finds the uuid vertex related to the user_id vertex.
            * It leaves the graph empty, and its composite index removed.
        """
        self.assertEqual(['uuid_ident'], walkthrough.run(self.db))
        self.assertEqual([], self.db.traversal().V().to_list())
        self.assertIs(IndexStatus.REMOVED, self.db.index_manager.status('vertexByIdent'))
        self.assertIs(IndexStatus.ENABLED, self.db.index_manager.status('relatedByCreateAt'))
        self.assertIs(IndexStatus.ENABLED, self.db.index_manager.status('referByCreateAt'))

    def test_failed_commit_logged(self):
        """
        Verify:
            * A stage whose commit fails logs the failure instead of raising it.
            * Nothing of the failed stage is applied.
        """
        with self.db.open_management() as management:
            ident = management.make_property_key('ident', str)
            management.build_index('byIdent', [ident], unique=True)
        with self.db.connect() as connection:
            connection.add_vertex('uuid', ident='uuid_ident')

        with self.assertLogs('propgraph.walkthrough', 'ERROR') as logs:
            walkthrough.add_vertex_and_edge(self.db)
        self.assertEqual(1, len(logs.output))
        self.assertIn("Adding the vertex and edge failed", logs.output[0])
        self.assertEqual(1, len(self.db.find_vertices(ident='uuid_ident')))
        self.assertEqual([], self.db.traversal().E().to_list())
