"""
Test case base classes for the graph store and its transactions.
"""

import threading
import typing
from functools import wraps
from unittest import TestCase, mock

from propgraph import config
from propgraph.data_control.store import GraphStore
from propgraph.data_control.transactions import Transaction
from propgraph.data_structs.index_entries import CompositeIndexEntries
from propgraph.data_types import typedefs
from propgraph.data_types.indices import EdgeID, EdgeLabelID, PropertyKeyID, VertexID, \
    VertexLabelID

# Long enough to never fire in a healthy run, short enough to fail a hung one.
WAIT = 10.0


def check_registry_lock(method: typing.Callable[['GraphStoreTestCase'], None]) \
        -> typing.Callable[['GraphStoreTestCase'], None]:
    """
    Decorator for GraphStoreTestCase tests to verify:
        * The registry lock is not held before the method call.
        * The registry lock is not held after the method call.
    """

    @wraps(method)
    def wrapper(self):
        self.assertFalse(self.store.store_data.registry_lock.locked(),
                         "Registry lock was held before %s() began." % method.__name__)
        method(self)
        self.assertFalse(self.store.store_data.registry_lock.locked(),
                         "Registry lock was still held after %s() completed." % method.__name__)

    return wrapper


def slow_scan(test_case: TestCase) -> typing.Tuple[threading.Event, threading.Event]:
    """Hold up the first composite index entry computation made during the test case, until the
    returned release event is set. The started event is set once it is being held up."""
    started = threading.Event()
    release = threading.Event()
    original = CompositeIndexEntries.entries_for

    def entries_for(entries, data):
        if not started.is_set():
            started.set()
            release.wait(WAIT)
        return original(entries, data)

    patcher = mock.patch.object(CompositeIndexEntries, 'entries_for', entries_for)
    patcher.start()
    test_case.addCleanup(patcher.stop)
    test_case.addCleanup(release.set)
    return started, release


class GraphStoreTestCase(TestCase):
    """Base class for test cases that need a store, pre-populated with a small graph:

        (source:person {name: 'source'}) -[knows {since: 'before'}]-> (sink:person {name: 'sink'})
    """

    settings = config.StoreSettings(partitions=2, index_workers=2)
    start_index_manager = True

    def setUp(self) -> None:
        self.store = GraphStore(self.settings)
        if self.start_index_manager:
            self.store.index_manager.start()
            self.addCleanup(self.store.index_manager.shutdown)

        transaction = Transaction(self.store)
        self.name_key_id: PropertyKeyID = transaction.add_property_key('name', str)
        self.since_key_id: PropertyKeyID = transaction.add_property_key('since', str)
        self.person_id: VertexLabelID = transaction.add_vertex_label('person')
        self.knows_id: EdgeLabelID = transaction.add_edge_label('knows')
        self.source_id: VertexID = transaction.add_vertex(self.person_id)
        self.sink_id: VertexID = transaction.add_vertex(self.person_id)
        transaction.add_vertex_value(self.source_id, self.name_key_id, 'source')
        transaction.add_vertex_value(self.sink_id, self.name_key_id, 'sink')
        self.edge_id: EdgeID = transaction.add_edge(self.knows_id, self.source_id, self.sink_id)
        transaction.set_edge_value(self.edge_id, self.since_key_id, 'before')
        transaction.commit()
        transaction.close()

    def new_transaction(self) -> Transaction:
        transaction = Transaction(self.store)
        self.addCleanup(transaction.close)
        return transaction

    def add_people(self, *names: str) -> typing.List[VertexID]:
        transaction = self.new_transaction()
        vertex_ids = []
        for name in names:
            vertex_id = transaction.add_vertex(self.person_id)
            transaction.add_vertex_value(vertex_id, self.name_key_id, name)
            vertex_ids.append(vertex_id)
        transaction.commit()
        return vertex_ids

    def add_index(self, name: str, kind: typedefs.IndexKind = typedefs.IndexKind.COMPOSITE,
                  keys=None, **kwargs):
        transaction = self.new_transaction()
        index_id = transaction.add_index(name, kind, keys or [self.name_key_id], **kwargs)
        transaction.commit()
        return index_id
