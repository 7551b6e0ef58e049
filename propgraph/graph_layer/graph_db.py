"""GraphDB implements an in-process, transactional property graph database. Vertices and edges
carry typed properties declared by property keys, and are categorized by vertex and edge labels.
Edges are always directed. Composite indexes answer equality lookups over vertex or edge
properties, and vertex-centric relation indexes answer lookups over the incident edges or property
occurrences of a single vertex.

All graph elements are accessed via *indirect references* which hold only the element's unique ID,
and are bound to the connection they were obtained from.

The GraphDB supports both thread-bound and explicit transaction-mediated access. For thread-bound
access, simply call into the GraphDB's interface; each thread works in its own automatic
transaction, committed through `db.tx().commit()`. For explicit transactions, first create a
connection via the GraphDB's connect() method, and then interact with the connection. The
connection supports the full interface of the GraphDB, plus the standard commit() and rollback()
transactional operations. Connections actively communicate with the store, acquiring the
appropriate read and write locks as the transaction is constructed, rather than passively
accumulating requested operations and then acquiring all locks at the time commit() is called.
Lock requests never wait: a request that conflicts with another transaction raises a
ConflictError, and the transaction can only be rolled back and retried.

Schema and index changes go through management sessions, opened via open_management().
"""

import logging
import threading
import typing

from propgraph import config
from propgraph.data_control import store as store_module
from propgraph.data_control import transactions
from propgraph.data_types import exceptions
from propgraph.graph_layer import connections
from propgraph.graph_layer import interface
from propgraph.graph_layer import management

_logger = logging.getLogger(__name__)


class GraphDB(interface.GraphDBInterface):
    """The graph database. Opened on construction; closing it shuts down the background index
    workers and, if a save directory is configured, saves the store."""

    def __init__(self, settings: config.StoreSettings = None):
        self._settings = settings or config.StoreSettings()
        self._local = threading.local()
        self._store = store_module.GraphStore(self._settings)
        if self._settings.save_dir is not None:
            try:
                self._store.load(clear_expired=False)
            except FileNotFoundError:
                _logger.info("No save found in %s; starting with an empty store.",
                             self._settings.save_dir)
        self._store.index_manager.start()
        self._is_open = True
        _logger.info("Graph database opened.")

    @classmethod
    def from_env(cls, **overrides) -> 'GraphDB':
        """Open a graph database configured from PROPGRAPH_* environment variables."""
        return cls(config.StoreSettings.from_env(**overrides))

    @property
    def settings(self) -> config.StoreSettings:
        return self._settings

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def store(self) -> store_module.GraphStore:
        if not self._is_open:
            raise exceptions.ConnectionClosedError("The graph database is closed.")
        return self._store

    @property
    def controller(self) -> transactions.Transaction:
        return self.tx().controller

    def close(self) -> None:
        """Close the database. Pending changes of the calling thread's automatic transaction are
        rolled back; other threads' transactions can no longer commit."""
        if not self._is_open:
            return
        current = getattr(self._local, 'connection', None)
        if current is not None:
            current.close()
            self._local.connection = None
        self._store.index_manager.shutdown()
        self._is_open = False
        if self._settings.save_dir is not None:
            self._store.save()
        _logger.info("Graph database closed.")

    def __enter__(self) -> 'GraphDB':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self) -> connections.GraphDBConnection:
        """Open a new transactional connection."""
        return connections.GraphDBConnection(self)

    new_transaction = connect

    def tx(self) -> connections.GraphDBConnection:
        """The calling thread's automatic transaction, which the GraphDB's own data interface reads
        and writes through."""
        connection = getattr(self._local, 'connection', None)
        if connection is None or not connection.is_open:
            connection = self.connect()
            self._local.connection = connection
        return connection

    def open_management(self) -> management.ManagementSession:
        """Open a session for changing the schema and managing indexes."""
        return management.ManagementSession(self)

    def save(self, save_dir: str = None) -> str:
        """Save the committed state of the database to disk. Return the path of the save file."""
        return self.store.save(save_dir)
