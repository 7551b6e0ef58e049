"""
Connections to the graph database.
"""

import logging
import typing

from propgraph.data_control import transactions
from propgraph.data_types import exceptions
from propgraph.graph_layer import interface

if typing.TYPE_CHECKING:
    from propgraph.data_control import store
    from propgraph.graph_layer import graph_db

_logger = logging.getLogger(__name__)


class CommitOutcome(typing.NamedTuple):
    """The result of an attempted commit."""

    committed: bool
    error: typing.Optional[exceptions.GraphError] = None
    retryable: bool = False

    def __bool__(self) -> bool:
        return self.committed


class GraphDBConnection(interface.GraphDBInterface):
    """Connect to a GraphDB instance. Modifications are cached locally until the changes are
    committed or rolled back, while the locks they need are taken in the database as the work
    proceeds. If the changes are committed, they are applied to the underlying database as a
    single, atomic transaction. The connection stays usable after a commit or rollback."""

    def __init__(self, db: 'graph_db.GraphDB'):
        self._transaction = None  # Make sure it's defined for __del__ if we get an error below.
        self._db = db
        self._transaction = transactions.Transaction(db.store)

    def __del__(self):
        if self._transaction is not None:
            try:
                self.close()
            except exceptions.GraphError:
                # Collected on a different thread than the one that opened it.
                pass

    @property
    def controller(self) -> transactions.Transaction:
        if not self.is_open:
            raise exceptions.ConnectionClosedError()
        return self._transaction

    @property
    def store(self) -> 'store.GraphStore':
        return self._db.store

    @property
    def is_open(self) -> bool:
        """Whether the connection is currently open."""
        return self._transaction.is_open and self._db.is_open

    @property
    def aborted(self) -> bool:
        """Whether a lock conflict has doomed the pending changes."""
        return self.controller.aborted

    def close(self):
        """Close the connection. Any pending changes are rolled back."""
        if self._transaction.is_open:
            self._transaction.close()

    def commit(self):
        """Commit pending changes to the database as a single atomic transaction. If the commit
        fails, the pending changes are rolled back and the error is raised."""
        self.controller.commit()

    def try_commit(self) -> CommitOutcome:
        """Commit pending changes to the database, reporting failure through the returned outcome
        instead of raising. The pending changes are rolled back if the commit fails."""
        try:
            self.commit()
        except exceptions.GraphError as error:
            _logger.debug("Commit failed: %s", error)
            return CommitOutcome(False, error, error.retryable)
        return CommitOutcome(True)

    def rollback(self):
        """Roll back pending changes to the database."""
        self.controller.rollback()

    def __enter__(self) -> 'GraphDBConnection':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.is_open:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        self.close()
