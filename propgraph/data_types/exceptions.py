"""
Exception hierarchy.

All exceptions defined in the package have their home here. Every error raised by the store
derives from GraphError, whose `retryable` flag tells callers whether repeating the same work in
a fresh transaction can be expected to succeed.
"""


class GraphError(Exception):
    """Base class for all errors raised by the graph store."""

    retryable = False


class SchemaError(GraphError):
    """A property key or label is unknown, or a value is incompatible with its property key's
    declared data type or cardinality."""


class DuplicateNameError(SchemaError):
    """The requested name is already allocated to, or reserved for, another schema element."""


class DuplicateIndexError(DuplicateNameError):
    """An index with the requested name already exists."""


class UniquenessViolationError(GraphError):
    """Two elements would share a key tuple in an enabled unique composite index."""

    def __init__(self, index_name: str, key: tuple, *element_ids):
        super().__init__(index_name, key, *element_ids)
        self.index_name = index_name
        self.key = key
        self.element_ids = element_ids

    def __str__(self) -> str:
        return 'Index %r already maps key %r to %s.' % (
            self.index_name, self.key, ', '.join(repr(index) for index in self.element_ids)
        )


class ConflictError(GraphError):
    """The requested access cannot be granted to a resource because it is in use by another
    transaction."""

    retryable = True


class IndexStatusTimeoutError(GraphError, TimeoutError):
    """An index did not reach the awaited status before the deadline."""

    retryable = True


class NotFoundError(GraphError, KeyError):
    """The referenced vertex, edge, index, or schema element does not exist."""


class IndexStateError(GraphError):
    """The requested index action is not valid from the index's current status."""


class ConnectionClosedError(GraphError, ConnectionError):
    """Attempting to use a connection, transaction, or store that has already been closed."""


class InvalidThreadError(GraphError):
    """Transaction used from a different thread than the one that created it."""


class JobCancelledError(GraphError):
    """The result of a background index job was requested after the job was cancelled."""
