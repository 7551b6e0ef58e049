"""
Basic type definitions.
"""

import enum
import typing


SimpleDataType = typing.Union[bool, int, float, str]

# The value types a property key can be declared with.
SUPPORTED_DATA_TYPES = (str, int, float, bool)


class Cardinality(enum.Enum):
    """How many values a vertex may hold for one property key."""

    SINGLE = 'single'
    SET = 'set'  # Multiple distinct values.
    LIST = 'list'  # Multiple values, duplicates allowed.

    @property
    def multi_valued(self) -> bool:
        return self is not Cardinality.SINGLE


class Multiplicity(enum.Enum):
    """Structural constraint on the edges of a label."""

    MULTI = 'multi'
    SIMPLE = 'simple'
    MANY2ONE = 'many2one'
    ONE2MANY = 'one2many'
    ONE2ONE = 'one2one'

    @property
    def unique_out(self) -> bool:
        """Whether a vertex can have at most one outgoing edge of the label."""
        return self in (Multiplicity.MANY2ONE, Multiplicity.ONE2ONE)

    @property
    def unique_in(self) -> bool:
        """Whether a vertex can have at most one incoming edge of the label."""
        return self in (Multiplicity.ONE2MANY, Multiplicity.ONE2ONE)


class Direction(enum.Enum):
    OUT = 'out'
    IN = 'in'
    BOTH = 'both'

    def covers(self, other: 'Direction') -> bool:
        return self is Direction.BOTH or self is other


class IndexKind(enum.Enum):
    COMPOSITE = 'composite'
    EDGE = 'edge'
    PROPERTY = 'property'

    @property
    def is_relation_index(self) -> bool:
        return self is not IndexKind.COMPOSITE


class IndexStatus(enum.Enum):
    """Lifecycle status of an index. Statuses are ordered by their rank; an index is "at or past"
    a status when its rank is greater or equal."""

    INSTALLED = 0
    REGISTERED = 1
    REINDEXING = 2
    ENABLED = 3
    DISABLED = 4
    REMOVED = 5

    @property
    def rank(self) -> int:
        return self.value

    def at_or_past(self, other: 'IndexStatus') -> bool:
        return self.rank >= other.rank

    @property
    def maintained(self) -> bool:
        """Whether commits must keep the index's entries up to date in this status."""
        return self in (IndexStatus.REGISTERED, IndexStatus.REINDEXING, IndexStatus.ENABLED)


class SchemaAction(enum.Enum):
    """Actions that can be requested for an existing index."""

    REGISTER_INDEX = 'register_index'
    REINDEX = 'reindex'
    ENABLE_INDEX = 'enable_index'
    DISABLE_INDEX = 'disable_index'
    REMOVE_INDEX = 'remove_index'


def infer_data_type(value: typing.Any) -> type:
    """Return the supported data type a property key should be declared with to hold the value."""
    # bool has to be tested before int, since it is a subclass of it.
    for data_type in (bool, int, float, str):
        if isinstance(value, data_type):
            return data_type
    raise TypeError("Unsupported property value type: %s" % type(value).__name__)


def coerce_value(data_type: type, value: typing.Any) -> SimpleDataType:
    """Return the value as an instance of the data type, or raise a TypeError if the value is not
    compatible with it."""
    if data_type is bool:
        if isinstance(value, bool):
            return value
    elif data_type is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif data_type is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif data_type is str:
        if isinstance(value, str):
            return value
    raise TypeError("Expected a value of type %s, got %r." % (data_type.__name__, value))
