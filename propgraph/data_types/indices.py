# NOTE: NewType would be lighter, but it doesn't support isinstance checks or pickling.


class UniqueID(int):
    """Base class for all unique index types."""

    def __repr__(self) -> str:
        return '%s(%s)' % (type(self).__name__, int(self))

    # Defining __eq__ disables the inherited __hash__, so it has to be restored explicitly.
    # pylint: disable=W0235
    def __hash__(self):
        return super().__hash__()

    def __eq__(self, other):
        if not isinstance(other, type(self)):
            return False
        return super().__eq__(other)

    def __ne__(self, other):
        if not isinstance(other, type(self)):
            return True
        return super().__ne__(other)


class PersistentDataID(UniqueID):
    """Base class for index types that correspond directly to persistent data resources."""


class SchemaID(PersistentDataID):
    """Base class for the IDs of named, immutable schema elements."""


class PropertyKeyID(SchemaID):
    """Unique ID for property keys."""


class VertexLabelID(SchemaID):
    """Unique ID for vertex labels."""


class EdgeLabelID(SchemaID):
    """Unique ID for edge labels."""


class IndexID(SchemaID):
    """Unique ID for index definitions."""


class ElementID(PersistentDataID):
    """Base class for the IDs of graph elements that carry properties."""


class VertexID(ElementID):
    """Unique ID for vertices."""


class EdgeID(ElementID):
    """Unique ID for edges."""


# The order matters: commits apply schema before the elements that reference it.
PERSISTENT_ID_TYPES = (
    PropertyKeyID,
    VertexLabelID,
    EdgeLabelID,
    IndexID,
    VertexID,
    EdgeID,
)

NAMED_ID_TYPES = (
    PropertyKeyID,
    VertexLabelID,
    EdgeLabelID,
    IndexID,
)
