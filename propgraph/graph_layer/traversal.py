"""
Traversals.

A traversal is a chain of steps, started from a TraversalSource:

    g = db.traversal()
    g.V().has_label('user_id').in_('related').to_list()

Steps are collected without touching the graph. When iteration starts, a view of the graph is
taken (committed state plus the traversal's own transaction's pending changes), the steps are
planned against the indexes that are ENABLED in that view, and results are produced lazily. A
traversal can only be iterated once.

Planning replaces a step by an indexed version of it when the equality filters directly after it
constrain every key of a suitable index:

    V()/E() + has(...)                composite index of the element type
    out_e/in_e/both_e(label) + has()  edge index of the label, covering the direction
    properties(key) + has(...)        property index of the key, keyed by meta-properties

Indexed steps only narrow down the candidates; the filters still run over every result.
"""

import itertools
import logging
import typing

from propgraph.data_structs import element_data
from propgraph.data_types import exceptions
from propgraph.data_types import indices
from propgraph.data_types import typedefs
from propgraph.graph_layer import elements
from propgraph.graph_layer import views

if typing.TYPE_CHECKING:
    from propgraph.graph_layer import interface

_logger = logging.getLogger(__name__)

Direction = typedefs.Direction

# Marks a has() step that only requires the key to be present.
_ANY = object()

Constraints = typing.Dict[indices.PropertyKeyID, typedefs.SimpleDataType]


class _VertexPropertyRef(typing.NamedTuple):
    vertex_id: indices.VertexID
    key_id: indices.PropertyKeyID
    occurrence: element_data.PropertyOccurrence


class _EdgePropertyRef(typing.NamedTuple):
    edge_id: indices.EdgeID
    key_id: indices.PropertyKeyID
    value: typedefs.SimpleDataType


def _element_id(index_type: typing.Type[indices.ElementID], element) -> indices.ElementID:
    if isinstance(element, elements.Element):
        if not isinstance(element.index, index_type):
            raise TypeError("Expected a %s, got %r." % (index_type.__name__, element))
        return element.index
    return index_type(element)


def _schema_id(view: views.GraphView, index_type: typing.Type[indices.SchemaID],
               schema) -> typing.Optional[indices.SchemaID]:
    if isinstance(schema, elements.SchemaElement):
        return schema.index
    return view.find_name(index_type, schema)


def _schema_ids(view: views.GraphView, index_type: typing.Type[indices.SchemaID],
                schemas: typing.Iterable) -> typing.List[indices.SchemaID]:
    """Resolve the names or handles, dropping unknown names."""
    result = []
    for schema in schemas:
        schema_id = _schema_id(view, index_type, schema)
        if schema_id is not None:
            result.append(schema_id)
    return result


def _describe_args(args: typing.Iterable) -> str:
    return ', '.join(arg.name if isinstance(arg, elements.SchemaElement) else repr(arg)
                     for arg in args)


def _dedup_key(obj):
    if isinstance(obj, dict):
        return tuple(sorted((key, _dedup_key(value)) for key, value in obj.items()))
    if isinstance(obj, list):
        return tuple(_dedup_key(value) for value in obj)
    return obj


def _choose_index(definitions: typing.Iterable[element_data.IndexData],
                  constraints: Constraints) \
        -> typing.Optional[typing.Tuple[element_data.IndexData, tuple]]:
    """Pick the index covering the most of the constrained keys, among those whose keys are all
    constrained. Return it with the key tuple to look up."""
    best = None
    for definition in definitions:
        if all(key_id in constraints for key_id in definition.keys):
            if best is None or len(definition.keys) > len(best.keys):
                best = definition
    if best is None:
        return None
    return best, tuple(constraints[key_id] for key_id in best.keys)


class _Context:
    """What the steps of one iteration share."""

    def __init__(self, graph: 'interface.GraphDBInterface', view: views.GraphView):
        self.graph = graph
        self.view = view

    def reload(self, *indexes: indices.PersistentDataID) -> None:
        """Bring the view up to date after a step changed the elements. Schema created on the fly
        is picked up, too."""
        self.view.reload(*indexes, *self.graph.controller.new_schema)


class _Step:

    def __repr__(self) -> str:
        return self.describe()

    def describe(self) -> str:
        raise NotImplementedError()

    def plan(self, view: views.GraphView, constraints: Constraints) -> '_Step':
        """Return the step to execute, given the equality constraints of the filters directly
        following it."""
        return self

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        raise NotImplementedError()


# Sources

class _StartStep(_Step):

    def __init__(self, index_type: typing.Type[indices.ElementID],
                 ids: typing.Sequence[indices.ElementID] = ()):
        self.index_type = index_type
        self.ids = tuple(ids)

    def describe(self) -> str:
        name = 'V' if self.index_type is indices.VertexID else 'E'
        return '%s(%s)' % (name, ', '.join(str(int(index)) for index in self.ids))

    def plan(self, view: views.GraphView, constraints: Constraints) -> _Step:
        if self.ids or not constraints:
            return self
        choice = _choose_index((definition for definition in
                                view.iter_enabled_indexes(typedefs.IndexKind.COMPOSITE)
                                if definition.element_type is self.index_type),
                               constraints)
        if choice is None:
            return self
        return _IndexedStartStep(self, *choice)

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        if self.ids:
            for index in self.ids:
                if context.view.get(index) is not None:
                    yield index
        else:
            for data in context.view.iter(self.index_type):
                yield data.index


class _IndexedStartStep(_Step):

    def __init__(self, scan: _StartStep, definition: element_data.IndexData, key: tuple):
        self.scan = scan
        self.definition = definition
        self.key = key

    def describe(self) -> str:
        return '%s[index %r, key %r]' % (self.scan.describe(), self.definition.name, self.key)

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        candidates = context.view.lookup(self.definition, self.key)
        if candidates is None:
            _logger.debug("Index %r can't answer for %r; scanning.", self.definition.name,
                          context.view)
            yield from self.scan.apply(context, objects)
            return
        for index in sorted(candidates):
            if context.view.get(index) is not None:
                yield index


# Filters

class _FilterStep(_Step):

    def keep(self, context: _Context, obj) -> bool:
        raise NotImplementedError()

    def prepare(self, context: _Context) -> None:
        """Resolve names against the view, before the first object is tested."""

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        self.prepare(context)
        for obj in objects:
            if self.keep(context, obj):
                yield obj


def _values_of(context: _Context, obj,
               key_id: typing.Optional[indices.PropertyKeyID]) -> typing.List:
    """The values the object holds for the key: property values for vertices and edges,
    meta-property values for vertex properties."""
    if key_id is None:
        return []
    if isinstance(obj, indices.ElementID):
        data = context.view.get(obj)
        return [] if data is None else data.values(key_id)
    if isinstance(obj, _VertexPropertyRef):
        meta_value = obj.occurrence.get_meta(key_id)
        return [] if meta_value is None else [meta_value]
    return []


class _HasLabelStep(_FilterStep):

    def __init__(self, labels: typing.Sequence):
        self.labels = tuple(labels)
        self._label_ids: typing.Set[indices.SchemaID] = set()

    def describe(self) -> str:
        return 'has_label(%s)' % _describe_args(self.labels)

    def prepare(self, context: _Context) -> None:
        self._label_ids = set(_schema_ids(context.view, indices.VertexLabelID, self.labels))
        self._label_ids.update(_schema_ids(context.view, indices.EdgeLabelID, self.labels))

    def keep(self, context: _Context, obj) -> bool:
        if not isinstance(obj, indices.ElementID):
            return False
        data = context.view.get(obj)
        return data is not None and data.label in self._label_ids


class _HasStep(_FilterStep):

    def __init__(self, key, value=_ANY):
        self.key = key
        self.value = value
        self._key_id = None

    def describe(self) -> str:
        if self.value is _ANY:
            return 'has(%s)' % _describe_args([self.key])
        if callable(self.value):
            return 'has(%s, <predicate>)' % _describe_args([self.key])
        return 'has(%s, %r)' % (_describe_args([self.key]), self.value)

    @property
    def is_equality(self) -> bool:
        return self.value is not _ANY and not callable(self.value)

    def prepare(self, context: _Context) -> None:
        self._key_id = _schema_id(context.view, indices.PropertyKeyID, self.key)

    def _test(self, value) -> bool:
        if self.value is _ANY:
            return True
        if callable(self.value):
            return bool(self.value(value))
        return value == self.value

    def keep(self, context: _Context, obj) -> bool:
        return any(self._test(value) for value in _values_of(context, obj, self._key_id))


class _HasNotStep(_FilterStep):

    def __init__(self, key):
        self.key = key
        self._key_id = None

    def describe(self) -> str:
        return 'has_not(%s)' % _describe_args([self.key])

    def prepare(self, context: _Context) -> None:
        self._key_id = _schema_id(context.view, indices.PropertyKeyID, self.key)

    def keep(self, context: _Context, obj) -> bool:
        return not _values_of(context, obj, self._key_id)


class _HasIdStep(_FilterStep):

    def __init__(self, ids: typing.Sequence):
        self.ids = tuple(ids)
        self._typed = {element.index for element in ids if isinstance(element, elements.Element)}
        self._plain = {int(element) for element in ids
                       if not isinstance(element, elements.Element)}

    def describe(self) -> str:
        ids = [element.index if isinstance(element, elements.Element) else element
               for element in self.ids]
        return 'has_id(%s)' % ', '.join(str(int(index)) for index in ids)

    def keep(self, context: _Context, obj) -> bool:
        return isinstance(obj, indices.ElementID) and \
            (obj in self._typed or int(obj) in self._plain)


# Adjacency

class _AdjacentStep(_Step):

    _NAMES = {Direction.OUT: 'out', Direction.IN: 'in_', Direction.BOTH: 'both'}

    def __init__(self, direction: Direction, labels: typing.Sequence, to_edges: bool):
        self.direction = direction
        self.labels = tuple(labels)
        self.to_edges = to_edges

    def describe(self) -> str:
        return '%s%s(%s)' % (self._NAMES[self.direction], '_e' if self.to_edges else '',
                             _describe_args(self.labels))

    def plan(self, view: views.GraphView, constraints: Constraints) -> _Step:
        if not self.to_edges or len(self.labels) != 1 or not constraints:
            return self
        label_id = _schema_id(view, indices.EdgeLabelID, self.labels[0])
        if label_id is None:
            return self
        choice = _choose_index((definition for definition in
                                view.iter_enabled_indexes(typedefs.IndexKind.EDGE)
                                if definition.relation_type == label_id and
                                definition.direction.covers(self.direction)),
                               constraints)
        if choice is None:
            return self
        return _IndexedEdgeStep(self, *choice)

    def _emit(self, vertex_id: indices.VertexID, edge_data: element_data.EdgeData):
        if self.to_edges:
            return edge_data.index
        if self.direction is Direction.OUT:
            return edge_data.sink
        if self.direction is Direction.IN:
            return edge_data.source
        return edge_data.other_end(vertex_id)

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        label_ids = set(_schema_ids(context.view, indices.EdgeLabelID, self.labels))
        for obj in objects:
            if not isinstance(obj, indices.VertexID):
                continue
            vertex_data = context.view.get(obj)
            if vertex_data is None:
                continue
            assert isinstance(vertex_data, element_data.VertexData)
            for edge_id in sorted(vertex_data.incident(self.direction)):
                edge_data = context.view.get(edge_id)
                if edge_data is None:
                    continue
                if self.labels and edge_data.label not in label_ids:
                    continue
                yield self._emit(obj, edge_data)


class _IndexedEdgeStep(_Step):

    def __init__(self, scan: _AdjacentStep, definition: element_data.IndexData, key: tuple):
        self.scan = scan
        self.definition = definition
        self.key = key

    def describe(self) -> str:
        return '%s[index %r, key %r]' % (self.scan.describe(), self.definition.name, self.key)

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        direction = self.scan.direction
        for obj in objects:
            if not isinstance(obj, indices.VertexID):
                continue
            vertex_data = context.view.get(obj)
            if vertex_data is None:
                continue
            assert isinstance(vertex_data, element_data.VertexData)
            candidates = context.view.lookup(self.definition, self.key, vertex_id=obj,
                                             direction=direction)
            if candidates is None:
                yield from self.scan.apply(context, iter([obj]))
                continue
            for edge_id in sorted(candidates & vertex_data.incident(direction)):
                edge_data = context.view.get(edge_id)
                if edge_data is not None and edge_data.label == self.definition.relation_type:
                    yield edge_id


class _EdgeVertexStep(_Step):

    _NAMES = {Direction.OUT: 'out_v', Direction.IN: 'in_v', Direction.BOTH: 'both_v'}

    def __init__(self, direction: Direction):
        self.direction = direction

    def describe(self) -> str:
        return '%s()' % self._NAMES[self.direction]

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        for obj in objects:
            if not isinstance(obj, indices.EdgeID):
                continue
            edge_data = context.view.get(obj)
            if edge_data is None:
                continue
            assert isinstance(edge_data, element_data.EdgeData)
            if self.direction.covers(Direction.OUT):
                yield edge_data.source
            if self.direction.covers(Direction.IN):
                yield edge_data.sink


# Projections

class _IdStep(_Step):

    def describe(self) -> str:
        return 'id_()'

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        for obj in objects:
            if isinstance(obj, indices.ElementID):
                yield int(obj)


class _LabelStep(_Step):

    def describe(self) -> str:
        return 'label()'

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        for obj in objects:
            if isinstance(obj, indices.ElementID):
                data = context.view.get(obj)
                if data is not None:
                    yield context.view.name_of(data.label)


class _ValuesStep(_Step):

    def __init__(self, keys: typing.Sequence):
        self.keys = tuple(keys)

    def describe(self) -> str:
        return 'values(%s)' % _describe_args(self.keys)

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        key_ids = _schema_ids(context.view, indices.PropertyKeyID, self.keys)
        for obj in objects:
            if isinstance(obj, indices.ElementID):
                data = context.view.get(obj)
                if data is None:
                    continue
                for key_id in (key_ids if self.keys else list(data.iter_property_keys())):
                    yield from data.values(key_id)
            elif isinstance(obj, _VertexPropertyRef):
                if self.keys:
                    for key_id in key_ids:
                        meta_value = obj.occurrence.get_meta(key_id)
                        if meta_value is not None:
                            yield meta_value
                else:
                    for _, meta_value in obj.occurrence.meta:
                        yield meta_value


class _ValueStep(_Step):

    def describe(self) -> str:
        return 'value()'

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        for obj in objects:
            if isinstance(obj, _VertexPropertyRef):
                yield obj.occurrence.value
            elif isinstance(obj, _EdgePropertyRef):
                yield obj.value


class _PropertiesStep(_Step):

    def __init__(self, keys: typing.Sequence):
        self.keys = tuple(keys)

    def describe(self) -> str:
        return 'properties(%s)' % _describe_args(self.keys)

    def plan(self, view: views.GraphView, constraints: Constraints) -> _Step:
        if len(self.keys) != 1 or not constraints:
            return self
        key_id = _schema_id(view, indices.PropertyKeyID, self.keys[0])
        if key_id is None:
            return self
        choice = _choose_index((definition for definition in
                                view.iter_enabled_indexes(typedefs.IndexKind.PROPERTY)
                                if definition.relation_type == key_id),
                               constraints)
        if choice is None:
            return self
        return _IndexedPropertiesStep(self, *choice)

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        key_ids = _schema_ids(context.view, indices.PropertyKeyID, self.keys)
        for obj in objects:
            if not isinstance(obj, indices.ElementID):
                continue
            data = context.view.get(obj)
            if data is None:
                continue
            selected = key_ids if self.keys else list(data.iter_property_keys())
            if isinstance(data, element_data.VertexData):
                for key_id in selected:
                    for occurrence in data.occurrences(key_id):
                        yield _VertexPropertyRef(obj, key_id, occurrence)
            else:
                assert isinstance(data, element_data.EdgeData)
                for key_id in selected:
                    if key_id in data.properties:
                        yield _EdgePropertyRef(obj, key_id, data.properties[key_id])


class _IndexedPropertiesStep(_Step):

    def __init__(self, scan: _PropertiesStep, definition: element_data.IndexData, key: tuple):
        self.scan = scan
        self.definition = definition
        self.key = key

    def describe(self) -> str:
        return '%s[index %r, key %r]' % (self.scan.describe(), self.definition.name, self.key)

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        key_id = self.definition.relation_type
        for obj in objects:
            if not isinstance(obj, indices.VertexID):
                yield from self.scan.apply(context, iter([obj]))
                continue
            vertex_data = context.view.get(obj)
            if vertex_data is None:
                continue
            assert isinstance(vertex_data, element_data.VertexData)
            candidates = context.view.lookup(self.definition, self.key, vertex_id=obj)
            if candidates is None:
                yield from self.scan.apply(context, iter([obj]))
                continue
            for occurrence in vertex_data.occurrences(key_id):
                if occurrence in candidates:
                    yield _VertexPropertyRef(obj, key_id, occurrence)


class _ValueMapStep(_Step):

    def __init__(self, keys: typing.Sequence):
        self.keys = tuple(keys)

    def describe(self) -> str:
        return 'value_map(%s)' % _describe_args(self.keys)

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        view = context.view
        key_ids = _schema_ids(view, indices.PropertyKeyID, self.keys)
        for obj in objects:
            if isinstance(obj, _VertexPropertyRef):
                yield {view.name_of(meta_key_id): meta_value
                       for meta_key_id, meta_value in obj.occurrence.meta
                       if not self.keys or meta_key_id in key_ids}
                continue
            if not isinstance(obj, indices.ElementID):
                continue
            data = view.get(obj)
            if data is None:
                continue
            selected = key_ids if self.keys else list(data.iter_property_keys())
            if isinstance(data, element_data.VertexData):
                yield {view.name_of(key_id): data.values(key_id)
                       for key_id in selected if data.values(key_id)}
            else:
                assert isinstance(data, element_data.EdgeData)
                yield {view.name_of(key_id): data.properties[key_id]
                       for key_id in selected if key_id in data.properties}


# Modifiers

class _DedupStep(_Step):

    def describe(self) -> str:
        return 'dedup()'

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        seen = set()
        for obj in objects:
            key = _dedup_key(obj)
            if key not in seen:
                seen.add(key)
                yield obj


class _LimitStep(_Step):

    def __init__(self, amount: int):
        if amount < 0:
            raise ValueError("The limit can't be negative: %r" % (amount,))
        self.amount = amount

    def describe(self) -> str:
        return 'limit(%d)' % self.amount

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        return itertools.islice(objects, self.amount)


class _CountStep(_Step):

    def describe(self) -> str:
        return 'count()'

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        yield sum(1 for _ in objects)


# Mutations

class _AddVertexStep(_Step):

    def __init__(self, label=None, start: bool = False):
        self.label = label
        self.start = start

    def describe(self) -> str:
        return 'add_v(%s)' % ('' if self.label is None else _describe_args([self.label]))

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        for _ in (iter([None]) if self.start else objects):
            vertex = context.graph.add_vertex(self.label)
            context.reload(vertex.index)
            yield vertex.index


class _AddEdgeStep(_Step):

    def __init__(self, label, start: bool = False):
        self.label = label
        self.start = start
        self.source = None
        self.sink = None

    def describe(self) -> str:
        result = 'add_e(%s)' % _describe_args([self.label])
        if self.source is not None:
            result += '.from_(%r)' % (self.source,)
        if self.sink is not None:
            result += '.to(%r)' % (self.sink,)
        return result

    @staticmethod
    def _end(end, current) -> indices.VertexID:
        if end is None:
            end = current
        if isinstance(end, elements.Vertex):
            return end.index
        if isinstance(end, indices.VertexID):
            return end
        if isinstance(end, int) and not isinstance(end, (bool, indices.UniqueID)):
            return indices.VertexID(end)
        raise exceptions.SchemaError("An edge needs a source and a sink vertex; got %r." % (end,))

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        for current in (iter([None]) if self.start else objects):
            source_id = self._end(self.source, current)
            sink_id = self._end(self.sink, current)
            edge = context.graph.add_edge(self.label, source_id, sink_id)
            context.reload(edge.index, source_id, sink_id)
            yield edge.index


class _PropertyStep(_Step):

    def __init__(self, key, value: typedefs.SimpleDataType,
                 meta: typing.Mapping[str, typedefs.SimpleDataType]):
        self.key = key
        self.value = value
        self.meta = dict(meta)

    def describe(self) -> str:
        return 'property(%s, %r)' % (_describe_args([self.key]), self.value)

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        graph = context.graph
        for obj in objects:
            if isinstance(obj, indices.VertexID):
                graph.add_vertex_property(obj, self.key, self.value, **self.meta)
                context.reload(obj)
                yield obj
            elif isinstance(obj, indices.EdgeID):
                if self.meta:
                    raise exceptions.SchemaError("Edge properties have no meta-properties.")
                graph.set_edge_property(obj, self.key, self.value)
                context.reload(obj)
                yield obj
            elif isinstance(obj, _VertexPropertyRef):
                if self.meta:
                    raise exceptions.SchemaError("Meta-properties have no meta-properties.")
                key_id = graph.resolve_key(self.key, self.value)
                if key_id is not None:
                    graph.controller.set_vertex_meta(obj.vertex_id, obj.key_id,
                                                     obj.occurrence.value, key_id, self.value)
                    context.reload(obj.vertex_id)
                    obj = obj._replace(occurrence=obj.occurrence.with_meta(key_id, self.value))
                yield obj
            else:
                raise TypeError("Properties can only be set on vertices, edges, and vertex "
                                "properties, not %r." % (obj,))


class _DropStep(_Step):

    def describe(self) -> str:
        return 'drop()'

    def apply(self, context: _Context, objects: typing.Iterator) -> typing.Iterator:
        view = context.view
        controller = context.graph.controller
        for obj in objects:
            if isinstance(obj, indices.VertexID):
                vertex_data = view.get(obj)
                if vertex_data is None:
                    continue
                assert isinstance(vertex_data, element_data.VertexData)
                edge_ids = vertex_data.incident(Direction.BOTH)
                neighbor_ids = {view.get(edge_id).other_end(obj) for edge_id in edge_ids
                                if view.get(edge_id) is not None}
                controller.remove_vertex(obj)
                context.reload(obj, *edge_ids, *neighbor_ids)
            elif isinstance(obj, indices.EdgeID):
                edge_data = view.get(obj)
                if edge_data is None:
                    continue
                assert isinstance(edge_data, element_data.EdgeData)
                controller.remove_edge(obj)
                context.reload(obj, edge_data.source, edge_data.sink)
            elif isinstance(obj, _VertexPropertyRef):
                controller.remove_vertex_values(obj.vertex_id, obj.key_id, obj.occurrence.value)
                context.reload(obj.vertex_id)
            elif isinstance(obj, _EdgePropertyRef):
                controller.remove_edge_value(obj.edge_id, obj.key_id)
                context.reload(obj.edge_id)
        yield from ()


class Traversal:
    """A lazily evaluated chain of traversal steps. Steps are added in place; each step method
    returns the traversal itself."""

    def __init__(self, graph: 'interface.GraphDBInterface', start: _Step):
        self._graph = graph
        self._steps: typing.List[_Step] = [start]
        self._results: typing.Optional[typing.Iterator] = None

    def __repr__(self) -> str:
        return '%s(%s)' % (type(self).__name__,
                           '.'.join(step.describe() for step in self._steps))

    def _add(self, step: _Step) -> 'Traversal':
        if self._results is not None:
            raise RuntimeError("Steps can't be added once iteration has started.")
        self._steps.append(step)
        return self

    # Filters

    def has_label(self, *labels) -> 'Traversal':
        """Keep the elements with one of the labels."""
        return self._add(_HasLabelStep(labels))

    def has(self, key, value=_ANY) -> 'Traversal':
        """Keep the elements that have a value for the key. If a value is given, one of the
        element's values must equal it; if a callable is given, it must accept one of them. On
        vertex properties, the key names a meta-property."""
        return self._add(_HasStep(key, value))

    def has_not(self, key) -> 'Traversal':
        return self._add(_HasNotStep(key))

    def has_id(self, *ids) -> 'Traversal':
        return self._add(_HasIdStep(ids))

    # Adjacency

    def out(self, *labels) -> 'Traversal':
        return self._add(_AdjacentStep(Direction.OUT, labels, to_edges=False))

    def in_(self, *labels) -> 'Traversal':
        return self._add(_AdjacentStep(Direction.IN, labels, to_edges=False))

    def both(self, *labels) -> 'Traversal':
        return self._add(_AdjacentStep(Direction.BOTH, labels, to_edges=False))

    def out_e(self, *labels) -> 'Traversal':
        return self._add(_AdjacentStep(Direction.OUT, labels, to_edges=True))

    def in_e(self, *labels) -> 'Traversal':
        return self._add(_AdjacentStep(Direction.IN, labels, to_edges=True))

    def both_e(self, *labels) -> 'Traversal':
        return self._add(_AdjacentStep(Direction.BOTH, labels, to_edges=True))

    def out_v(self) -> 'Traversal':
        """Move from edges to their source vertices."""
        return self._add(_EdgeVertexStep(Direction.OUT))

    def in_v(self) -> 'Traversal':
        """Move from edges to their sink vertices."""
        return self._add(_EdgeVertexStep(Direction.IN))

    def both_v(self) -> 'Traversal':
        return self._add(_EdgeVertexStep(Direction.BOTH))

    # Projections

    def id_(self) -> 'Traversal':
        return self._add(_IdStep())

    def label(self) -> 'Traversal':
        return self._add(_LabelStep())

    def values(self, *keys) -> 'Traversal':
        return self._add(_ValuesStep(keys))

    def value(self) -> 'Traversal':
        """Move from properties to their values."""
        return self._add(_ValueStep())

    def properties(self, *keys) -> 'Traversal':
        return self._add(_PropertiesStep(keys))

    def value_map(self, *keys) -> 'Traversal':
        return self._add(_ValueMapStep(keys))

    # Modifiers

    def dedup(self) -> 'Traversal':
        return self._add(_DedupStep())

    def limit(self, amount: int) -> 'Traversal':
        return self._add(_LimitStep(amount))

    def count(self) -> 'Traversal':
        return self._add(_CountStep())

    # Mutations

    def add_v(self, label=None) -> 'Traversal':
        """Add a vertex for each object."""
        return self._add(_AddVertexStep(label))

    def add_e(self, label) -> 'Traversal':
        """Add an edge for each object. The current vertex is used for whichever end isn't given
        through from_() or to()."""
        return self._add(_AddEdgeStep(label))

    def _edge_step(self) -> _AddEdgeStep:
        step = self._steps[-1]
        if not isinstance(step, _AddEdgeStep) or self._results is not None:
            raise RuntimeError("from_() and to() must directly follow add_e().")
        return step

    def from_(self, vertex) -> 'Traversal':
        self._edge_step().source = vertex
        return self

    def to(self, vertex) -> 'Traversal':
        self._edge_step().sink = vertex
        return self

    def property(self, key, value: typedefs.SimpleDataType,
                 **meta: typedefs.SimpleDataType) -> 'Traversal':
        """Set a property on each element, or a meta-property on each vertex property."""
        return self._add(_PropertyStep(key, value, meta))

    def drop(self) -> 'Traversal':
        """Remove each element or property. Produces nothing."""
        return self._add(_DropStep())

    # Planning and execution

    @staticmethod
    def _constraints(view: views.GraphView, steps: typing.Sequence[_Step]) -> Constraints:
        """The equality constraints of the filters at the start of the steps."""
        constraints = {}
        for step in steps:
            if not isinstance(step, _FilterStep):
                break
            if isinstance(step, _HasStep) and step.is_equality:
                key_id = _schema_id(view, indices.PropertyKeyID, step.key)
                if key_id is not None:
                    constraints.setdefault(key_id, step.value)
        return constraints

    def _compile(self, view: views.GraphView) -> typing.List[_Step]:
        return [step.plan(view, self._constraints(view, self._steps[position + 1:]))
                for position, step in enumerate(self._steps)]

    def _new_view(self) -> views.GraphView:
        return views.GraphView(self._graph.store, self._graph.controller)

    def explain(self) -> typing.List[str]:
        """Describe the steps as they would be executed right now, including the indexes they
        would use."""
        return [step.describe() for step in self._compile(self._new_view())]

    def _to_handle(self, context: _Context, obj):
        if isinstance(obj, _VertexPropertyRef):
            return elements.VertexProperty(self._graph, obj.vertex_id, obj.key_id,
                                           obj.occurrence)
        if isinstance(obj, _EdgePropertyRef):
            return elements.Property(elements.Edge(self._graph, obj.edge_id),
                                     context.view.name_of(obj.key_id), obj.value)
        if isinstance(obj, indices.VertexID):
            return elements.Vertex(self._graph, obj)
        if isinstance(obj, indices.EdgeID):
            return elements.Edge(self._graph, obj)
        return obj

    def _execute(self) -> typing.Iterator:
        context = _Context(self._graph, self._new_view())
        objects = iter(())
        for step in self._compile(context.view):
            objects = step.apply(context, objects)
        for obj in objects:
            yield self._to_handle(context, obj)

    def _iterator(self) -> typing.Iterator:
        if self._results is None:
            self._results = self._execute()
        return self._results

    def __iter__(self) -> typing.Iterator:
        return self._iterator()

    def __next__(self):
        return next(self._iterator())

    def next(self, amount: int = None):
        """Return the next result, or a list of up to the given amount of results. Raise a
        StopIteration if there is no next result."""
        if amount is None:
            return next(self._iterator())
        return list(itertools.islice(self._iterator(), amount))

    def to_list(self) -> list:
        return list(self._iterator())

    def to_set(self) -> set:
        return set(self._iterator())

    def iterate(self) -> 'Traversal':
        """Run the traversal for its side effects, discarding the results."""
        for _ in self._iterator():
            pass
        return self


class TraversalSource:
    """Starts traversals over the graph, as seen from the graph interface's transaction."""

    def __init__(self, graph: 'interface.GraphDBInterface'):
        self._graph = graph

    def __repr__(self) -> str:
        return '%s(%r)' % (type(self).__name__, self._graph)

    def V(self, *vertices) -> Traversal:  # pylint: disable=invalid-name
        """Start from the given vertices, or from every vertex."""
        return Traversal(self._graph, _StartStep(indices.VertexID,
                                                 [_element_id(indices.VertexID, vertex)
                                                  for vertex in vertices]))

    def E(self, *edges) -> Traversal:  # pylint: disable=invalid-name
        """Start from the given edges, or from every edge."""
        return Traversal(self._graph, _StartStep(indices.EdgeID,
                                                 [_element_id(indices.EdgeID, edge)
                                                  for edge in edges]))

    def add_v(self, label=None) -> Traversal:
        """Start by adding a vertex."""
        return Traversal(self._graph, _AddVertexStep(label, start=True))

    def add_e(self, label) -> Traversal:
        """Start by adding an edge, whose ends are given through from_() and to()."""
        return Traversal(self._graph, _AddEdgeStep(label, start=True))
