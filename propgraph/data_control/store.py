"""The GraphStore implements the behavior of the GraphDB instance. It serves as an abstraction to
hide the details of data storage and persistence from the GraphDB. The GraphDB provides the
high-level interface to the graph data, while calling into the GraphStore to perform the actual data
transformations. The GraphDB operates at the level of handles to graph elements, while the
GraphStore operates at the level of element indices and primitive data types. All interactions with
the underlying graph elements' data structures are managed by the GraphStore and its transactions,
leaving the GraphDB to focus on providing a friendly external interface.

Committed changes arrive at the store as mutation batches. A batch is validated and applied
atomically while the registry lock is held: the element registries, name allocators, and every
maintained index change together, and a record of the change is appended to the change log."""

import datetime
import glob
import logging
import os.path
import pickle
import typing

import propgraph.data_control.base as interface
from propgraph import config
from propgraph.data_control import index_manager as index_manager_module
from propgraph.data_structs import element_data
from propgraph.data_structs import index_entries
from propgraph.data_structs import mutations
from propgraph.data_structs import store_data
from propgraph.data_structs import transaction_data
from propgraph.data_types import exceptions
from propgraph.data_types import indices
from propgraph.data_types import typedefs

_logger = logging.getLogger(__name__)

PersistentIDType = typing.TypeVar('PersistentIDType', bound=indices.PersistentDataID)

SAVE_FILE_EXTENSION = '.propgraph'

Registries = typing.Mapping[typing.Type[indices.PersistentDataID],
                            typing.Mapping[indices.PersistentDataID, element_data.ElementData]]


class StoreSnapshot(typing.NamedTuple):
    """A point-in-time view of the committed state of the store. Element data is never modified
    after it is committed, so the registry copies stay consistent however long they are kept."""

    sequence: int
    registries: Registries
    enabled_indexes: typing.FrozenSet[indices.IndexID]


class GraphStore(interface.BaseController[store_data.StoreData]):
    """The internal-facing, protected interface of the graph database."""

    def __init__(self, settings: config.StoreSettings = None, *,
                 data: store_data.StoreData = None):
        self.settings = settings or config.StoreSettings()
        super().__init__(data or store_data.StoreData(self.settings.partitions,
                                                      self.settings.change_log_size))
        self.save_dir = self.settings.save_dir
        self.index_manager = index_manager_module.IndexManager(self, self.settings)

    def __repr__(self) -> str:
        return '<%s at sequence %d>' % (type(self).__name__, self._data.commit_sequence)

    @property
    def store_data(self) -> store_data.StoreData:
        return self._data

    @property
    def commit_sequence(self) -> int:
        return self._data.commit_sequence

    def new_transaction_data(self) -> transaction_data.TransactionData:
        """Create and return a new TransactionData instance for use by a new transaction."""
        return transaction_data.TransactionData(self._data)

    # Committing

    def _lookup(self, batch: mutations.MutationBatch,
                index: 'PersistentIDType') -> typing.Optional[element_data.ElementData]:
        """The element data as it will be once the batch is applied."""
        index_type = type(index)
        if index in batch.deletions[index_type]:
            return None
        data = batch.upserts[index_type].get(index, None)
        if data is None:
            data = self._data.registry_map[index_type].get(index, None)
        return data

    def _require_schema(self, batch: mutations.MutationBatch, schema_id: indices.SchemaID,
                        index_type: typing.Type[indices.SchemaID]) -> element_data.SchemaData:
        if not isinstance(schema_id, index_type):
            raise exceptions.SchemaError("Expected a %s, got %r." %
                                         (index_type.__name__, schema_id))
        data = self._lookup(batch, schema_id)
        if data is None:
            raise exceptions.SchemaError("Unknown schema element: %r" % (schema_id,))
        return data

    def _validate_value(self, batch: mutations.MutationBatch, key_id: indices.PropertyKeyID,
                        value: typedefs.SimpleDataType) -> element_data.PropertyKeyData:
        key_data = self._require_schema(batch, key_id, indices.PropertyKeyID)
        assert isinstance(key_data, element_data.PropertyKeyData)
        try:
            coerced = typedefs.coerce_value(key_data.data_type, value)
        except TypeError as error:
            raise exceptions.SchemaError("Invalid value for property key %r: %s" %
                                         (key_data.name, error)) from None
        if type(coerced) is not type(value):
            raise exceptions.SchemaError("Value %r was not stored as a %s for property key %r." %
                                         (value, key_data.data_type.__name__, key_data.name))
        return key_data

    def _validate(self, batch: mutations.MutationBatch) -> None:
        """Check the batch against the schema, as it will be once the batch is applied."""
        for index_type, names in batch.names.items():
            allocator = self._data.name_allocator_map[index_type]
            for name, index in names.items():
                if allocator.reserved_by(name) not in (None, batch.owner) or \
                        allocator.get_index(name) not in (None, index):
                    raise allocator.duplicate_error("Name %r is already taken." % (name,))

        for data in batch.iter_upserts():
            if isinstance(data, element_data.VertexData):
                self._require_schema(batch, data.label, indices.VertexLabelID)
                for key_id, occurrences in data.properties.items():
                    if not occurrences:
                        continue
                    key_data = None
                    for occurrence in occurrences:
                        key_data = self._validate_value(batch, key_id, occurrence.value)
                        for meta_key_id, meta_value in occurrence.meta:
                            self._validate_value(batch, meta_key_id, meta_value)
                    values = [occurrence.value for occurrence in occurrences]
                    if key_data.cardinality is typedefs.Cardinality.SINGLE and len(values) > 1:
                        raise exceptions.SchemaError("Property key %r holds a single value." %
                                                     (key_data.name,))
                    if key_data.cardinality is typedefs.Cardinality.SET and \
                            len(set(values)) != len(values):
                        raise exceptions.SchemaError("Property key %r holds distinct values." %
                                                     (key_data.name,))
            elif isinstance(data, element_data.EdgeData):
                self._require_schema(batch, data.label, indices.EdgeLabelID)
                for vertex_id in (data.source, data.sink):
                    if self._lookup(batch, vertex_id) is None:
                        raise exceptions.NotFoundError(vertex_id)
                for key_id, value in data.properties.items():
                    key_data = self._validate_value(batch, key_id, value)
                    if key_data.cardinality is not typedefs.Cardinality.SINGLE:
                        raise exceptions.SchemaError("Edge properties must have SINGLE "
                                                     "cardinality: %r" % (key_data.name,))
            elif isinstance(data, element_data.IndexData):
                for key_id in data.keys:
                    self._require_schema(batch, key_id, indices.PropertyKeyID)
                if data.relation_type is not None:
                    self._require_schema(batch, data.relation_type, type(data.relation_type))
            if isinstance(data, element_data.SchemaData) and \
                    batch.names[type(data.index)].get(data.name, None) != data.index and \
                    self._data.name_allocator_map[type(data.index)].get_index(data.name) != \
                    data.index:
                raise exceptions.SchemaError("Schema element %r has no name allocated." % (data,))

    def _index_changes(self, batch: mutations.MutationBatch) \
            -> typing.List[typing.Tuple[index_entries.IndexEntries, typing.Set, typing.Set]]:
        """Compute the entries each maintained index loses and gains from the batch. Raise a
        UniquenessViolationError if an enabled unique index would be breached."""
        changes = []
        for index_id, entries in self._data.index_entries_map.items():
            if not self._data.is_maintained(index_id):
                continue
            definition = entries.definition
            element_type = definition.element_type
            removed = set()
            added = set()
            for element_id in batch.touched(element_type):
                old = entries.entries_for(self._data.registry_map[element_type].get(element_id))
                new = entries.entries_for(self._lookup(batch, element_id))
                removed |= old - new
                added |= new - old
            if not (removed or added):
                continue
            if definition.unique and \
                    self._data.effective_status(index_id) is typedefs.IndexStatus.ENABLED:
                assert isinstance(entries, index_entries.CompositeIndexEntries)
                conflict = entries.find_conflicts(sorted(added, key=repr), removed)
                if conflict is not None:
                    key, element_ids = conflict
                    raise exceptions.UniquenessViolationError(definition.name, key, *element_ids)
            changes.append((entries, removed, added))
        return changes

    def _create_indexes(self, batch: mutations.MutationBatch) -> typing.List[indices.IndexID]:
        """Set up entry storage and status for the indexes the batch defines. Return the ones that
        still need to be registered."""
        pending = []
        for index_id, definition in batch.upserts[indices.IndexID].items():
            if index_id in self._data.index_status_map:
                continue
            assert isinstance(definition, element_data.IndexData)
            entries = index_entries.new_entries(definition)
            self._data.index_entries_map[index_id] = entries
            # An index over schema that is defined in the same batch can't cover any existing
            # data, so there is nothing to register or reindex.
            fresh = all(key_id in batch.upserts[indices.PropertyKeyID]
                        for key_id in definition.keys)
            if definition.relation_type is not None:
                fresh = fresh and \
                    definition.relation_type in batch.upserts[type(definition.relation_type)]
            if fresh:
                status = typedefs.IndexStatus.ENABLED
                for data in batch.upserts[definition.element_type].values():
                    entries.add_entries(entries.entries_for(data))
            else:
                status = typedefs.IndexStatus.INSTALLED
                pending.append(index_id)
            self._data.index_status_map[index_id] = [status] * self._data.partitions
            self._data.index_target_map[index_id] = status
            _logger.info("Index %r created with status %s.", definition.name, status.name)
        return pending

    def apply_mutations(self, batch: mutations.MutationBatch) -> mutations.ChangeRecord:
        """Validate the batch and apply it atomically. Either every mutation in the batch takes
        effect, together with the index updates and the change log record, or none does."""
        with self._data.registry_lock:
            self._validate(batch)
            changes = self._index_changes(batch)

            # Nothing can fail past this point.
            for index_type, names in batch.names.items():
                if names:
                    self._data.name_allocator_map[index_type].update(names, batch.owner)
            for data in batch.iter_upserts():
                index_type = type(data.index)
                self._data.registry_map[index_type][data.index] = data
                if data.index not in self._data.access_map[index_type]:
                    self._data.access_map[index_type][data.index] = \
                        self._data.new_access(data.index)
                self._data.id_allocator_map[index_type].skip_past(data.index)
            for index in batch.iter_deletions():
                self._data.registry_map[type(index)].pop(index, None)
                self._data.access_map[type(index)].pop(index, None)
            for entries, removed, added in changes:
                entries.remove_entries(removed)
                entries.add_entries(added)
            pending_indexes = self._create_indexes(batch)

            self._data.commit_sequence += 1
            record = mutations.ChangeRecord(self._data.commit_sequence,
                                            tuple(batch.iter_upserts()),
                                            frozenset(batch.iter_deletions()))
            self._data.change_log.append(record)
        _logger.debug("Committed %r as sequence %d.", batch, record.sequence)
        for index_id in pending_indexes:
            self.index_manager.register_new_index(index_id)
        return record

    # Reading committed state

    def snapshot(self) -> StoreSnapshot:
        """Take a consistent point-in-time snapshot of the committed state."""
        with self._data.registry_lock:
            registries = {index_type: dict(registry)
                          for index_type, registry in self._data.registry_map.items()}
            enabled = frozenset(index_id for index_id in self._data.index_status_map
                                if self._data.effective_status(index_id) is
                                typedefs.IndexStatus.ENABLED)
            return StoreSnapshot(self._data.commit_sequence, registries, enabled)

    def scan_all(self, index_type: typing.Type['PersistentIDType']) \
            -> typing.Iterator[element_data.ElementData]:
        """Lazily iterate over the data of every element of the given type, as committed when the
        iteration starts."""
        with self._data.registry_lock:
            registry = dict(self._data.registry_map[index_type])
        yield from registry.values()

    def lookup_by_index(self, index_id: indices.IndexID, key: typing.Sequence, *,
                        vertex_id: indices.VertexID = None,
                        direction: typedefs.Direction = typedefs.Direction.BOTH,
                        at_sequence: int = None) -> typing.Optional[typing.FrozenSet]:
        """Look up the members an enabled index holds for the key tuple: element IDs for composite
        and edge indexes, property occurrences for property indexes. Relation index lookups are
        confined to the given vertex. Return None if the index isn't enabled, or if the store has
        moved past the given commit sequence."""
        with self._data.registry_lock:
            if at_sequence is not None and at_sequence != self._data.commit_sequence:
                return None
            if index_id not in self._data.index_status_map or \
                    self._data.effective_status(index_id) is not typedefs.IndexStatus.ENABLED:
                return None
            entries = self._data.index_entries_map[index_id]
            if isinstance(entries, index_entries.CompositeIndexEntries):
                return entries.lookup(tuple(key))
            if isinstance(entries, index_entries.EdgeIndexEntries):
                return entries.lookup(vertex_id, direction, tuple(key))
            assert isinstance(entries, index_entries.PropertyIndexEntries)
            return entries.lookup(vertex_id, tuple(key))

    # Change log

    def changes_since(self, sequence: int) -> typing.List[mutations.ChangeRecord]:
        """Return the change records of every commit after the given sequence number. Raise a
        ValueError if the change log no longer reaches back that far."""
        with self._data.registry_lock:
            records = [record for record in self._data.change_log if record.sequence > sequence]
            if sequence < self._data.commit_sequence and \
                    (not records or records[0].sequence != sequence + 1):
                raise ValueError("The change log no longer reaches back to sequence %d." %
                                 sequence)
            return records

    def replay(self, records: typing.Iterable[mutations.ChangeRecord]) -> int:
        """Apply change records taken from another store's change log, in order. Records that
        were already applied are skipped. Return the number of records applied."""
        applied = 0
        for record in records:
            if record.sequence <= self._data.commit_sequence:
                continue
            if record.sequence != self._data.commit_sequence + 1:
                raise ValueError("Missing change records between sequence %d and %d." %
                                 (self._data.commit_sequence, record.sequence))
            self.apply_mutations(mutations.MutationBatch.from_record(record))
            applied += 1
        return applied

    # Persistence

    def save(self, save_dir: str = None) -> str:
        """Save the store's data to disk. Return the path of the save file."""
        save_dir = save_dir or self.save_dir
        if save_dir is None:
            raise ValueError("The save_dir parameter must be provided when there is no default "
                             "save_dir set.")
        if not os.path.isdir(save_dir):
            os.makedirs(save_dir)
        time_stamp = datetime.datetime.now().strftime('%Y%m%d_%H%M%S')
        save_name = time_stamp + SAVE_FILE_EXTENSION
        counter = 1
        while save_name in os.listdir(save_dir):
            counter += 1
            save_name = '%s_%s%s' % (time_stamp, counter, SAVE_FILE_EXTENSION)
        save_path = os.path.join(save_dir, save_name)
        assert not os.path.exists(save_path)
        with self._data.registry_lock:
            content = pickle.dumps(self._data, protocol=pickle.HIGHEST_PROTOCOL)
            sequence = self._data.commit_sequence
        with open(save_path, 'wb') as save_file:
            save_file.write(content)
        _logger.info("Saved store at sequence %d to %s", sequence, save_path)
        return save_path

    def load(self, save_dir: str = None, *, clear_expired: bool = False) -> None:
        """Load the most recently saved version of the store's data from disk. Corrupted or
        older versions of the data are skipped. If clear_expired is set, corrupted and older
        versions of the data are removed. If no valid version can be found, an exception is raised.
        """
        save_dir = save_dir or self.save_dir
        if save_dir is None:
            raise ValueError("The save_dir parameter must be provided when there is no default "
                             "save_dir set.")
        save_paths = glob.glob(os.path.join(save_dir, '*_*' + SAVE_FILE_EXTENSION))

        sort_keys = {}
        for save_path in save_paths:
            save_name = os.path.basename(save_path)
            components = save_name[:-len(SAVE_FILE_EXTENSION)].split('_')
            if len(components) == 2:
                save_date, save_time = components
                save_sequence = '1'
            elif len(components) == 3:
                save_date, save_time, save_sequence = components
            else:
                _logger.warning("Unrecognized file in save dir: %s", save_path)
                continue
            if save_date.isdigit() and save_time.isdigit() and save_sequence.isdigit():
                sort_keys[save_path] = (int(save_date), int(save_time), int(save_sequence))
            else:
                _logger.warning("Unrecognized file in save dir: %s", save_path)

        # Load the newest file that has good data.
        data = None
        expired = []
        for save_path in sorted(sort_keys, key=sort_keys.get, reverse=True):
            if data is not None:
                expired.append(save_path)
                continue
            try:
                with open(save_path, 'rb') as save_file:
                    data = pickle.load(save_file)
                _logger.info("Successfully loaded save file: %s", save_path)
            except (pickle.UnpicklingError, EOFError):
                _logger.warning("Save file was corrupted: %s", save_path)
                expired.append(save_path)
        if clear_expired:
            for path in expired:
                try:
                    os.remove(path)
                except OSError:
                    _logger.warning("Failed to remove expired save file: %s", path)
        if not isinstance(data, store_data.StoreData):
            raise FileNotFoundError("No valid previous save files identified.")
        data.resize(self.settings.partitions, self.settings.change_log_size)
        self._data = data
        self.index_manager.attach()
