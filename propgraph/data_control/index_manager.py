"""
Index lifecycle management.

Every index has a status in each storage partition. Status changes are proposed by setting the
index's target status, and then acknowledged partition by partition by a propagation task running
in the background. The effective status of an index is its lowest-ranked partition status:

    INSTALLED -> REGISTERED -> ENABLED -> DISABLED -> REMOVED
    REGISTERED | ENABLED -> REINDEXING -> ENABLED (or back, if the reindex fails or is cancelled)

All status state lives in the store's data and is only touched while the registry lock is held.
The status condition shares that lock, so waiters are woken by every acknowledgement.
"""

import concurrent.futures
import logging
import threading
import time
import typing

from propgraph import config
from propgraph.data_control import jobs
from propgraph.data_structs import element_data
from propgraph.data_structs import index_entries
from propgraph.data_types import exceptions
from propgraph.data_types import indices
from propgraph.data_types import typedefs

if typing.TYPE_CHECKING:
    from propgraph.data_control import store

_logger = logging.getLogger(__name__)

Status = typedefs.IndexStatus
Action = typedefs.SchemaAction

IndexRef = typing.Union[str, indices.IndexID]


class IndexManager:
    """Owns the background workers that propagate index status changes and run reindex jobs."""

    def __init__(self, graph_store: 'store.GraphStore', settings: config.StoreSettings):
        self._store = graph_store
        self._settings = settings
        self._executor: typing.Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._stopping = threading.Event()
        self._reindex_cancel_events: typing.Dict[indices.IndexID, threading.Event] = {}
        self._status_changed = threading.Condition(graph_store.store_data.registry_lock)

    @property
    def _data(self):
        return self._store.store_data

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        """Start the worker pool, and resume any status propagation that was interrupted."""
        with self._executor_lock:
            if self._executor is not None:
                return
            self._stopping.clear()
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self._settings.index_workers,
                thread_name_prefix='propgraph-index'
            )
        _logger.info("Index manager started with %d workers.", self._settings.index_workers)
        self._resume()

    def shutdown(self) -> None:
        """Cancel running reindex jobs, stop propagation, and wait for the workers to finish."""
        with self._executor_lock:
            executor = self._executor
            self._executor = None
        if executor is None:
            return
        self._stopping.set()
        with self._status_changed:
            for cancel_event in self._reindex_cancel_events.values():
                cancel_event.set()
        executor.shutdown(wait=True)
        _logger.info("Index manager stopped.")

    def attach(self) -> None:
        """Pick up the store's data after it has been replaced, e.g. by loading a save file."""
        self._status_changed = threading.Condition(self._data.registry_lock)
        with self._status_changed:
            # A reindex that was running when the data was saved is gone.
            for index_id, prior in list(self._data.prior_status_map.items()):
                self._set_all(index_id, prior)
                del self._data.prior_status_map[index_id]
        if self.running:
            self._resume()

    def _resume(self) -> None:
        with self._status_changed:
            unfinished = [index_id for index_id, target in self._data.index_target_map.items()
                          if any(status is not target
                                 for status in self._data.index_status_map[index_id])]
        for index_id in unfinished:
            _logger.info("Resuming status propagation for %r.", index_id)
            self._submit(self._propagate, index_id, self._data.index_target_map[index_id])

    def _submit(self, function, *args) -> concurrent.futures.Future:
        with self._executor_lock:
            if self._executor is None:
                raise exceptions.ConnectionClosedError("The index manager is not running.")
            return self._executor.submit(function, *args)

    # Lookup

    def resolve(self, index: IndexRef) -> indices.IndexID:
        """Return the ID of the index with the given name or ID."""
        if isinstance(index, indices.IndexID):
            if index not in self._data.index_status_map:
                raise exceptions.NotFoundError(index)
            return index
        index_id = self._data.name_allocator_map[indices.IndexID].get_index(index)
        if index_id is None:
            raise exceptions.NotFoundError("No index named %r." % (index,))
        return index_id

    def get_definition(self, index: IndexRef) -> element_data.IndexData:
        index_id = self.resolve(index)
        with self._status_changed:
            return self._data.registry_map[indices.IndexID][index_id]

    def iter_indexes(self) -> typing.List[element_data.IndexData]:
        """Return the definitions of all indexes, including retired ones."""
        with self._status_changed:
            return [self._data.registry_map[indices.IndexID][index_id]
                    for index_id in sorted(self._data.index_status_map)]

    def status(self, index: IndexRef) -> Status:
        """The effective status of the index: its lowest-ranked partition status."""
        index_id = self.resolve(index)
        with self._status_changed:
            return self._data.effective_status(index_id)

    def partition_statuses(self, index: IndexRef) -> typing.Tuple[Status, ...]:
        index_id = self.resolve(index)
        with self._status_changed:
            return tuple(self._data.index_status_map[index_id])

    def count_entries(self, index: IndexRef) -> int:
        """The number of entries the index holds. Removed indexes hold none."""
        index_id = self.resolve(index)
        with self._status_changed:
            entries = self._data.index_entries_map.get(index_id, None)
            return 0 if entries is None else len(entries)

    def _name(self, index_id: indices.IndexID) -> str:
        return self._data.registry_map[indices.IndexID][index_id].name

    # Status propagation

    def _set_all(self, index_id: indices.IndexID, status: Status) -> None:
        assert self._data.registry_lock.locked()
        self._data.index_status_map[index_id] = [status] * self._data.partitions
        self._data.index_target_map[index_id] = status
        self._status_changed.notify_all()

    def _propose(self, index_id: indices.IndexID, target: Status,
                 action: Action) -> jobs.IndexJob:
        assert self._data.registry_lock.locked()
        self._data.index_target_map[index_id] = target
        _logger.info("Index %r: proposed %s.", self._name(index_id), target.name)
        future = self._submit(self._propagate, index_id, target)
        return jobs.IndexJob(self._name(index_id), action, future)

    def _propagate(self, index_id: indices.IndexID, target: Status) -> Status:
        """Acknowledge the target status partition by partition. Stop early if a different status
        is proposed in the meantime."""
        for partition in range(self._data.partitions):
            if self._settings.propagation_delay and \
                    self._stopping.wait(self._settings.propagation_delay):
                break
            with self._status_changed:
                if self._data.index_target_map.get(index_id) is not target:
                    break
                statuses = self._data.index_status_map[index_id]
                if partition >= len(statuses):
                    break
                statuses[partition] = target
                if target is Status.REMOVED and all(status is Status.REMOVED
                                                    for status in statuses):
                    # Nothing can read the entries anymore, so they can go.
                    self._data.index_entries_map.pop(index_id, None)
                self._status_changed.notify_all()
        with self._status_changed:
            effective = self._data.effective_status(index_id)
        if effective is target:
            _logger.info("Index %r is now %s.", self._name(index_id), target.name)
        return effective

    def await_status(self, index: IndexRef, target: Status, timeout: float = None,
                     cancel: threading.Event = None) -> Status:
        """Block until every partition reports the index at or past the target status, and return
        the index's effective status. Raise an IndexStatusTimeoutError if that doesn't happen within
        the timeout (by default the configured await timeout), or a JobCancelledError if the cancel
        event is set first. Waiting has no effect on the index itself."""
        index_id = self.resolve(index)
        if timeout is None:
            timeout = self._settings.await_timeout
        deadline = time.monotonic() + timeout
        with self._status_changed:
            while True:
                statuses = self._data.index_status_map[index_id]
                if all(status.at_or_past(target) for status in statuses):
                    return self._data.effective_status(index_id)
                if cancel is not None and cancel.is_set():
                    raise exceptions.JobCancelledError(
                        "Stopped waiting for index %r to reach %s." %
                        (self._name(index_id), target.name)
                    )
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise exceptions.IndexStatusTimeoutError(
                        "Index %r did not reach %s within %s seconds; partition statuses: %s" %
                        (self._name(index_id), target.name, timeout,
                         ', '.join(status.name for status in statuses))
                    )
                # The cancel event can't notify the condition, so poll it.
                self._status_changed.wait(remaining if cancel is None else min(remaining, 0.05))

    # Actions

    def register_new_index(self, index_id: indices.IndexID) -> typing.Optional[jobs.IndexJob]:
        """Start registering an index that was just committed. If the manager isn't running, the
        index stays INSTALLED until it starts."""
        with self._status_changed:
            if self._data.index_target_map.get(index_id) is not Status.INSTALLED:
                return None
            self._data.index_target_map[index_id] = Status.REGISTERED
            if not self.running:
                return None
            return self._propose(index_id, Status.REGISTERED, Action.REGISTER_INDEX)

    def update_index(self, index: IndexRef, action: Action) -> jobs.IndexJob:
        """Request an index action. Every action returns a job handle, whose result is the status
        the action leaves the index in."""
        if action is Action.REGISTER_INDEX:
            return self.register_index(index)
        if action is Action.REINDEX:
            return self.reindex(index)
        if action is Action.ENABLE_INDEX:
            return self.enable_index(index)
        if action is Action.DISABLE_INDEX:
            return self.disable_index(index)
        if action is Action.REMOVE_INDEX:
            return self.remove_index(index)
        raise ValueError("Unrecognized schema action: %r" % (action,))

    def _illegal(self, index_id: indices.IndexID, action: Action,
                 status: Status) -> exceptions.IndexStateError:
        return exceptions.IndexStateError("Cannot %s index %r while it is %s." %
                                          (action.name, self._name(index_id), status.name))

    def register_index(self, index: IndexRef) -> jobs.IndexJob:
        index_id = self.resolve(index)
        with self._status_changed:
            status = self._data.effective_status(index_id)
            target = self._data.index_target_map[index_id]
            if status is Status.INSTALLED and target in (Status.INSTALLED, Status.REGISTERED):
                return self._propose(index_id, Status.REGISTERED, Action.REGISTER_INDEX)
            if status in (Status.REGISTERED, Status.REINDEXING, Status.ENABLED):
                return jobs.IndexJob.completed(self._name(index_id), Action.REGISTER_INDEX,
                                               status)
            raise self._illegal(index_id, Action.REGISTER_INDEX, status)

    def enable_index(self, index: IndexRef) -> jobs.IndexJob:
        """Enable a registered index without scanning existing data. Only correct for indexes that
        cover no data committed before they were registered."""
        index_id = self.resolve(index)
        with self._status_changed:
            status = self._data.effective_status(index_id)
            target = self._data.index_target_map[index_id]
            if status is Status.ENABLED and target is Status.ENABLED:
                return jobs.IndexJob.completed(self._name(index_id), Action.ENABLE_INDEX, status)
            if status is Status.REGISTERED and target in (Status.REGISTERED, Status.ENABLED):
                return self._propose(index_id, Status.ENABLED, Action.ENABLE_INDEX)
            raise self._illegal(index_id, Action.ENABLE_INDEX, status)

    def disable_index(self, index: IndexRef) -> jobs.IndexJob:
        """Start retiring an index. Disabling an index that is already disabled does nothing."""
        index_id = self.resolve(index)
        with self._status_changed:
            status = self._data.effective_status(index_id)
            target = self._data.index_target_map[index_id]
            if status is Status.DISABLED or target is Status.DISABLED:
                if status is Status.DISABLED:
                    return jobs.IndexJob.completed(self._name(index_id), Action.DISABLE_INDEX,
                                                   status)
                return self._propose(index_id, Status.DISABLED, Action.DISABLE_INDEX)
            if status in (Status.INSTALLED, Status.REGISTERED, Status.ENABLED):
                return self._propose(index_id, Status.DISABLED, Action.DISABLE_INDEX)
            raise self._illegal(index_id, Action.DISABLE_INDEX, status)

    def remove_index(self, index: IndexRef) -> jobs.IndexJob:
        """Finish retiring an index. Every partition must already be DISABLED. Removing an index
        that is already removed does nothing."""
        index_id = self.resolve(index)
        with self._status_changed:
            statuses = self._data.index_status_map[index_id]
            status = self._data.effective_status(index_id)
            target = self._data.index_target_map[index_id]
            if status is Status.REMOVED:
                return jobs.IndexJob.completed(self._name(index_id), Action.REMOVE_INDEX, status)
            if target is Status.REMOVED or all(partition_status is Status.DISABLED
                                               for partition_status in statuses):
                return self._propose(index_id, Status.REMOVED, Action.REMOVE_INDEX)
            raise self._illegal(index_id, Action.REMOVE_INDEX, status)

    # Reindexing

    def reindex(self, index: IndexRef) -> jobs.IndexJob:
        """Rebuild the index's entries from the committed data, and enable it. While the job runs
        the index is REINDEXING; if the job fails or is cancelled, the index returns to the status
        it had before."""
        index_id = self.resolve(index)
        with self._status_changed:
            status = self._data.effective_status(index_id)
            target = self._data.index_target_map[index_id]
            if status not in (Status.REGISTERED, Status.ENABLED) or target is not status:
                raise self._illegal(index_id, Action.REINDEX, status)
            definition = self._data.registry_map[indices.IndexID][index_id]
            snapshot = dict(self._data.registry_map[definition.element_type])
            sequence = self._data.commit_sequence
            self._data.prior_status_map[index_id] = status
            self._set_all(index_id, Status.REINDEXING)
            cancel_event = threading.Event()
            self._reindex_cancel_events[index_id] = cancel_event
            try:
                future = self._submit(self._run_reindex, index_id, snapshot, sequence,
                                      cancel_event)
            except exceptions.ConnectionClosedError:
                self._revert_reindex(index_id)
                raise
        _logger.info("Index %r: reindexing %d elements from sequence %d.",
                     definition.name, len(snapshot), sequence)
        return jobs.IndexJob(definition.name, Action.REINDEX, future, cancel_event,
                             lambda: self._abandon_reindex(index_id))

    def _revert_reindex(self, index_id: indices.IndexID) -> Status:
        assert self._data.registry_lock.locked()
        self._reindex_cancel_events.pop(index_id, None)
        prior = self._data.prior_status_map.pop(index_id, None)
        if prior is not None:
            self._set_all(index_id, prior)
        return prior

    def _abandon_reindex(self, index_id: indices.IndexID) -> None:
        with self._status_changed:
            prior = self._revert_reindex(index_id)
        _logger.info("Index %r: reindex cancelled; back to %s.", self._name(index_id),
                     prior.name if prior else None)

    def _run_reindex(self, index_id: indices.IndexID,
                     snapshot: typing.Mapping[indices.ElementID, element_data.ElementData],
                     sequence: int, cancel_event: threading.Event) -> Status:
        try:
            return self._reindex(index_id, snapshot, sequence, cancel_event)
        except exceptions.JobCancelledError:
            self._abandon_reindex(index_id)
            raise
        except exceptions.GraphError as error:
            with self._status_changed:
                prior = self._revert_reindex(index_id)
            _logger.warning("Index %r: reindex failed (%s); back to %s.", self._name(index_id),
                            error, prior.name if prior else None)
            raise

    def _reindex(self, index_id: indices.IndexID,
                 snapshot: typing.Mapping[indices.ElementID, element_data.ElementData],
                 sequence: int, cancel_event: threading.Event) -> Status:
        definition = self._data.registry_map[indices.IndexID][index_id]
        element_type = definition.element_type
        scratch = index_entries.new_entries(definition)

        # The expensive part runs without the lock; commits keep maintaining the live entries in
        # the meantime.
        for position, data in enumerate(snapshot.values()):
            if position % 256 == 0 and cancel_event.is_set():
                raise exceptions.JobCancelledError(definition.name)
            scratch.add_entries(scratch.entries_for(data))

        with self._status_changed:
            if cancel_event.is_set():
                raise exceptions.JobCancelledError(definition.name)
            registry = self._data.registry_map[element_type]
            touched = self._data.touched_since(sequence)
            if touched is None:
                # The change log has been truncated past the snapshot. Element data is replaced,
                # never modified, on every change, so identity tells what changed.
                touched = {element_id for element_id in snapshot.keys() | registry.keys()
                           if snapshot.get(element_id) is not registry.get(element_id)}
            for element_id in touched:
                if not isinstance(element_id, element_type):
                    continue
                scratch.remove_entries(scratch.entries_for(snapshot.get(element_id)))
                scratch.add_entries(scratch.entries_for(registry.get(element_id)))
            if definition.unique:
                assert isinstance(scratch, index_entries.CompositeIndexEntries)
                for key, element_ids in scratch.iter_duplicates():
                    raise exceptions.UniquenessViolationError(definition.name, key,
                                                              *sorted(element_ids))
            self._data.index_entries_map[index_id].replace(scratch.iter_entries())
            self._data.prior_status_map.pop(index_id, None)
            self._reindex_cancel_events.pop(index_id, None)
            self._set_all(index_id, Status.ENABLED)
            entry_count = len(self._data.index_entries_map[index_id])
        _logger.info("Index %r: reindexed with %d entries; now ENABLED.", definition.name,
                     entry_count)
        return Status.ENABLED
