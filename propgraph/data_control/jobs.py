"""
Handles for background index jobs.
"""

import concurrent.futures
import enum
import threading
import typing

from propgraph.data_types import exceptions
from propgraph.data_types import typedefs


class JobState(enum.Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class IndexJob:
    """Handle for an index action running in the background. The job's result is the index status
    the action left the index in.

    Cancellable jobs (reindexing) carry a cancel event that the running job polls, and a revert
    callback that restores the index's prior status if the job is cancelled before it starts."""

    def __init__(self, index_name: str, action: typedefs.SchemaAction,
                 future: 'concurrent.futures.Future[typedefs.IndexStatus]',
                 cancel_event: threading.Event = None,
                 revert: typing.Callable[[], None] = None):
        self._index_name = index_name
        self._action = action
        self._future = future
        self._cancel_event = cancel_event
        self._revert = revert

    def __repr__(self) -> str:
        return '<%s %s %r: %s>' % (type(self).__name__, self._action.name, self._index_name,
                                   self.state.name)

    @classmethod
    def completed(cls, index_name: str, action: typedefs.SchemaAction,
                  status: typedefs.IndexStatus) -> 'IndexJob':
        """Return a job handle for an action that finished immediately."""
        future = concurrent.futures.Future()
        future.set_running_or_notify_cancel()
        future.set_result(status)
        return cls(index_name, action, future)

    @property
    def index_name(self) -> str:
        return self._index_name

    @property
    def action(self) -> typedefs.SchemaAction:
        return self._action

    @property
    def cancellable(self) -> bool:
        return self._cancel_event is not None

    @property
    def state(self) -> JobState:
        if self._future.cancelled():
            return JobState.CANCELLED
        if not self._future.done():
            return JobState.RUNNING if self._future.running() else JobState.PENDING
        error = self._future.exception()
        if error is None:
            return JobState.SUCCEEDED
        if isinstance(error, exceptions.JobCancelledError):
            return JobState.CANCELLED
        return JobState.FAILED

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> bool:
        """Request cancellation. Return whether the request was made before the job finished. A
        cancelled reindex restores the index's prior status."""
        if self._cancel_event is None:
            return self._future.cancel()
        if self._future.done():
            return False
        self._cancel_event.set()
        if self._future.cancel() and self._revert is not None:
            # It never started, so it can't clean up after itself.
            self._revert()
        return True

    def result(self, timeout: float = None) -> typedefs.IndexStatus:
        """Wait for the job to finish and return the resulting index status. Raise the job's error
        if it failed, a JobCancelledError if it was cancelled, or an IndexStatusTimeoutError if it
        did not finish in time."""
        if self._future.cancelled():
            raise exceptions.JobCancelledError(self._index_name)
        try:
            return self._future.result(timeout)
        except concurrent.futures.CancelledError:
            raise exceptions.JobCancelledError(self._index_name) from None
        except concurrent.futures.TimeoutError:
            raise exceptions.IndexStatusTimeoutError(
                "Job %s on index %r did not finish within %s seconds." %
                (self._action.name, self._index_name, timeout)
            ) from None

    def exception(self, timeout: float = None) -> typing.Optional[BaseException]:
        """Wait for the job to finish and return its error, or None if it succeeded."""
        if self._future.cancelled():
            return exceptions.JobCancelledError(self._index_name)
        try:
            return self._future.exception(timeout)
        except concurrent.futures.TimeoutError:
            raise exceptions.IndexStatusTimeoutError(
                "Job %s on index %r did not finish within %s seconds." %
                (self._action.name, self._index_name, timeout)
            ) from None

    def add_done_callback(self, callback: typing.Callable[['IndexJob'], None]) -> None:
        self._future.add_done_callback(lambda _future: callback(self))
