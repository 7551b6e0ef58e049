import concurrent.futures
import threading
from unittest import TestCase

from propgraph.data_control.jobs import IndexJob, JobState
from propgraph.data_types.exceptions import IndexStatusTimeoutError, JobCancelledError
from propgraph.data_types.typedefs import IndexStatus, SchemaAction


class TestIndexJob(TestCase):

    def test_completed(self):
        job = IndexJob.completed('byName', SchemaAction.DISABLE_INDEX, IndexStatus.DISABLED)
        self.assertTrue(job.done())
        self.assertIs(JobState.SUCCEEDED, job.state)
        self.assertIs(IndexStatus.DISABLED, job.result())
        self.assertIsNone(job.exception())
        self.assertFalse(job.cancellable)
        self.assertFalse(job.cancel())
        self.assertIn('DISABLE_INDEX', repr(job))

    def test_pending_and_timeout(self):
        future = concurrent.futures.Future()
        job = IndexJob('byName', SchemaAction.ENABLE_INDEX, future)
        self.assertIs(JobState.PENDING, job.state)
        with self.assertRaises(IndexStatusTimeoutError):
            job.result(0.01)
        future.set_running_or_notify_cancel()
        self.assertIs(JobState.RUNNING, job.state)
        future.set_result(IndexStatus.ENABLED)
        self.assertIs(IndexStatus.ENABLED, job.result())

    def test_failed(self):
        future = concurrent.futures.Future()
        job = IndexJob('byName', SchemaAction.REINDEX, future, threading.Event())
        future.set_running_or_notify_cancel()
        future.set_exception(ValueError('broken'))
        self.assertIs(JobState.FAILED, job.state)
        with self.assertRaises(ValueError):
            job.result()

    def test_cancel_before_start(self):
        reverted = []
        event = threading.Event()
        job = IndexJob('byName', SchemaAction.REINDEX, concurrent.futures.Future(), event,
                       lambda: reverted.append(True))
        self.assertTrue(job.cancel())
        self.assertTrue(event.is_set())
        self.assertEqual([True], reverted)
        self.assertIs(JobState.CANCELLED, job.state)
        with self.assertRaises(JobCancelledError):
            job.result()
        self.assertIsInstance(job.exception(), JobCancelledError)

    def test_cancel_while_running(self):
        reverted = []
        event = threading.Event()
        future = concurrent.futures.Future()
        future.set_running_or_notify_cancel()
        job = IndexJob('byName', SchemaAction.REINDEX, future, event,
                       lambda: reverted.append(True))
        # The running job notices the event and cleans up after itself.
        self.assertTrue(job.cancel())
        self.assertTrue(event.is_set())
        self.assertEqual([], reverted)
        future.set_exception(JobCancelledError('byName'))
        self.assertIs(JobState.CANCELLED, job.state)

    def test_done_callback(self):
        future = concurrent.futures.Future()
        job = IndexJob('byName', SchemaAction.ENABLE_INDEX, future)
        finished = []
        job.add_done_callback(finished.append)
        future.set_result(IndexStatus.ENABLED)
        self.assertEqual([job], finished)
