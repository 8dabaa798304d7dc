"""
Continuous, globally deduplicated write load against the base table.

Each of the N writer threads owns the values id, id + N, id + 2N, ... so the
workers never write the same (p, c) and need no coordination besides a single
shared stop flag.
"""
import itertools
import logging
import threading
import time

from cassandra import OperationTimedOut, RequestExecutionException
from cassandra.cluster import NoHostAvailable
from cassandra.connection import ConnectionException

from drill import print_msg
from tools.flaky import retry
from tools.funcutils import RateLimitedFunction

logger = logging.getLogger(__name__)

TRANSIENT_WRITE_ERRORS = (RequestExecutionException, OperationTimedOut, NoHostAvailable, ConnectionException)

PROGRESS_MESSAGE = "Wrote ~{} rows... Press Enter to stop the writes and verify."


def is_transient_write_error(error):
    return isinstance(error, TRANSIENT_WRITE_ERRORS)


class RetryingWriter(object):
    """
    Writes value into p, c and r with a bounded number of attempts.

    The statement has to be idempotent: a timed out attempt may still have been
    applied, and the upsert of an identical row leaves a single row behind.
    """

    def __init__(self, session, statement, max_attempts=8, backoff=0.064):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1, got {}".format(max_attempts))
        self.session = session
        self.statement = statement
        self.max_attempts = max_attempts
        self.backoff = backoff

    def write(self, value):
        return retry(lambda: self.session.execute(self.statement, (value, value, value)),
                     max_attempts=self.max_attempts,
                     allowed_error=is_transient_write_error,
                     sleep_seconds=self.backoff)


class WriteWorker(threading.Thread):
    """
    One writer: on every tick of a fixed-rate schedule it checks the stop flag and
    writes the next value it owns.

    A failed write ends the worker; the error is kept in `error` and handed to
    on_fatal(worker, error).
    """

    def __init__(self, worker_id, worker_count, writer, stop_flag, interval,
                 max_iterations=None, report=None, report_interval=4.0, on_fatal=None,
                 clock=time.monotonic):
        threading.Thread.__init__(self, name='writer-{}'.format(worker_id))
        self.daemon = True
        self.worker_id = worker_id
        self.worker_count = worker_count
        self.writer = writer
        self.stop_flag = stop_flag
        self.interval = interval
        self.max_iterations = max_iterations
        self.on_fatal = on_fatal
        self.clock = clock
        self.error = None
        self.iterations = 0
        self._progress = None
        # the first worker alone reports, to keep the console readable
        if worker_id == 0 and report is not None:
            self._progress = RateLimitedFunction(report, report_interval, first_call_after=1.0, clock=clock)

    def value_for(self, iteration):
        return self.worker_id + iteration * self.worker_count

    def run(self):
        try:
            self._write_until_stopped()
        except Exception as e:
            logger.error("Writer {} failed at iteration {}: {}".format(self.worker_id, self.iterations, e))
            self.error = e
            if self.on_fatal is not None:
                self.on_fatal(self, e)

    def _write_until_stopped(self):
        if self.max_iterations is None:
            iterations = itertools.count()
        else:
            iterations = range(self.max_iterations)

        next_tick = self.clock()
        for i in iterations:
            if self.stop_flag.wait(max(0.0, next_tick - self.clock())):
                logger.debug("Writer {} stopped after {} writes".format(self.worker_id, i))
                return
            next_tick += self.interval

            if self._progress is not None:
                self._progress(PROGRESS_MESSAGE.format(i * self.worker_count))

            self.writer.write(self.value_for(i))
            self.iterations = i + 1


class WritesStopper(object):
    """
    Handle returned by WriteLoadGenerator.start().

    stop() only raises the shared flag; workers notice it on their next tick.
    """

    def __init__(self, stop_flag, workers, failure):
        self._stop_flag = stop_flag
        self._failure = failure
        self._lock = threading.Lock()
        self._first_error = None
        self.failed_worker = None
        self.workers = workers

    def stop(self):
        if not self._stop_flag.is_set():
            logger.debug("Stopping {} writers".format(len(self.workers)))
        self._stop_flag.set()

    @property
    def stopped(self):
        return self._stop_flag.is_set()

    @property
    def failed(self):
        return self._failure.is_set()

    def record_failure(self, worker, error):
        with self._lock:
            if self._first_error is None:
                self._first_error = error
                self.failed_worker = worker
        self._failure.set()

    def check(self):
        if self._first_error is not None:
            logger.error("Writer {} failed after {} writes".format(self.failed_worker.worker_id,
                                                                     self.failed_worker.iterations))
            raise self._first_error

    def wait_for_failure(self, timeout=None):
        return self._failure.wait(timeout)

    def join(self, timeout=None):
        """
        Wait for the workers to finish; returns True if all of them did.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for worker in self.workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(remaining)
        return not any(worker.is_alive() for worker in self.workers)


class WriteLoadGenerator(object):
    """
    Starts writer_count WriteWorkers inserting (v, v, v) rows into keyspace.table.

    on_fatal(worker, error) is called from the failing worker's thread after the
    error was recorded on the returned WritesStopper.
    """

    def __init__(self, session, keyspace='view_test', table='tab', max_attempts=8, backoff=0.064,
                 report=print_msg, report_interval=4.0, on_fatal=None):
        self.session = session
        self.keyspace = keyspace
        self.table = table
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.report = report
        self.report_interval = report_interval
        self.on_fatal = on_fatal

    def prepare_insert(self):
        insert = self.session.prepare("INSERT INTO {}.{} (p, c, r) VALUES (?, ?, ?)".format(self.keyspace, self.table))
        insert.is_idempotent = True
        return insert

    def start(self, writer_count=512, interval=0.1, max_iterations=None):
        if writer_count < 1:
            raise ValueError("writer_count must be at least 1, got {}".format(writer_count))
        if interval < 0:
            raise ValueError("interval must not be negative, got {}".format(interval))

        writer = RetryingWriter(self.session, self.prepare_insert(),
                                max_attempts=self.max_attempts, backoff=self.backoff)
        stop_flag = threading.Event()
        workers = []
        stopper = WritesStopper(stop_flag, workers, threading.Event())

        def on_fatal(worker, error):
            stopper.record_failure(worker, error)
            if self.on_fatal is not None:
                self.on_fatal(worker, error)

        for worker_id in range(writer_count):
            workers.append(WriteWorker(worker_id, writer_count, writer, stop_flag, interval,
                                       max_iterations=max_iterations,
                                       report=self.report,
                                       report_interval=self.report_interval,
                                       on_fatal=on_fatal))

        logger.debug("Starting {} writers, one write every {}s each".format(writer_count, interval))
        for worker in workers:
            worker.start()
        return stopper


def start_writes(session, writer_count=512, interval=0.1, **kwargs):
    return WriteLoadGenerator(session, **kwargs).start(writer_count=writer_count, interval=interval)
