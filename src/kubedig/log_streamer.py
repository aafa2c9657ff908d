"""
Container discovery and concurrent log streaming.

The SourceMatcher decides which (pod, container) pairs to tail. A
StreamSupervisor then runs one StreamWorker per pair on a thread pool; every
worker feeds sanitized LogRecords into a single RecordChannel of capacity one,
which is drained by the live view.

Cancellation is cooperative: every worker polls its log feed with a bounded
timeout and checks the session's cancel event between polls, so teardown
takes at most one read timeout per worker.
"""

import enum
import logging
import queue
import re
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import List, Optional

from .errors import ConfigurationError
from .records import LogRecord, color_for, source_key

logger = logging.getLogger(__name__)

# How often a blocked hand-off re-checks whether it should give up.
HANDOFF_POLL_SECONDS = 0.05


class ContainerState(enum.Enum):
    ANY = "any"
    RUNNING = "running"
    TERMINATED = "terminated"
    WAITING = "waiting"

    @classmethod
    def parse(cls, value):
        value = value.strip().lower()
        # "all" was the historical name of "any"
        if value == "all":
            return cls.ANY
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(state.value for state in cls)
            raise ConfigurationError(f"Unknown container state {value!r} (choose from {choices})") from None


def state_name(state):
    """Name of the lifecycle state reported in a V1ContainerState."""
    if state is None:
        return "unknown"
    for name in ("running", "terminated", "waiting"):
        if getattr(state, name, None) is not None:
            return name
    return "unknown"


class ContainerStateMatcher:
    def __init__(self, states):
        self.states = list(states) or [ContainerState.ANY]

    def matches(self, state):
        """Check a V1ContainerState (or None when no status is known) against the accepted states."""
        if ContainerState.ANY in self.states:
            return True
        if state is None:
            return False
        return any(getattr(state, accept.value, None) is not None for accept in self.states)


@dataclass(frozen=True)
class Source:
    """A single container of a single pod selected for tailing."""

    pod: str
    container: str
    state: str = "unknown"

    @property
    def key(self):
        return source_key(self.pod, self.container)


class SourceMatcher:
    """
    Resolve the containers to tail.

    Args:
        cluster: object with list_instances() returning Kubernetes V1Pod objects
        pod_query: optional regular expression searched in pod names
        state_matcher: ContainerStateMatcher, defaults to accepting any state

    Raises:
        ConfigurationError: if pod_query is not a valid regular expression
    """

    def __init__(self, cluster, pod_query=None, state_matcher=None):
        self.cluster = cluster
        self.state_matcher = state_matcher or ContainerStateMatcher([ContainerState.ANY])
        try:
            self.pod_regex = re.compile(pod_query) if pod_query else None
        except re.error as e:
            raise ConfigurationError(f"Invalid pod query {pod_query!r}: {e}") from e

    def match(self) -> List[Source]:
        """
        List pods and return every matching container in listing order.

        Containers are admitted by the state filter alone. Declared containers
        that have no status yet only pass an "any" filter.
        """
        sources = []
        for pod in self.cluster.list_instances():
            pod_name = pod.metadata.name if pod.metadata else None
            if not pod_name:
                continue
            if self.pod_regex and not self.pod_regex.search(pod_name):
                continue

            statuses = {}
            if pod.status and pod.status.container_statuses:
                statuses = {status.name: status for status in pod.status.container_statuses}
            names = [container.name for container in (pod.spec.containers if pod.spec else [])]
            names += [name for name in statuses if name not in names]

            for name in names:
                status = statuses.get(name)
                state = status.state if status else None
                if self.state_matcher.matches(state):
                    sources.append(Source(pod=pod_name, container=name, state=state_name(state)))

        logger.info(f"Matched {len(sources)} containers")
        return sources


class RecordChannel:
    """
    Bounded multi-producer/single-consumer channel of LogRecords.

    Sends block while the channel is full, which is what throttles the
    workers when the renderer falls behind. The supervisor closes the channel
    once every worker has finished; recv() then returns None after the last
    queued record.
    """

    def __init__(self, capacity=1):
        self._queue = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()

    def send(self, record, cancel, timeout=HANDOFF_POLL_SECONDS):
        """Block until the record is queued. Returns False if cancel fires first."""
        while not cancel.is_set():
            try:
                self._queue.put(record, timeout=timeout)
                return True
            except queue.Full:
                continue
        return False

    def recv(self):
        while True:
            try:
                return self._queue.get(timeout=HANDOFF_POLL_SECONDS)
            except queue.Empty:
                if self._closed.is_set() and self._queue.empty():
                    return None

    def close(self):
        self._closed.set()

    @property
    def closed(self):
        return self._closed.is_set()


_END_OF_STREAM = object()


class StreamOpenError(Exception):
    """The log stream of a source could not be opened."""


class LineFeed:
    """
    Open a blocking log stream and pull its lines on a helper thread.

    At most one unread line is held here; the helper stops reading until the
    worker takes it. poll() raises queue.Empty when nothing arrived within
    the timeout, returns None at end of stream, raises StreamOpenError when
    opening failed and re-raises read errors. Opening runs on the helper too,
    so a slow API server never blocks the caller's cancellation checks.
    """

    def __init__(self, open_stream, name):
        self._open_stream = open_stream
        self._stream = None
        self._stream_lock = threading.Lock()
        self._handoff = queue.Queue(maxsize=1)
        self._closed = threading.Event()
        self._thread = threading.Thread(target=self._pump, name=f"LogFeed-{name}", daemon=True)
        self._thread.start()

    def _pump(self):
        try:
            stream = self._open_stream()
        except Exception as e:
            self._offer(StreamOpenError(str(e)))
            return

        with self._stream_lock:
            self._stream = stream
            closed = self._closed.is_set()
        # Closed while the stream was still opening
        if closed:
            self._close_stream(stream)
            return

        try:
            for line in stream:
                if not self._offer(line):
                    return
        except Exception as e:
            if not self._closed.is_set():
                self._offer(e)
            return
        self._offer(_END_OF_STREAM)

    def _offer(self, item):
        while not self._closed.is_set():
            try:
                self._handoff.put(item, timeout=HANDOFF_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def poll(self, timeout):
        item = self._handoff.get(timeout=timeout)
        if item is _END_OF_STREAM:
            return None
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        with self._stream_lock:
            if self._closed.is_set():
                return
            self._closed.set()
            stream = self._stream
        if stream is not None:
            self._close_stream(stream)

    def _close_stream(self, stream):
        close = getattr(stream, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception as e:
            logger.debug(f"Error closing log stream {self._thread.name}: {e}")


class StreamWorker:
    """Tail one container and forward its lines onto the shared channel."""

    def __init__(self, source, open_stream, channel, cancel, read_timeout):
        self.source = source
        self.open_stream = open_stream
        self.channel = channel
        self.cancel = cancel
        self.read_timeout = read_timeout

    def run(self):
        """
        Stream until the log ends, the stream fails or the session is cancelled.

        Returns:
            int: number of records delivered to the channel
        """
        key = self.source.key
        color = color_for(key)
        if self.cancel.is_set():
            return 0

        feed = LineFeed(lambda: self.open_stream(self.source.pod, self.source.container), key)
        delivered = 0
        logger.debug(f"Streaming logs for {key}")
        try:
            while not self.cancel.is_set():
                try:
                    line = feed.poll(self.read_timeout)
                except queue.Empty:
                    continue
                except StreamOpenError as e:
                    logger.warning(f"Could not open log stream for {key}: {e}")
                    break
                except Exception as e:
                    logger.info(f"Log stream for {key} failed: {e}")
                    break

                if line is None:
                    logger.info(f"Log stream for {key} ended")
                    break

                record = LogRecord.from_line(key, line, color)
                if not self.channel.send(record, self.cancel):
                    break
                delivered += 1
        finally:
            feed.close()

        logger.debug(f"Stopped streaming {key} after {delivered} records")
        return delivered


class StreamSupervisor:
    """
    Own the stream workers of one live session.

    Args:
        sources: Sources returned by the SourceMatcher
        open_stream: callable (pod, container) -> iterable of lines, optionally closeable
        read_timeout: seconds a worker waits for a line before re-checking cancellation
        cancel: the session's cancellation event; a fresh one is created when omitted
    """

    def __init__(self, sources, open_stream, read_timeout, cancel=None, channel=None):
        self.sources = list(sources)
        self.open_stream = open_stream
        self.read_timeout = read_timeout
        self.cancel = cancel if cancel is not None else threading.Event()
        self.channel = channel if channel is not None else RecordChannel(capacity=1)
        self.futures = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending = 0
        self._pending_lock = threading.Lock()

    def launch(self):
        """Spawn one worker per source and return their futures."""
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, len(self.sources)), thread_name_prefix="StreamWorker"
        )
        # Held until every worker is submitted so an early finisher can't close the channel.
        with self._pending_lock:
            self._pending += 1
        for source in self.sources:
            # Cancelled right after start (e.g. ctrl+c straight away): don't spawn the rest.
            if self.cancel.is_set():
                logger.debug("Cancellation requested while launching workers; stopping early")
                break

            worker = StreamWorker(source, self.open_stream, self.channel, self.cancel, self.read_timeout)
            with self._pending_lock:
                self._pending += 1
            future = self._executor.submit(worker.run)
            future.add_done_callback(self._on_worker_done)
            self.futures.append(future)

        logger.info(f"Launched {len(self.futures)} stream workers")
        self._on_worker_done(None)
        return self.futures

    def _on_worker_done(self, _future):
        with self._pending_lock:
            self._pending -= 1
            finished = self._pending == 0
        if finished:
            self.channel.close()

    @property
    def running_workers(self):
        return sum(1 for future in self.futures if not future.done())

    def shutdown(self):
        """
        Cancel every worker and wait for all of them.

        A worker that died with an exception does not stop the teardown of
        the others; its failure is logged.

        Returns:
            int: number of workers that failed
        """
        self.cancel.set()
        wait(self.futures)

        failed = 0
        for future in self.futures:
            error = future.exception()
            if error is not None:
                failed += 1
                logger.warning("Stream worker failed", exc_info=(type(error), error, error.__traceback__))

        self.channel.close()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        logger.info(f"Stream workers stopped ({failed} failed)")
        return failed
