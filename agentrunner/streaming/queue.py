"""Ordered hand-off between process output readers and a single consumer.

Reader threads (one per stream) only ever `put` lines; exactly one drain
routine consumes them. Ordering within a stream is FIFO, and consumers see
lines in arrival order across streams. End-of-stream markers let the consumer
know when it has seen everything, and `close()` lets the supervisor release a
consumer whose pipes were never closed (e.g. a grandchild kept them open).
"""

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StreamSource(str, Enum):
    """Which pipe a line came from."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class StreamLine:
    """One line of child-process output."""

    source: StreamSource
    text: str
    received_at: float = field(default_factory=time.monotonic)

    @property
    def is_error(self) -> bool:
        return self.source == StreamSource.STDERR


@dataclass(frozen=True)
class _EndOfStream:
    source: StreamSource


_CLOSED = object()


class OutputQueue:
    """Single-producer-per-stream, single-consumer ordered line queue."""

    def __init__(self, sources: tuple[StreamSource, ...] = (StreamSource.STDOUT, StreamSource.STDERR)):
        self._queue: queue.Queue = queue.Queue()
        self._open_sources = set(sources)
        self._closed = False
        self._lock = threading.Lock()
        self._consumed = 0

    @property
    def consumed_count(self) -> int:
        return self._consumed

    @property
    def is_finished(self) -> bool:
        """True once the consumer has seen every end marker or the close marker."""
        return self._closed or not self._open_sources

    def put(self, line: StreamLine) -> None:
        self._queue.put(line)

    def end_stream(self, source: StreamSource) -> None:
        """Mark `source` as exhausted. Called by the reader when its pipe hits EOF."""
        self._queue.put(_EndOfStream(source))

    def close(self) -> None:
        """Force the consumer to stop after draining what is already queued."""
        with self._lock:
            self._queue.put(_CLOSED)

    def get(self, timeout: float | None = None) -> StreamLine | None:
        """Return the next line, or None once the queue is finished.

        Raises:
            queue.Empty: If `timeout` elapses with nothing to consume.
        """
        while not self.is_finished:
            item = self._queue.get(timeout=timeout)
            if item is _CLOSED:
                self._closed = True
                break
            if isinstance(item, _EndOfStream):
                self._open_sources.discard(item.source)
                continue
            self._consumed += 1
            return item
        return None

    def __iter__(self) -> Iterator[StreamLine]:
        while True:
            line = self.get()
            if line is None:
                return
            yield line


class StreamPump:
    """Drain an OutputQueue on a dedicated thread, one line at a time.

    The handler runs only on the pump thread, so whatever state it builds
    needs no locking as long as it is read after `join()` or `stop()`. A
    handler exception is logged and the pump moves on to the next line.
    """

    def __init__(self, output: OutputQueue, handler: Callable[[StreamLine], None], name: str = "stream-pump"):
        self._output = output
        self._handler = handler
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._handler_lock = threading.Lock()
        self._stopped = threading.Event()
        self.handler_errors = 0
        self.discarded = 0

    def start(self) -> "StreamPump":
        self._thread.start()
        return self

    def _run(self) -> None:
        for line in self._output:
            with self._handler_lock:
                if self._stopped.is_set():
                    self.discarded += 1
                    continue
                try:
                    self._handler(line)
                except Exception as e:
                    self.handler_errors += 1
                    logger.warning(f"Stream handler failed on {line.source.value} line: {e}")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the pump to finish. Returns False if it is still running."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def stop(self) -> None:
        """Stop delivering lines. Returns once no handler call is in flight."""
        self._stopped.set()
        with self._handler_lock:
            pass
