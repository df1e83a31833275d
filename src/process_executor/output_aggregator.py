"""Output aggregation module.

This module contains the StreamReader class, which drains one pipe of a
subprocess in a dedicated thread, and the OutputAggregator that merges the
lines of both pipes into one combined buffer.
"""

import logging
import threading
import warnings
from typing import IO

logger = logging.getLogger(__name__)


class EndOfStream:
    """Sentinel used to indicate end-of-stream from a reader."""


class OutputAggregator:
    """Thread-safe sink for lines arriving from several streams.

    Appends are serialized by a lock so lines from stdout and stderr never
    interleave mid-line. Order is preserved within a stream; the relative
    order of two streams is simply their arrival order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._finished_cond = threading.Condition(self._lock)
        self._lines: list[str] = []
        self._open_streams: set[str] = set()
        self._counts: dict[str, int] = {}
        self._detached = False

    def attach(self, stream: str) -> None:
        """Register a stream that will deliver lines until EndOfStream."""
        with self._lock:
            self._open_streams.add(stream)
            self._counts.setdefault(stream, 0)

    def append(self, stream: str, item: "str | EndOfStream") -> None:
        """Record a line from ``stream``, or its end when given EndOfStream."""
        with self._lock:
            if isinstance(item, EndOfStream):
                self._open_streams.discard(stream)
                if not self._open_streams:
                    self._finished_cond.notify_all()
                return
            if self._detached:
                return
            self._lines.append(item)
            self._counts[stream] = self._counts.get(stream, 0) + 1

    def detach(self) -> None:
        """Stop accepting lines. Anything arriving later is dropped."""
        with self._lock:
            self._detached = True
            self._finished_cond.notify_all()

    @property
    def finished(self) -> bool:
        with self._lock:
            return not self._open_streams

    def wait_finished(self, timeout: float | None) -> bool:
        """Block until every attached stream reached EndOfStream.

        Returns:
            True if all streams finished, False if the timeout elapsed first.
        """
        with self._finished_cond:
            return self._finished_cond.wait_for(lambda: not self._open_streams or self._detached, timeout)

    def line_count(self, stream: str) -> int:
        with self._lock:
            return self._counts.get(stream, 0)

    @property
    def text(self) -> str:
        """Combined output, every line terminated by a newline."""
        with self._lock:
            return "".join(f"{line}\n" for line in self._lines)


class StreamReader:
    """Dedicated reader that drains one pipe of a process line by line.

    Keeps the pipe drained so the child never blocks on a full buffer, and
    forwards each line without its terminator to the aggregator. Empty lines
    are forwarded too; only EndOfStream carries no data.
    """

    def __init__(self, name: str, stream: IO[str], aggregator: OutputAggregator) -> None:
        self.name = name
        self._stream = stream
        self._aggregator = aggregator
        self._thread: threading.Thread | None = None
        self._eos_emitted = False
        aggregator.attach(name)

    def _emit_eos_once(self) -> None:
        """Ensure EndOfStream is only forwarded a single time."""
        if not self._eos_emitted:
            self._eos_emitted = True
            self._aggregator.append(self.name, EndOfStream())

    def _process_lines(self) -> None:
        for line in iter(self._stream.readline, ""):
            if line.endswith("\n"):
                line = line[:-1]
            self._aggregator.append(self.name, line)

    def _cleanup_stream(self) -> None:
        """Close the pipe safely."""
        if self._stream.closed:
            return
        try:
            self._stream.close()
        except (ValueError, OSError) as err:
            warnings.warn(f"Output reader ({self.name}) encountered error: {err}", stacklevel=2)

    def run(self) -> None:
        """Read lines and forward them until EOF."""
        try:
            self._process_lines()
        except (ValueError, OSError) as e:
            # Closed file descriptors are a normal shutdown path.
            logger.debug("Output reader (%s) stopped: %s", self.name, e)
        finally:
            self._emit_eos_once()
            self._cleanup_stream()

    def start(self, pid: int) -> None:
        thread = threading.Thread(target=self.run, name=f"PEReader-{self.name}-{pid}", daemon=True)
        thread.start()
        self._thread = thread

    def join(self, timeout: float | None) -> bool:
        """Wait for the reader thread. Returns True if it finished."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def stream(self) -> IO[str]:
        return self._stream

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def close_stream(self) -> None:
        """Close the pipe if the reader thread is no longer using it."""
        if not self.alive:
            self._cleanup_stream()
