"""
Query Producers
===============

Producers run one directory query each and push the matching entries into
a bounded queue shared with the worker pool.

Queue protocol:
- Every producer is registered before it starts
- put() blocks while the queue is full (backpressure) and wakes every
  put_timeout seconds to notice cancellation
- producer_done() is called exactly once per producer, whether it finished,
  faulted or was cancelled; the last call closes the queue
- get() raises QueueClosed once the queue is closed and drained
"""

import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional


_CLOSED = object()


class QueueClosed(Exception):
    """Raised by BoundedEntryQueue.get() once every producer is done and the queue is empty."""


@dataclass
class ProducerFault:
    """An unrecoverable error that stopped one producer."""
    domain: str
    ldap_filter: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.domain} {self.ldap_filter}: {self.error}"


class FaultChannel:
    """Run-level record of producer faults."""

    def __init__(self):
        self._faults: list[ProducerFault] = []
        self._faulted_domains: set[str] = set()
        self._lock = threading.Lock()

    def report(self, fault: ProducerFault) -> None:
        with self._lock:
            self._faults.append(fault)
            self._faulted_domains.add(fault.domain.lower())

    def is_faulted(self, domain: str) -> bool:
        with self._lock:
            return domain.lower() in self._faulted_domains

    @property
    def faults(self) -> list:
        with self._lock:
            return list(self._faults)


class BoundedEntryQueue:
    """Bounded multi-producer queue with an explicit completion protocol.

    Args:
        capacity: Maximum number of undelivered items held at once
        put_timeout: Seconds between cancellation checks while blocked on put
    """

    def __init__(self, capacity: int, put_timeout: float = 0.5):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.put_timeout = put_timeout
        self._queue = queue.Queue(maxsize=capacity)
        self._pending = 0
        self._registered = False
        self._closed = False
        self._lock = threading.Lock()

    def register_producer(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("Cannot register a producer on a closed queue")
            self._pending += 1
            self._registered = True

    def producer_done(self) -> None:
        """Signal that one producer will put nothing more."""
        with self._lock:
            if self._pending <= 0:
                raise RuntimeError("producer_done called more times than register_producer")
            self._pending -= 1
            last = self._pending == 0
            if last:
                self._closed = True
        if last:
            # Producers are finished, so this only waits on consumers
            self._queue.put(_CLOSED)

    def close_if_idle(self) -> None:
        """Close a queue that never had a producer registered."""
        with self._lock:
            if self._registered or self._closed:
                return
            self._closed = True
        self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def put(self, item: Any, cancel_event: Optional[threading.Event] = None) -> bool:
        """Put an item, blocking while the queue is full.

        Returns:
            True if queued, False if cancellation was observed first
        """
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return False
            try:
                self._queue.put(item, timeout=self.put_timeout)
                return True
            except queue.Full:
                continue

    def get(self) -> Any:
        """Take the next item.

        Raises:
            QueueClosed: Once the queue is closed and empty
        """
        item = self._queue.get()
        if item is _CLOSED:
            # Leave the marker for the other consumers
            self._queue.put(_CLOSED)
            raise QueueClosed()
        return item


class QueryProducer:
    """Runs one directory query and feeds the results into a queue.

    Usage:
        producer = QueryProducer("corp.local", "(objectClass=user)",
                                 ["objectSid", "nTSecurityDescriptor"], directory)
        entry_queue.register_producer()
        threading.Thread(target=producer.run, args=(entry_queue, faults, cancel)).start()

    Args:
        domain: Domain to query
        ldap_filter: LDAP filter string
        attributes: Attributes to request
        directory: Object exposing query(domain, ldap_filter, attributes, scope)
        scope: 'base', 'level' or 'subtree'
    """

    def __init__(
        self,
        domain: str,
        ldap_filter: str,
        attributes: list,
        directory,
        scope: str = 'subtree',
        verbose: bool = True,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        self.domain = domain
        self.ldap_filter = ldap_filter
        self.attributes = attributes
        self.directory = directory
        self.scope = scope
        self.verbose = verbose
        self.progress_callback = progress_callback

        self.produced = 0
        self.fault: Optional[ProducerFault] = None

    def _log(self, message: str) -> None:
        """Log a message to console and/or callback."""
        if self.verbose:
            print(message)
        if self.progress_callback:
            self.progress_callback(message)

    def run(
        self,
        entry_queue: BoundedEntryQueue,
        fault_channel: FaultChannel,
        cancel_event: threading.Event
    ) -> None:
        """Stream every entry into ``entry_queue``.

        The caller must have registered this producer on the queue. Completion
        is always signalled, so a fault or cancellation never stalls the
        consumers.
        """
        try:
            for entry in self.directory.query(self.domain, self.ldap_filter, self.attributes, self.scope):
                if cancel_event.is_set() or fault_channel.is_faulted(self.domain):
                    break
                if not entry_queue.put((self.domain, entry), cancel_event):
                    break
                self.produced += 1
        except Exception as e:
            self.fault = ProducerFault(self.domain, self.ldap_filter, e)
            fault_channel.report(self.fault)
            self._log(f"[!] Query {self.ldap_filter} on {self.domain} failed, skipping domain: {e}")
        finally:
            entry_queue.producer_done()
