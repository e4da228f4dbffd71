import threading
import time


# Seconds per construction run. A 512x512 image at 50% takes a few seconds of
# recursion here, so this sits well above a 600 ms budget.
DEFAULT_TIMEOUT = 30.0
MAX_NODES = 2_000_000


class RunCoordinator:
    """
    State shared by every task of one partitioning run.

    Holds the deadline, the cancellation event and the allocated-node counter.
    The engine asks should_stop() at node entry; the first caller that sees the
    deadline passed sets the event, later callers only read it.
    """

    def __init__(self, timeout=DEFAULT_TIMEOUT, max_nodes=MAX_NODES):
        self.timeout = timeout
        self.max_nodes = max_nodes
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._allocated = 0
        self._start = None
        self._deadline = None
        self.timed_out = False
        self.node_cap_reached = False

    def start(self):
        self._cancelled.clear()
        self.timed_out = False
        self.node_cap_reached = False
        with self._lock:
            self._allocated = 1  # root
        self._start = time.monotonic()
        self._deadline = None if self.timeout is None else self._start + self.timeout
        return self

    @property
    def allocated(self):
        with self._lock:
            return self._allocated

    @property
    def elapsed(self):
        if self._start is None:
            return 0.0
        return time.monotonic() - self._start

    @property
    def stopped(self):
        return self._cancelled.is_set()

    def cancel(self):
        self._cancelled.set()

    def should_stop(self):
        if self._cancelled.is_set():
            return True

        if self._deadline is not None and time.monotonic() > self._deadline:
            self.timed_out = True
            self._cancelled.set()
            return True

        if self.max_nodes is not None and self.allocated > self.max_nodes:
            self.node_cap_reached = True
            self._cancelled.set()
            return True

        return False

    def reserve_nodes(self, count=4):
        """
        Account for count new nodes.

        Returns:
            bool: False (and nothing reserved) if the cap would be exceeded
        """
        with self._lock:
            if self.max_nodes is not None and self._allocated + count > self.max_nodes:
                self.node_cap_reached = True
                self._cancelled.set()
                return False
            self._allocated += count
            return True
