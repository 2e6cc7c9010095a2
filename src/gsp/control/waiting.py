import threading
import time
from typing import Callable, TypeVar

from gsp.errors import WaitCancelled

T = TypeVar("T")


class CancelToken:
    """Event-backed cancellation for waits that may run on a worker thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Wait up to ``seconds``; True if cancelled meanwhile."""
        return self._event.wait(seconds)


def wait_for(
    probe: Callable[[], T],
    done: Callable[[T], bool],
    attempts: int,
    interval: float,
    cancel: CancelToken | None = None,
    deadline: float | None = None,
) -> tuple[bool, int]:
    """Probe up to ``attempts`` times, waiting ``interval`` before each probe.

    Returns ``(succeeded, probes_made)``. ``deadline`` is a ``time.monotonic()``
    value after which no further probe is started. Raises WaitCancelled if the
    token is cancelled during a wait.
    """
    token = cancel or CancelToken()
    for attempt in range(1, attempts + 1):
        delay = interval
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False, attempt - 1
            delay = min(delay, remaining)
        if token.wait(delay):
            raise WaitCancelled(f"Wait cancelled after {attempt - 1} probe(s)")
        if done(probe()):
            return True, attempt
    return False, attempts
