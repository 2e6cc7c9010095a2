"""Error taxonomy.

Panel errors are raised by the HTTP layer and translated into domain errors
at the lifecycle boundary. Batch sync never lets these escape per item.
"""


class GspError(Exception):
    """Base class for all gsp exceptions."""


class PanelError(GspError):
    """Raised when the panel returns an unexpected status or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, detail: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class PanelNotFoundError(PanelError):
    """Raised when the panel answers 404 for a resource."""


class PanelConflictError(PanelError):
    """Raised on 409, e.g. a server that has not finished installing."""


class PanelValidationError(PanelError):
    """Raised when the panel rejects a payload (422)."""

    def __init__(self, errors: list[str], status_code: int | None = 422):
        super().__init__(";".join(errors), status_code=status_code)
        self.errors = errors


class AccountServiceError(GspError):
    """Raised when the login-token account service fails."""


class NodeNotFoundError(GspError):
    """Raised when creating a server on a node the panel does not know."""


class AllocationNotFoundError(GspError):
    """Raised when a node has no unassigned allocation left."""


class PreconditionError(GspError):
    """Raised before any panel call when a server is in the wrong state."""


class PowerTimeoutError(GspError):
    """Raised when a server never reports running within the poll budget."""

    def __init__(self, signal: str, attempts: int):
        super().__init__(f"Server failed to execute command: {signal} (no running state after {attempts} checks)")
        self.signal = signal
        self.attempts = attempts


class LifecycleError(GspError):
    """Wraps an unexpected failure of a single-server operation."""


class WaitCancelled(GspError):
    """Raised when a caller cancels a pending readiness wait."""
