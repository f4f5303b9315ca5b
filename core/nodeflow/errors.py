"""
Error taxonomy for workflow execution.

Node-level errors (MissingInput, ExternalJobError, UnknownNodeKind) are caught
by the executor and recorded on the failing node. Run-level errors
(ValidationError, InternalSchedulingError) abort the run before or during
scheduling.
"""


class NodeflowError(Exception):
    """Base class for all engine errors."""

    pass


class ValidationError(NodeflowError):
    """The graph or a proposed edge is structurally invalid.

    Raised before any execution takes place and never retried.
    """

    def __init__(self, message: str, reasons: list[str] | None = None):
        super().__init__(message)
        self.reasons = reasons or [message]


class MissingInput(NodeflowError):
    """A node has no resolvable value for an input it needs."""

    pass


class ExternalJobError(NodeflowError):
    """The job backend or its in-process fallback reported a failure."""

    pass


class JobTimeoutError(ExternalJobError, TimeoutError):
    """The job backend did not reach a terminal state within the wait bound."""

    pass


class InternalSchedulingError(NodeflowError):
    """Topological layering did not account for every node (cycle slipped through)."""

    def __init__(self, message: str, unscheduled: list[str] | None = None):
        super().__init__(message)
        self.unscheduled = unscheduled or []


class UnknownNodeKind(NodeflowError):
    """No executor is registered for a node's type."""

    pass
