"""
errors.py - Error taxonomy for the orchestration core

Every error raised by lnsim derives from LnsimError. Errors coming from
external collaborators (node services, the container runtime) are chained
with ``raise ... from`` so the original cause stays visible.
"""

from typing import List, Optional


class LnsimError(Exception):
    """Base class for all lnsim errors."""
    pass


class UnsupportedImplementation(LnsimError):
    """Raised when no service adapter exists for a node's implementation/version."""

    def __init__(self, implementation: str, version: Optional[str] = None):
        self.implementation = implementation
        self.version = version
        detail = f"{implementation} v{version}" if version else implementation
        super().__init__(f"No service adapter registered for {detail}")


class NodeUnreachable(LnsimError):
    """Raised when readiness polling is exhausted for a node."""

    def __init__(self, node_name: str, attempts: int, last_error: Optional[BaseException] = None):
        self.node_name = node_name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Node {node_name} did not come online after {attempts} attempt(s): {last_error}"
        )


class DanglingReference(LnsimError):
    """Raised when removing a node that other nodes still depend on."""

    def __init__(self, node_name: str, dependents: List[str]):
        self.node_name = node_name
        self.dependents = list(dependents)
        super().__init__(
            f"Cannot remove {node_name}: referenced by {', '.join(self.dependents)}"
        )


class InvalidNetwork(LnsimError):
    """Raised when a network violates the graph invariants."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid network:\n" + "\n".join(f"  - {e}" for e in self.errors))


class PartialFetchFailure(LnsimError):
    """
    Raised on request when an aggregate fetch had failing sub-fetches.

    The aggregate itself returns a FetchResult; this exception only wraps it
    for callers that prefer an exception (see FetchResult.raise_for_failures).
    """

    def __init__(self, result):
        self.result = result
        failed = ", ".join(sorted(result.failed))
        super().__init__(f"Fetch for {result.node_name} failed for: {failed}")


class OperationStepFailure(LnsimError):
    """
    Raised when a composite operation aborts mid-sequence.

    Attributes:
        operation: Name of the composite operation (e.g. "mint_asset")
        step: Step that failed
        completed_steps: Steps that already committed (never rolled back)
    """

    def __init__(self, operation: str, step: str, completed_steps: List[str]):
        self.operation = operation
        self.step = step
        self.completed_steps = list(completed_steps)
        done = ", ".join(self.completed_steps) or "none"
        super().__init__(
            f"{operation} failed at step '{step}' (already committed: {done})"
        )


class OperationCancelled(LnsimError):
    """Raised by an in-flight start that was abandoned because a stop was issued."""
    pass
