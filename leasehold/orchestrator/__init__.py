"""Session controller, worker pool, leases and the attempt state machine."""

from leasehold.orchestrator.controller import SessionController, effective_worker_count

__all__ = [
    "SessionController",
    "effective_worker_count",
]
