"""Custom exception hierarchy for Leasehold.

All exceptions inherit from LeaseholdError so callers can catch broadly
or narrowly as needed.
"""

from __future__ import annotations

from typing import Optional


class LeaseholdError(Exception):
    """Base exception for all Leasehold errors."""


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

class RotationError(LeaseholdError):
    """Rotating a resource failed. Retried with backoff, never budget-consuming."""

    def __init__(self, message: str, resource_index: Optional[int] = None):
        self.resource_index = resource_index
        super().__init__(message)


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

class ProvisionError(LeaseholdError):
    """Creating an execution context failed."""

    def __init__(self, message: str, resource_index: Optional[int] = None):
        self.resource_index = resource_index
        super().__init__(message)


class OpenError(ProvisionError):
    """Opening a created execution context failed."""


class ProvisionAuthError(ProvisionError):
    """Provisioning backend rejected our credentials."""


# ---------------------------------------------------------------------------
# Attempts
# ---------------------------------------------------------------------------

class StageFailure(LeaseholdError):
    """A stage could not complete. Stages may raise this instead of returning soft_fail."""

    def __init__(self, message: str, stage: Optional[str] = None):
        self.stage = stage
        super().__init__(message)


class BudgetExhausted(LeaseholdError):
    """A slot used up its rotation budget without a successful attempt."""

    def __init__(self, slot: int, rotations: int):
        self.slot = slot
        self.rotations = rotations
        super().__init__(f"Slot {slot + 1} exhausted after {rotations} rotations")


class CancellationRequested(LeaseholdError):
    """The user asked the session to stop."""


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class SessionFatalError(LeaseholdError):
    """Unexpected defect in the supervising loop. Aborts the whole session."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(LeaseholdError):
    """Invalid or missing configuration."""
