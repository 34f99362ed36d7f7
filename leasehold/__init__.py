"""Leasehold: bounded-concurrency work orchestration over exclusive, rotating resources."""

__version__ = "0.1.0"
