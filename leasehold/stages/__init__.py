"""Stage contract and helpers for building attempt pipelines."""

from leasehold.stages.base import BaseStage, CallableStage, Stage, load_stages

__all__ = [
    "BaseStage",
    "CallableStage",
    "Stage",
    "load_stages",
]
