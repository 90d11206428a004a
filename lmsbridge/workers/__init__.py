"""Bus-facing workers."""

from .model_worker import OPERATIONS, DecodeFailureError, ModelWorker, WorkerTimeouts

__all__ = [
    "OPERATIONS",
    "DecodeFailureError",
    "ModelWorker",
    "WorkerTimeouts",
]
