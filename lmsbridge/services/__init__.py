"""Service layer components."""

from .lmstudio_client import (
    BackendError,
    BackendUnreachableError,
    InvalidArgumentError,
    LMStudioClient,
    LMStudioError,
    ModelDirectoryNotFoundError,
    ModelStorageError,
    SubprocessFailureError,
)

__all__ = [
    "BackendError",
    "BackendUnreachableError",
    "InvalidArgumentError",
    "LMStudioClient",
    "LMStudioError",
    "ModelDirectoryNotFoundError",
    "ModelStorageError",
    "SubprocessFailureError",
]
