"""Data models."""

from .envelope import (
    ChatModelProbe,
    DeleteModelRequest,
    Envelope,
    PullModelRequest,
    RawJSON,
    SERIALIZATION_FAILURE,
)
from .lmstudio import ModelInfo

__all__ = [
    "ChatModelProbe",
    "DeleteModelRequest",
    "Envelope",
    "PullModelRequest",
    "RawJSON",
    "SERIALIZATION_FAILURE",
    "ModelInfo",
]
