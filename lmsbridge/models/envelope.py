"""Reply envelope and bus request models."""

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


class RawJSON:
    """Untyped structured payload kept as the daemon's raw bytes.

    The bytes are spliced into the encoded envelope as-is, so key order and
    number formatting survive the trip through the bridge.
    """

    __slots__ = ("raw",)

    def __init__(self, raw: bytes):
        self.raw = bytes(raw)

    def encode(self) -> bytes:
        body = self.raw.strip()
        if not body:
            return b"null"
        try:
            # Strict RFC 8259: UTF-8 only, no NaN/Infinity literals.
            json.loads(body.decode("utf-8"), parse_constant=_reject_constant)
        except ValueError:
            # Non-JSON bodies (HTML error pages, plain text) travel as a string.
            return json.dumps(body.decode("utf-8", errors="replace")).encode("utf-8")
        return body

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RawJSON):
            return self.raw == other.raw
        return NotImplemented

    def __repr__(self) -> str:
        return f"RawJSON({self.raw!r})"


def _encode_value(value: Any) -> bytes:
    if isinstance(value, RawJSON):
        return value.encode()
    if isinstance(value, dict):
        items = [
            json.dumps(str(key), ensure_ascii=False).encode("utf-8") + b":" + _encode_value(item)
            for key, item in value.items()
        ]
        return b"{" + b",".join(items) + b"}"
    return json.dumps(value, ensure_ascii=False).encode("utf-8")


class Envelope(BaseModel):
    """Uniform reply sent for every bus request."""

    ok: bool = Field(..., description="Whether the operation succeeded")
    error: Optional[str] = Field(default=None, description="Failure message, only when ok is false")
    data: Optional[Dict[str, Any]] = Field(default=None, description="Operation-specific payload")

    @model_validator(mode="after")
    def _check_ok_error(self) -> "Envelope":
        if self.ok and self.error is not None:
            raise ValueError("successful envelope must not carry an error")
        if not self.ok and not self.error:
            raise ValueError("failed envelope requires a non-empty error")
        return self

    @classmethod
    def success(cls, data: Optional[Dict[str, Any]] = None) -> "Envelope":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str, data: Optional[Dict[str, Any]] = None) -> "Envelope":
        return cls(ok=False, error=error, data=data)

    def to_json(self) -> bytes:
        """Encode to compact JSON, omitting absent ``error`` and ``data``.

        Raises:
            TypeError: If ``data`` holds a value JSON cannot represent.
        """
        parts = [b'"ok":' + (b"true" if self.ok else b"false")]
        if self.error is not None:
            parts.append(b'"error":' + json.dumps(self.error, ensure_ascii=False).encode("utf-8"))
        if self.data is not None:
            parts.append(b'"data":' + _encode_value(self.data))
        return b"{" + b",".join(parts) + b"}"


# Sent verbatim when an envelope cannot be serialized.
SERIALIZATION_FAILURE = b'{"ok":false,"error":"internal error serializing response"}'


class PullModelRequest(BaseModel):
    """Request to download a model with the CLI tool."""

    model_config = ConfigDict(extra="ignore")

    identifier: Optional[str] = Field(default=None, description="Model identifier, e.g. 'meta-llama/Meta-Llama-3-8B-Instruct'")


class DeleteModelRequest(BaseModel):
    """Request to unload and remove a model from disk."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    model_id: Optional[str] = Field(default=None, description="Model id as reported by the daemon")


class ChatModelProbe(BaseModel):
    """The only part of a chat payload the bridge looks at."""

    model_config = ConfigDict(extra="ignore")

    model: Optional[str] = Field(default=None, description="Target model of the chat completion")
