"""Model operations worker: NATS request in, envelope reply out."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Type, TypeVar

import nats.errors
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.config import Settings
from ..models.envelope import (
    SERIALIZATION_FAILURE,
    ChatModelProbe,
    DeleteModelRequest,
    Envelope,
    PullModelRequest,
)
from ..services.lmstudio_client import LMStudioClient, LMStudioError
from ..utils.loguru_config import ModelLogContext, get_logger

logger = get_logger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)

OPERATIONS = ("list", "pull", "delete", "chat")


class DecodeFailureError(Exception):
    """Inbound payload could not be decoded into the operation's request."""

    def __init__(self, operation: str, detail: str):
        super().__init__(f"invalid JSON in {operation}: {detail}")
        self.operation = operation
        self.detail = detail


class WorkerTimeouts(BaseModel):
    """Deadline, in seconds, for each operation class."""

    model_config = ConfigDict(frozen=True)

    listing: float = Field(default=30.0, gt=0)
    pull: float = Field(default=600.0, gt=0)
    delete: float = Field(default=120.0, gt=0)
    chat: float = Field(default=120.0, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkerTimeouts":
        return cls(
            listing=settings.list_timeout,
            pull=settings.pull_timeout,
            delete=settings.delete_timeout,
            chat=settings.chat_timeout,
        )


def encode_reply(envelope: Envelope) -> bytes:
    """Serialize an envelope, falling back to a fixed failure reply."""
    try:
        return envelope.to_json()
    except (TypeError, ValueError) as e:
        logger.error(f"error serializing NATS response: {e}")
        return SERIALIZATION_FAILURE


def _decode(model: Type[RequestT], payload: bytes, operation: str) -> RequestT:
    # A bare null body is an empty request; required fields are checked later.
    if payload.strip() == b"null":
        return model()
    try:
        return model.model_validate_json(payload)
    except ValidationError as e:
        detail = "; ".join(error["msg"] for error in e.errors())
        raise DecodeFailureError(operation, detail) from e


def _timed_out(operation: str, seconds: float) -> str:
    return f"{operation} timed out after {seconds:g}s"


class ModelWorker:
    """Binds each model operation to a handler that always yields one envelope.

    Handlers never raise: decoding, validation, backend failures and
    deadlines all end up as ``ok: false`` envelopes.
    """

    def __init__(self, client: LMStudioClient, timeouts: Optional[WorkerTimeouts] = None):
        self.client = client
        self.timeouts = timeouts or WorkerTimeouts()
        self._handlers: Dict[str, Callable[[bytes], Awaitable[Envelope]]] = {
            "list": self.handle_list,
            "pull": self.handle_pull,
            "delete": self.handle_delete,
            "chat": self.handle_chat,
        }
        self._tasks: Set[asyncio.Task] = set()

    async def handle_list(self, payload: bytes = b"") -> Envelope:
        """List models; the request body is ignored."""
        with ModelLogContext("ListModels") as log:
            try:
                models, status = await asyncio.wait_for(
                    self.client.list_models(), self.timeouts.listing
                )
            except LMStudioError as e:
                log.warning(f"Listing models failed: {e}")
                return Envelope.failure(str(e), {"http_status": e.status or 0})
            except asyncio.TimeoutError:
                log.warning("Listing models timed out")
                return Envelope.failure(
                    _timed_out("ListModels", self.timeouts.listing), {"http_status": 0}
                )

        return Envelope.success({"http_status": status, "models": models})

    async def handle_pull(self, payload: bytes) -> Envelope:
        """Download a model through the CLI tool."""
        try:
            request = _decode(PullModelRequest, payload, "PullModel")
        except DecodeFailureError as e:
            return Envelope.failure(str(e))
        if not request.identifier:
            return Envelope.failure("'identifier' is required")

        identifier = request.identifier
        with ModelLogContext("PullModel", model=identifier) as log:
            try:
                output = await asyncio.wait_for(
                    self.client.pull_model(identifier), self.timeouts.pull
                )
            except LMStudioError as e:
                log.warning(f"Pull of {identifier} failed: {e}")
                return Envelope.failure(str(e), {"model": identifier, "output": e.output or ""})
            except asyncio.TimeoutError:
                log.warning(f"Pull of {identifier} timed out")
                return Envelope.failure(
                    _timed_out("PullModel", self.timeouts.pull), {"model": identifier, "output": ""}
                )

        return Envelope.success({"model": identifier, "output": output})

    async def handle_delete(self, payload: bytes) -> Envelope:
        """Unload a model and remove its directory."""
        try:
            request = _decode(DeleteModelRequest, payload, "DeleteModel")
        except DecodeFailureError as e:
            return Envelope.failure(str(e))
        if not request.model_id:
            return Envelope.failure("'model_id' is required")

        model_id = request.model_id
        with ModelLogContext("DeleteModel", model=model_id) as log:
            try:
                directory = await asyncio.wait_for(
                    self.client.delete_model(model_id), self.timeouts.delete
                )
            except LMStudioError as e:
                log.warning(f"Delete of {model_id} failed: {e}")
                return Envelope.failure(
                    str(e), {"model_id": model_id, "dir": str(e.directory) if e.directory else ""}
                )
            except asyncio.TimeoutError:
                log.warning(f"Delete of {model_id} timed out")
                return Envelope.failure(
                    _timed_out("DeleteModel", self.timeouts.delete), {"model_id": model_id, "dir": ""}
                )

        return Envelope.success({"model_id": model_id, "deleted_dir": str(directory)})

    async def handle_chat(self, payload: bytes) -> Envelope:
        """Forward a chat completion payload verbatim."""
        if not payload:
            return Envelope.failure("empty payload in ChatModel")
        try:
            probe = _decode(ChatModelProbe, payload, "ChatModel")
        except DecodeFailureError as e:
            return Envelope.failure(str(e))
        if not probe.model:
            return Envelope.failure("'model' is required in ChatModel")

        with ModelLogContext("ChatModel", model=probe.model) as log:
            try:
                response, status = await asyncio.wait_for(
                    self.client.chat(payload), self.timeouts.chat
                )
            except LMStudioError as e:
                log.warning(f"Chat with {probe.model} failed: {e}")
                return Envelope.failure(str(e), {"http_status": e.status or 0})
            except asyncio.TimeoutError:
                log.warning(f"Chat with {probe.model} timed out")
                return Envelope.failure(
                    _timed_out("ChatModel", self.timeouts.chat), {"http_status": 0}
                )

        return Envelope.success({"http_status": status, "response": response})

    async def dispatch(self, operation: str, payload: bytes) -> bytes:
        """Run one operation and return the encoded reply."""
        handler = self._handlers.get(operation)
        if handler is None:
            return encode_reply(Envelope.failure(f"unknown operation '{operation}'"))

        try:
            envelope = await handler(payload)
        except Exception as e:
            logger.exception(f"Unhandled error in {operation} handler: {e}")
            envelope = Envelope.failure(f"internal error: {e}")
        return encode_reply(envelope)

    async def _reply(self, operation: str, msg: Any) -> None:
        reply = await self.dispatch(operation, msg.data)
        if not msg.reply:
            logger.warning(f"Message on {msg.subject} has no reply subject, dropping reply")
            return
        try:
            await msg.respond(reply)
        except nats.errors.Error as e:
            logger.error(f"error responding to NATS message on {msg.subject}: {e}")

    def callback(self, operation: str) -> Callable[[Any], Awaitable[None]]:
        """NATS subscription callback that handles each message in its own task."""
        if operation not in self._handlers:
            raise ValueError(f"unknown operation '{operation}'")

        async def on_message(msg: Any) -> None:
            task = asyncio.create_task(self._reply(operation, msg))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return on_message

    @property
    def pending(self) -> int:
        """Number of messages still being handled."""
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait for every in-flight message to be answered."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
