"""LM Studio client: HTTP API, ``lms`` CLI and the on-disk model store."""

import asyncio
import os
import shutil
from pathlib import Path
from typing import Optional, Tuple, Union
from urllib.parse import quote

import aiohttp
from aiohttp import ClientTimeout
from pydantic import ValidationError
from yarl import URL

from ..models.envelope import RawJSON
from ..models.lmstudio import ModelInfo
from ..utils.loguru_config import get_logger

logger = get_logger(__name__)


class LMStudioError(Exception):
    """Base error for LM Studio operations.

    Carries whatever diagnostics the failing step could gather so the
    dispatch layer can attach them to the reply.
    """

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        output: Optional[str] = None,
        exit_code: Optional[int] = None,
        directory: Optional[Path] = None,
    ):
        super().__init__(message)
        self.status = status
        self.output = output
        self.exit_code = exit_code
        self.directory = directory


class InvalidArgumentError(LMStudioError):
    """A required argument is missing or unusable."""
    pass


class BackendUnreachableError(LMStudioError):
    """The daemon's HTTP API could not be reached."""
    pass


class BackendError(LMStudioError):
    """The daemon's HTTP API answered with an error."""
    pass


class SubprocessFailureError(LMStudioError):
    """The CLI tool could not start or exited non-zero."""
    pass


class ModelDirectoryNotFoundError(LMStudioError):
    """The resolved model directory does not exist."""
    pass


class ModelStorageError(LMStudioError):
    """A filesystem operation on the model store failed."""
    pass


class LMStudioClient:
    """Performs one outbound action per call against LM Studio."""

    def __init__(
        self,
        base_url: str,
        models_dir: Union[str, Path],
        cli_path: str = "lms",
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.models_dir = Path(str(models_dir).rstrip("/") or "/").expanduser()
        self.cli_path = cli_path
        self.timeout = timeout

        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_settings(cls, settings) -> "LMStudioClient":
        return cls(
            base_url=settings.lmstudio_base_url,
            models_dir=settings.lmstudio_models_dir,
            cli_path=settings.lmstudio_cli,
            timeout=settings.lmstudio_timeout,
        )

    async def __aenter__(self) -> "LMStudioClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def health_check(self) -> bool:
        """Check if the LM Studio API answers."""
        try:
            session = await self._get_session()
            async with session.get(f"{self.base_url}/api/v0/models") as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"LM Studio health check failed: {e}")
            return False

    async def _request(self, method: str, url: Union[str, URL], body: Optional[bytes] = None) -> Tuple[bytes, int]:
        session = await self._get_session()
        headers = {"Content-Type": "application/json"} if body is not None else None
        try:
            async with session.request(method, url, data=body, headers=headers) as response:
                try:
                    payload = await response.read()
                except aiohttp.ClientError as e:
                    raise BackendUnreachableError(
                        f"error reading LM Studio response: {e}", status=response.status
                    ) from e
                return payload, response.status
        except aiohttp.ClientError as e:
            raise BackendUnreachableError(f"error calling LM Studio: {e}") from e
        except asyncio.TimeoutError as e:
            raise BackendUnreachableError(
                f"error calling LM Studio: no answer within {self.timeout}s"
            ) from e

    async def list_models(self) -> Tuple[RawJSON, int]:
        """Fetch the raw model listing; any HTTP status is passed through."""
        body, status = await self._request("GET", f"{self.base_url}/api/v0/models")
        logger.debug(f"LM Studio model list answered {status} ({len(body)} bytes)")
        return RawJSON(body), status

    async def chat(self, payload: bytes) -> Tuple[RawJSON, int]:
        """Forward a chat completion payload verbatim."""
        body, status = await self._request(
            "POST", f"{self.base_url}/api/v0/chat/completions", body=payload
        )
        logger.debug(f"LM Studio chat completion answered {status} ({len(body)} bytes)")
        return RawJSON(body), status

    async def get_model_info(self, model_id: str) -> ModelInfo:
        """Look up a single model; non-200 answers raise ``BackendError``."""
        url = URL(f"{self.base_url}/api/v0/models/{quote(model_id, safe='')}", encoded=True)
        body, status = await self._request("GET", url)

        if status != 200:
            text = body.decode("utf-8", errors="replace")
            raise BackendError(f"LM Studio returned {status}: {text}", status=status)

        try:
            return ModelInfo.model_validate_json(body)
        except ValidationError as e:
            raise BackendError(f"error decoding model response: {e}", status=status) from e

    async def _run_cli(self, *args: str) -> Tuple[int, str]:
        """Run the CLI with merged stdout/stderr.

        Raises:
            OSError: If the executable cannot be started.
        """
        process = await asyncio.create_subprocess_exec(
            self.cli_path,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=os.environ.copy(),
        )
        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise
        return process.returncode, stdout.decode("utf-8", errors="replace")

    async def pull_model(self, identifier: str) -> str:
        """Download a model with ``lms get`` and return the captured output."""
        if not identifier:
            raise InvalidArgumentError("identifier is empty")

        command = f"{self.cli_path} get {identifier}"
        try:
            exit_code, output = await self._run_cli("get", identifier)
        except OSError as e:
            raise SubprocessFailureError(f"failed to execute '{command}': {e}", output="") from e

        if exit_code != 0:
            raise SubprocessFailureError(
                f"failed to execute '{command}': exit status {exit_code}",
                output=output,
                exit_code=exit_code,
            )

        logger.info(f"Pulled model {identifier}")
        return output

    async def unload_model(self, model_id: str) -> bool:
        """Best-effort ``lms unload``; failures are logged, never raised."""
        if not model_id:
            return False

        try:
            exit_code, output = await self._run_cli("unload", model_id)
        except OSError as e:
            logger.warning(f"failed to unload model {model_id}: {e}")
            return False

        if exit_code != 0:
            logger.warning(
                f"failed to unload model {model_id}: exit status {exit_code} | output: {output.strip()}"
            )
            return False

        logger.debug(f"Unloaded model {model_id}")
        return True

    def _resolve_publisher(self, info: ModelInfo) -> str:
        if info.publisher:
            return info.publisher

        # LM Studio stores models as <publisher>/<name>; fall back on that
        # layout when the API leaves the publisher out.
        publisher, sep, _ = info.id.partition("/")
        if sep and publisher:
            logger.warning(
                f"LM Studio reported no publisher for {info.id}, using id prefix '{publisher}'"
            )
            return publisher
        raise InvalidArgumentError(f"unable to determine publisher of model {info.id}")

    def _model_directory(self, publisher: str, model_id: str) -> Path:
        relative = Path(publisher, model_id)
        if relative.is_absolute() or ".." in relative.parts:
            raise InvalidArgumentError(
                f"refusing to resolve model directory outside {self.models_dir}: {relative}"
            )
        return self.models_dir / relative

    @staticmethod
    def _remove_directory(directory: Path) -> None:
        try:
            directory.stat()
        except FileNotFoundError as e:
            raise ModelDirectoryNotFoundError(
                f"model directory not found: {directory}", directory=directory
            ) from e
        except OSError as e:
            raise ModelStorageError(
                f"error checking model directory: {e}", directory=directory
            ) from e

        try:
            if directory.is_dir() and not directory.is_symlink():
                shutil.rmtree(directory)
            else:
                directory.unlink()
        except OSError as e:
            raise ModelStorageError(
                f"error removing model directory {directory}: {e}", directory=directory
            ) from e

    async def delete_model(self, model_id: str) -> Path:
        """Unload a model and remove its directory under the models root."""
        if not model_id:
            raise InvalidArgumentError("modelID is empty")

        await self.unload_model(model_id)

        info = await self.get_model_info(model_id)
        if not info.id:
            info = info.model_copy(update={"id": model_id})

        publisher = self._resolve_publisher(info)
        directory = self._model_directory(publisher, info.id)

        await asyncio.to_thread(self._remove_directory, directory)

        logger.info(f"Removed model directory {directory}")
        return directory
