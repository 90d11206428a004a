"""Pytest configuration and fixtures."""

import json
import stat
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from lmsbridge.models.envelope import RawJSON
from lmsbridge.services.lmstudio_client import LMStudioClient
from lmsbridge.workers.model_worker import ModelWorker


class DaemonStub:
    """In-process stand-in for the LM Studio HTTP API."""

    def __init__(self):
        self.models_status = 200
        self.models_body = b'{"object":"list","data":[{"id":"acme/foo","publisher":"acme"}]}'
        self.chat_status = 200
        self.chat_body = b'{"id":"chatcmpl-1","choices":[{"message":{"content":"hi"}}]}'
        self.infos: Dict[str, Tuple[int, bytes]] = {}
        self.requests: List[Dict[str, object]] = []

    def add_model(self, model_id: str, publisher: Optional[str] = None) -> None:
        info = {"id": model_id, "type": "llm"}
        if publisher is not None:
            info["publisher"] = publisher
        self.infos[model_id] = (200, json.dumps(info).encode())

    async def _record(self, request: web.Request) -> None:
        self.requests.append({
            "method": request.method,
            "path": request.path,
            "raw_path": request.raw_path,
            "content_type": request.headers.get("Content-Type"),
            "body": await request.read(),
        })

    async def list_models(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.Response(status=self.models_status, body=self.models_body)

    async def model_info(self, request: web.Request) -> web.Response:
        await self._record(request)
        model_id = request.match_info["model_id"]
        status, body = self.infos.get(model_id, (404, b'{"error":"model not found"}'))
        return web.Response(status=status, body=body)

    async def chat(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.Response(status=self.chat_status, body=self.chat_body)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/v0/models", self.list_models)
        app.router.add_get("/api/v0/models/{model_id:.+}", self.model_info)
        app.router.add_post("/api/v0/chat/completions", self.chat)
        return app


class FakeCli:
    """Shell script standing in for the ``lms`` tool; records its arguments."""

    def __init__(self, directory: Path):
        self.path = directory / "lms"
        self.log = directory / "lms-calls.log"
        self.get_exit = 0
        self.get_output = "Downloading... done"
        self.unload_exit = 0
        self.unload_output = "Model unloaded"
        self.write()

    def write(self) -> None:
        self.path.write_text(
            "#!/bin/sh\n"
            f'echo "$@" >> "{self.log}"\n'
            'if [ "$2" = "slow" ]; then exec sleep 30; fi\n'
            'case "$1" in\n'
            "  get)\n"
            f"    echo '{self.get_output}'\n"
            "    echo 'progress on stderr' 1>&2\n"
            '    if [ -n "$BRIDGE_TEST_TOKEN" ]; then echo "token=$BRIDGE_TEST_TOKEN"; fi\n'
            f"    exit {self.get_exit}\n"
            "    ;;\n"
            "  unload)\n"
            f"    echo '{self.unload_output}'\n"
            f"    exit {self.unload_exit}\n"
            "    ;;\n"
            "esac\n"
            "exit 2\n"
        )
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def calls(self) -> List[str]:
        if not self.log.exists():
            return []
        return self.log.read_text().splitlines()


@pytest.fixture
def models_root(tmp_path: Path) -> Path:
    """Empty LM Studio models directory."""
    root = tmp_path / "models"
    root.mkdir()
    return root


@pytest.fixture
def fake_cli(tmp_path: Path) -> FakeCli:
    """Fake ``lms`` executable."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return FakeCli(bin_dir)


@pytest_asyncio.fixture
async def daemon():
    """Running LM Studio API stub, yields ``(stub, server)``."""
    stub = DaemonStub()
    server = TestServer(stub.app())
    await server.start_server()
    try:
        yield stub, server
    finally:
        await server.close()


@pytest_asyncio.fixture
async def lmstudio_client(daemon, models_root: Path, fake_cli: FakeCli):
    """Real client wired to the daemon stub, the fake CLI and a temp models root."""
    _, server = daemon
    client = LMStudioClient(
        base_url=str(server.make_url("/")),
        models_dir=models_root,
        cli_path=str(fake_cli.path),
        timeout=5,
    )
    try:
        yield client
    finally:
        await client.close()


@pytest.fixture
def mock_lmstudio_client():
    """Mock LM Studio client recording every call."""
    client = MagicMock(spec=LMStudioClient)

    client.list_models = AsyncMock(return_value=(RawJSON(b'{"data":[]}'), 200))
    client.pull_model = AsyncMock(return_value="Downloading... done")
    client.unload_model = AsyncMock(return_value=True)
    client.delete_model = AsyncMock(return_value=Path("/models/acme/acme/foo"))
    client.chat = AsyncMock(return_value=(RawJSON(b'{"choices":[]}'), 200))

    return client


@pytest.fixture
def worker(mock_lmstudio_client) -> ModelWorker:
    """Worker on top of the mock client."""
    return ModelWorker(mock_lmstudio_client)


class FakeMsg:
    """Minimal stand-in for ``nats.aio.msg.Msg``."""

    def __init__(self, subject: str, data: bytes, reply: str = "_INBOX.test"):
        self.subject = subject
        self.data = data
        self.reply = reply
        self.respond = AsyncMock()


@pytest.fixture
def make_msg():
    """Factory for fake NATS messages."""
    return FakeMsg
