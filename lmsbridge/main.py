"""Bridge process entrypoint."""

import asyncio
import signal
from typing import Optional

from .core.config import Settings, get_settings
from .services.lmstudio_client import LMStudioClient
from .utils.loguru_config import get_logger, setup_loguru
from .utils.nats_app import connect_nats, shutdown, subscribe_worker
from .workers.model_worker import ModelWorker, WorkerTimeouts

logger = get_logger(__name__)


async def run(settings: Settings, stop: Optional[asyncio.Event] = None) -> None:
    """Serve model operations over NATS until ``stop`` is set."""

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    stop = stop or asyncio.Event()

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not available on every platform / outside the main thread.
            pass

    try:
        async with LMStudioClient.from_settings(settings) as client:
            if await client.health_check():
                logger.info(f"LM Studio API reachable at {client.base_url}")
            else:
                logger.warning(f"LM Studio API not reachable at {client.base_url}, serving anyway")
            logger.info(f"Models directory: {client.models_dir}")

            worker = ModelWorker(client, WorkerTimeouts.from_settings(settings))
            nc = await connect_nats(settings)
            subscriptions = await subscribe_worker(nc, worker, settings)
            logger.info("Bridge startup completed")

            try:
                await stop.wait()
            finally:
                logger.info("Shutting down bridge")
                await shutdown(nc, subscriptions, worker)
                logger.info("Bridge shutdown completed")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main() -> None:
    settings = get_settings()
    setup_loguru(settings)
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.exception(f"Bridge terminated: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
