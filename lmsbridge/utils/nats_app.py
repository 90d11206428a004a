"""NATS connection and subscription wiring."""

from typing import List

import nats
from nats.aio.client import Client as NATS
from nats.aio.subscription import Subscription

from ..core.config import Settings
from ..workers.model_worker import OPERATIONS, ModelWorker
from .loguru_config import get_logger

logger = get_logger(__name__)


async def _on_error(e: Exception) -> None:
    logger.error(f"NATS error: {e}")


async def _on_disconnected() -> None:
    logger.warning("Disconnected from NATS")


async def _on_reconnected() -> None:
    logger.info("Reconnected to NATS")


async def _on_closed() -> None:
    logger.info("NATS connection closed")


async def connect_nats(settings: Settings) -> NATS:
    """Open the NATS connection used for every subscription."""
    nc = await nats.connect(
        servers=[settings.nats_url],
        name=settings.nats_client_name,
        error_cb=_on_error,
        disconnected_cb=_on_disconnected,
        reconnected_cb=_on_reconnected,
        closed_cb=_on_closed,
    )
    logger.info(f"Connected to NATS at {settings.nats_url}")
    return nc


async def subscribe_worker(nc: NATS, worker: ModelWorker, settings: Settings) -> List[Subscription]:
    """Subscribe one handler per operation subject."""
    queue = settings.nats_queue_group or ""
    subscriptions = []
    for operation in OPERATIONS:
        subject = settings.subject(operation)
        subscriptions.append(
            await nc.subscribe(subject, queue=queue, cb=worker.callback(operation))
        )
        logger.info(f"Listening on {subject}" + (f" (queue group {queue})" if queue else ""))
    return subscriptions


async def shutdown(nc: NATS, subscriptions: List[Subscription], worker: ModelWorker) -> None:
    """Stop taking messages, answer what is in flight, then close NATS."""
    for subscription in subscriptions:
        await subscription.drain()

    if worker.pending:
        logger.info(f"Waiting for {worker.pending} in-flight message(s)")
    await worker.wait_idle()

    if not nc.is_closed:
        await nc.drain()
