"""
FastAPI Application

Main entry point for the webhook relay API.
Handles application lifecycle and router mounting.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from loguru import logger

from webhook_relay import __version__
from webhook_relay.config import IndirectConfig, Settings, get_settings
from webhook_relay.delivery.worker import build_delivery_worker
from webhook_relay.ingress.adapter import build_ingress_adapter
from webhook_relay.message_queue import InMemoryQueue, QueueWorker
from webhook_relay.storage import InMemoryPayloadStore, PayloadStore
from webhook_relay.storage.connection import MongoConnection
from webhook_relay.storage.mongodb import MongoPayloadStore
from webhook_relay.utils.observability import configure_logging
from webhook_relay.api.routes import (
    dead_letter_router,
    health_router,
    metrics_router,
    build_webhooks_router,
)


async def create_payload_store(settings: Settings, topology: IndirectConfig) -> PayloadStore:
    """
    Build the payload store for the indirect topology.

    Args:
        settings: Application settings (selects the backend)
        topology: Indirect topology configuration (bucket name)
    """
    if settings.payload_store_backend == "mongodb":
        connection = MongoConnection.from_settings(settings)
        store = MongoPayloadStore(
            await connection.connect(),
            bucket=topology.payload_bucket,
            connection=connection,
        )
        await store.create_indexes()
        return store

    return InMemoryPayloadStore(bucket=topology.payload_bucket)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle: startup and shutdown events.

    Startup:
    - Resolve the topology configuration (fails fast if invalid)
    - Create the queue and, for the indirect topology, the payload store
      with its object-created notifications wired to the queue
    - Start the background delivery worker

    Shutdown:
    - Stop the worker gracefully (unfinished deliveries are retried later)
    - Close HTTP and database clients
    """
    settings: Settings = app.state.settings
    configure_logging(settings)
    topology = settings.topology_config()

    logger.info(f"Starting webhook relay ({topology.topology} topology)...")

    queue = InMemoryQueue(settings.queue_config())

    store: Optional[PayloadStore] = None
    if isinstance(topology, IndirectConfig):
        store = await create_payload_store(settings, topology)
        await store.subscribe(queue.send)

    ingress = build_ingress_adapter(topology, queue, store)
    delivery = build_delivery_worker(
        topology,
        store=store,
        client=httpx.AsyncClient(timeout=topology.delivery_timeout_seconds),
    )

    worker = QueueWorker(
        queue=queue,
        handler=delivery.on_message,
        max_concurrent=settings.worker_max_concurrent,
        poll_interval=settings.worker_poll_interval_seconds
    )

    # Store in app state for access in routes
    app.state.topology = topology
    app.state.queue = queue
    app.state.store = store
    app.state.ingress = ingress
    app.state.delivery = delivery
    app.state.worker = worker

    worker_task = asyncio.create_task(worker.start())
    app.state.worker_task = worker_task

    logger.info(f"Relay ready: ingress at {settings.ingress_path}, delivering to {topology.delivery_endpoint}")

    yield

    logger.info("Shutting down webhook relay...")

    await queue.close()
    await worker.stop()

    if not worker_task.done():
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            logger.info("Stopped delivery worker")

    await delivery.close()
    if store is not None:
        await store.close()

    logger.info("Shutdown complete")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The ingress route and the lifespan both use the same settings, so the
    path served always matches the topology that was started.

    Args:
        settings: Application settings; read from the environment when omitted
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Webhook Relay",
        description="At-least-once webhook relay with retries and a dead-letter queue",
        version=__version__,
        lifespan=lifespan
    )
    app.state.settings = settings

    # Mount routers
    app.include_router(health_router)
    app.include_router(build_webhooks_router(settings.ingress_path))
    app.include_router(metrics_router)
    app.include_router(dead_letter_router)

    return app


app = create_app()
