"""
Queue Worker

Background consumer that pulls messages from the queue, runs the delivery
handler, and applies the returned outcome to the queue.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

from webhook_relay.message_queue.base import Message, MessageQueue
from webhook_relay.models.outcome import DeliveryOutcome, DeliveryResult
from webhook_relay.utils.observability import log_relay_event

DeliveryHandler = Callable[[Message], Awaitable[DeliveryResult]]


class QueueWorker:
    """
    Background worker for processing queued messages.

    Continuously polls the queue and processes each message with the
    provided handler:
    - DELIVERED: message is acknowledged (removed)
    - RETRYABLE_FAILURE: message is left to reappear after its visibility timeout
    - TERMINAL_FAILURE: message is dead-lettered immediately

    A message is only received once a concurrency slot is free, so its
    visibility timeout never runs down while it waits for a slot.

    Attributes:
        queue: Message queue to process
        handler: Async function returning the outcome of one attempt
        max_concurrent: Maximum number of concurrent attempts
        poll_interval: Seconds to wait between polls of an empty queue
    """

    def __init__(
        self,
        queue: MessageQueue,
        handler: DeliveryHandler,
        max_concurrent: int = 10,
        poll_interval: float = 1.0,
        shutdown_timeout: float = 30.0,
    ):
        """
        Initialize queue worker.

        Args:
            queue: Message queue to process
            handler: Async function that attempts delivery of one message
            max_concurrent: Max concurrent delivery attempts
            poll_interval: Seconds between polls of an empty queue
            shutdown_timeout: Seconds stop() waits for in-flight attempts
        """
        self.queue = queue
        self.handler = handler
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.shutdown_timeout = shutdown_timeout
        self._running = False
        self._tasks: set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._loop_exited = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start the worker.

        Begins polling the queue and processing messages.
        Runs until stop() is called.
        """
        if self._running:
            logger.warning("Worker already running")
            return

        self._running = True
        self._loop_exited.clear()
        self._loop_task = asyncio.current_task()
        logger.info(
            f"Queue worker started (max_concurrent={self.max_concurrent}, "
            f"poll_interval={self.poll_interval}s)"
        )

        try:
            while self._running:
                await self._semaphore.acquire()
                if not self._running:
                    self._semaphore.release()
                    break

                try:
                    message = await self.queue.receive()
                except Exception:
                    self._semaphore.release()
                    raise

                if message is None:
                    self._semaphore.release()
                    await asyncio.sleep(self.poll_interval)
                    continue

                task = asyncio.create_task(self._process_message(message))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

        except Exception as e:
            logger.opt(exception=e).error(f"Worker crashed: {e}")
            raise

        finally:
            self._running = False
            self._loop_exited.set()
            logger.info("Queue worker stopped")

    async def stop(self) -> None:
        """
        Stop the worker.

        Gracefully shuts down:
        1. Stops receiving new messages and waits for the polling loop to
           exit, so a receive already in progress has spawned its attempt
        2. Waits for in-flight attempts to complete
        3. Cancels any remaining attempts; their messages reappear after
           the visibility timeout
        """
        if not self._running:
            return

        logger.info("Stopping queue worker...")
        self._running = False

        if asyncio.current_task() is not self._loop_task:
            try:
                await asyncio.wait_for(self._loop_exited.wait(), timeout=self.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for polling loop to exit")

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} deliveries to complete...")
            try:
                await asyncio.wait_for(
                    asyncio.gather(*list(self._tasks), return_exceptions=True),
                    timeout=self.shutdown_timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for deliveries, cancelling remaining")
                for task in list(self._tasks):
                    task.cancel()

    async def _process_message(self, message: Message) -> None:
        """
        Run one attempt and apply its outcome.

        Args:
            message: Message to process
        """
        try:
            logger.debug(
                f"Processing message {message.id} (receive {message.receive_count})"
            )

            try:
                result = await self.handler(message)
            except Exception as e:
                logger.bind(
                    message_id=message.id, receive_count=message.receive_count
                ).opt(exception=e).error(f"Handler raised for message {message.id}: {e}")
                result = DeliveryResult.retry(str(e))

            await self.apply_outcome(message, result)

        finally:
            self._semaphore.release()

    async def apply_outcome(self, message: Message, result: DeliveryResult) -> None:
        """Acknowledge, leave for retry, or dead-letter a received message."""
        if result.outcome == DeliveryOutcome.DELIVERED:
            acknowledged = await self.queue.acknowledge(message.id, message.receipt_handle)
            if not acknowledged:
                logger.warning(
                    f"Message {message.id} was delivered after its visibility timeout; "
                    "it may be delivered again"
                )
            return

        if result.outcome == DeliveryOutcome.RETRYABLE_FAILURE:
            await self.queue.fail(message.id, message.receipt_handle, result.reason or "retryable failure")
            return

        dead_lettered = await self.queue.dead_letter(
            message.id, message.receipt_handle, result.reason or "terminal failure"
        )
        if not dead_lettered:
            logger.warning(
                f"Message {message.id} failed terminally after its visibility timeout; "
                "it will be retried"
            )
            return

        log_relay_event(
            "terminal_delivery_failure",
            message_id=message.id,
            status_code=result.status_code,
            reason=result.reason,
            receive_count=message.receive_count,
        )
