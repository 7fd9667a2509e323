"""
Tests for InMemoryQueue implementation.
"""

import pytest
import asyncio
import hashlib

from webhook_relay.config import QueueConfig
from webhook_relay.message_queue import (
    InMemoryQueue,
    MessageState,
    MessageTooLargeError,
    MissingDeduplicationIdError,
    MissingMessageGroupError,
    QueueUnavailableError,
)
from webhook_relay.utils.metrics import metrics as relay_metrics


class TestInMemoryQueue:
    """Test suite for InMemoryQueue."""

    @pytest.fixture
    def queue(self, clock):
        """Create a fresh queue with a 180s visibility timeout and 3 receives."""
        config = QueueConfig(visibility_timeout_seconds=180, max_receive_count=3)
        return InMemoryQueue(config=config, clock=clock)

    async def test_send_and_receive(self, queue, clock):
        """Test a sent message is received with queue-managed fields set."""
        message_id = await queue.send(b'{"a":1}')

        message = await queue.receive()

        assert message is not None
        assert message.id == message_id
        assert message.body == b'{"a":1}'
        assert message.receive_count == 1
        assert message.state == MessageState.IN_FLIGHT
        assert message.receipt_handle
        assert (message.visibility_deadline - clock.now).total_seconds() == 180

    async def test_receive_empty_queue(self, queue):
        """Test receiving from empty queue returns None."""
        assert await queue.receive() is None

    async def test_in_flight_message_hidden_from_other_consumers(self, queue, clock):
        """Test a received message is invisible until its deadline passes."""
        await queue.send(b"payload")
        first = await queue.receive()

        clock.advance(179)
        assert await queue.receive() is None

        clock.advance(1)
        second = await queue.receive()
        assert second is not None
        assert second.id == first.id
        assert second.receive_count == 2
        assert second.receipt_handle != first.receipt_handle

    async def test_acknowledge_removes_message(self, queue, clock):
        """Test acknowledged messages never reappear."""
        await queue.send(b"payload")
        message = await queue.receive()

        assert await queue.acknowledge(message.id, message.receipt_handle) is True

        clock.advance(1000)
        assert await queue.receive() is None

        metrics = await queue.get_metrics()
        assert metrics.acknowledged == 1
        assert metrics.visible == 0
        assert metrics.in_flight == 0

    async def test_acknowledge_with_stale_receipt_is_ignored(self, queue, clock):
        """Test a slow consumer cannot delete a message redelivered to someone else."""
        await queue.send(b"payload")
        first = await queue.receive()

        clock.advance(181)
        second = await queue.receive()

        assert await queue.acknowledge(first.id, first.receipt_handle) is False
        assert await queue.acknowledge(second.id, second.receipt_handle) is True

    async def test_fail_keeps_message_hidden_until_deadline(self, queue, clock):
        """Test failing does not make the message visible early."""
        await queue.send(b"payload")
        message = await queue.receive()

        await queue.fail(message.id, message.receipt_handle, "503 from destination")

        assert await queue.receive() is None

        clock.advance(180)
        retry = await queue.receive()
        assert retry is not None
        assert retry.receive_count == 2
        assert retry.last_error == "503 from destination"

    async def test_dead_letter_after_exactly_max_receive_count(self, queue, clock):
        """Test a message reaches the DLQ on its 3rd failed receive, not before."""
        await queue.send(b"poison")

        for attempt in range(1, 4):
            message = await queue.receive()
            assert message is not None
            assert message.receive_count == attempt

            metrics = await queue.get_metrics()
            assert metrics.dead_letter == 0

            await queue.fail(message.id, message.receipt_handle, f"Error {attempt}")
            clock.advance(180)

        metrics = await queue.get_metrics()
        assert metrics.dead_letter == 1
        assert metrics.failed_receives == 3
        assert await queue.receive() is None

        dead_letters = await queue.get_dead_letter_messages()
        assert len(dead_letters) == 1
        assert dead_letters[0].receive_count == 3
        assert dead_letters[0].state == MessageState.DEAD_LETTER
        assert dead_letters[0].last_error == "Error 3"
        assert relay_metrics.dead_lettered.get(reason="max_receive_count") == 1

    async def test_expired_message_without_report_is_dead_lettered(self, queue, clock):
        """Test consumers that vanish mid-attempt still count towards the DLQ."""
        await queue.send(b"payload")

        for _ in range(3):
            assert await queue.receive() is not None
            clock.advance(180)

        # Sweep happens on the next receive
        assert await queue.receive() is None

        metrics = await queue.get_metrics()
        assert metrics.dead_letter == 1
        assert metrics.failed_receives == 3
        assert relay_metrics.dead_lettered.get(reason="max_receive_count") == 1

    async def test_no_dead_letter_queue_retries_forever(self, clock):
        """Test messages keep coming back when no DLQ is configured."""
        queue = InMemoryQueue(
            config=QueueConfig(max_receive_count=1, dead_letter_enabled=False),
            clock=clock,
        )
        await queue.send(b"payload")

        for attempt in range(1, 5):
            message = await queue.receive()
            assert message.receive_count == attempt
            await queue.fail(message.id, message.receipt_handle, "boom")
            clock.advance(180)

        assert (await queue.get_metrics()).dead_letter == 0

    async def test_dead_letter_diverts_immediately(self, queue):
        """Test terminal failures skip the remaining receives."""
        await queue.send(b"payload")
        message = await queue.receive()

        await queue.dead_letter(message.id, message.receipt_handle, "Destination returned 400")

        dead_letters = await queue.get_dead_letter_messages()
        assert [m.id for m in dead_letters] == [message.id]
        assert dead_letters[0].last_error == "Destination returned 400"
        assert relay_metrics.dead_lettered.get(reason="terminal_failure") == 1

    async def test_retry_exhaustion_counts_dead_lettered(self, clock):
        """Test two retryable failures with max_receive_count=2 count one dead letter."""
        queue = InMemoryQueue(config=QueueConfig(max_receive_count=2), clock=clock)
        await queue.send(b"payload")

        for _ in range(2):
            message = await queue.receive()
            await queue.fail(message.id, message.receipt_handle, "Destination returned 503")
            clock.advance(180)

        assert (await queue.get_metrics()).dead_letter == 1
        assert relay_metrics.dead_lettered.get(reason="max_receive_count") == 1
        assert relay_metrics.dead_lettered.get(reason="terminal_failure") == 0

    async def test_dead_letter_with_stale_receipt_is_ignored(self, queue, clock):
        """Test a terminal outcome reported after the visibility timeout changes nothing."""
        await queue.send(b"payload")
        stale = await queue.receive()
        clock.advance(180)
        current = await queue.receive()

        assert await queue.dead_letter(stale.id, stale.receipt_handle, "400") is False

        assert await queue.get_dead_letter_messages() == []
        assert relay_metrics.dead_lettered.get(reason="terminal_failure") == 0
        assert await queue.dead_letter(current.id, current.receipt_handle, "400") is True

    async def test_dead_letter_without_dlq_drops_message(self, clock):
        """Test terminal failures are dropped when there is no DLQ."""
        queue = InMemoryQueue(config=QueueConfig(dead_letter_enabled=False), clock=clock)
        await queue.send(b"payload")
        message = await queue.receive()

        await queue.dead_letter(message.id, message.receipt_handle, "400")

        clock.advance(1000)
        assert await queue.receive() is None
        assert (await queue.get_metrics()).dead_letter == 0
        assert relay_metrics.dead_lettered.get(reason="terminal_failure") == 0

    async def test_redrive_dead_letter_message(self, queue, clock):
        """Test redriving resets the receive count and makes the message visible."""
        await queue.send(b"payload")
        message = await queue.receive()
        await queue.dead_letter(message.id, message.receipt_handle, "400")

        assert await queue.redrive_dead_letter(message.id) is True

        redriven = await queue.receive()
        assert redriven.id == message.id
        assert redriven.receive_count == 1
        assert redriven.last_error is None
        assert (await queue.get_metrics()).dead_letter == 0

    async def test_redrive_unknown_message(self, queue):
        """Test redriving an unknown id reports False."""
        assert await queue.redrive_dead_letter("missing") is False

    async def test_get_dead_letter_messages_with_limit(self, queue):
        """Test retrieving dead letter messages with limit."""
        for i in range(5):
            await queue.send(f"Message {i}".encode())
            m = await queue.receive()
            await queue.dead_letter(m.id, m.receipt_handle, "Error")

        dead_letters = await queue.get_dead_letter_messages(limit=3)

        assert len(dead_letters) == 3

    async def test_rejects_oversized_message(self, clock):
        """Test bodies above max_message_bytes are rejected."""
        queue = InMemoryQueue(config=QueueConfig(max_message_bytes=10), clock=clock)

        with pytest.raises(MessageTooLargeError):
            await queue.send(b"x" * 11)

        await queue.send(b"x" * 10)

    async def test_closed_queue_rejects_sends(self, queue):
        """Test a closed queue reports itself unavailable."""
        await queue.close()

        with pytest.raises(QueueUnavailableError):
            await queue.send(b"payload")

    async def test_concurrent_send_receive(self, queue):
        """Test concurrent operations hand out each message once."""
        await asyncio.gather(*[queue.send(f"Message {i}".encode()) for i in range(10)])

        received = await asyncio.gather(*[queue.receive() for _ in range(12)])

        ids = [m.id for m in received if m is not None]
        assert len(ids) == 10
        assert len(set(ids)) == 10


class TestFifoQueue:
    """FIFO ordering and deduplication."""

    @pytest.fixture
    def queue(self, clock):
        config = QueueConfig(fifo_queue=True, content_based_deduplication=True)
        return InMemoryQueue(config=config, clock=clock)

    async def test_requires_group_id(self, queue):
        """Test FIFO sends without a group are rejected."""
        with pytest.raises(MissingMessageGroupError):
            await queue.send(b"payload")

    async def test_requires_deduplication_id_without_content_based(self, clock):
        """Test explicit dedup ids are required when content-based dedup is off."""
        queue = InMemoryQueue(config=QueueConfig(fifo_queue=True), clock=clock)

        with pytest.raises(MissingDeduplicationIdError):
            await queue.send(b"payload", group_id="g1")

        await queue.send(b"payload", group_id="g1", deduplication_id="d1")

    async def test_content_based_deduplication(self, queue):
        """Test identical bodies within the window are enqueued once."""
        first = await queue.send(b"same", group_id="g1")
        second = await queue.send(b"same", group_id="g1")

        assert first == second
        message = await queue.receive()
        assert message.deduplication_id == hashlib.sha256(b"same").hexdigest()

        metrics = await queue.get_metrics()
        assert metrics.deduplicated == 1

    async def test_deduplication_window_expires(self, queue, clock):
        """Test the same body is accepted again after five minutes."""
        first = await queue.send(b"same", group_id="g1")
        clock.advance(InMemoryQueue.DEDUPLICATION_WINDOW_SECONDS)
        second = await queue.send(b"same", group_id="g1")

        assert first != second

    async def test_explicit_deduplication_id_wins(self, queue):
        """Test different bodies sharing an explicit dedup id are collapsed."""
        first = await queue.send(b"one", group_id="g1", deduplication_id="evt-1")
        second = await queue.send(b"two", group_id="g1", deduplication_id="evt-1")

        assert first == second

    async def test_one_in_flight_message_per_group(self, queue, clock):
        """Test a group is blocked while its head is in flight."""
        await queue.send(b"g1-first", group_id="g1")
        await queue.send(b"g1-second", group_id="g1")
        await queue.send(b"g2-first", group_id="g2")

        first = await queue.receive()
        other_group = await queue.receive()

        assert first.body == b"g1-first"
        assert other_group.body == b"g2-first"
        assert await queue.receive() is None

        await queue.acknowledge(first.id, first.receipt_handle)
        assert (await queue.receive()).body == b"g1-second"

    async def test_failed_head_is_retried_before_rest_of_group(self, queue, clock):
        """Test ordering holds across a retry."""
        await queue.send(b"first", group_id="g1")
        await queue.send(b"second", group_id="g1")

        head = await queue.receive()
        await queue.fail(head.id, head.receipt_handle, "503")

        assert await queue.receive() is None

        clock.advance(180)
        retry = await queue.receive()
        assert retry.body == b"first"
        assert retry.receive_count == 2
