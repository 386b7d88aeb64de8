"""
Unit tests for the in-process queue backend.
"""

import time

import pytest

from mediaflow.queue.inproc import InProcessQueue


@pytest.fixture
def queue():
    queue = InProcessQueue("uploads", visibility_timeout=30.0)
    yield queue
    queue.close()


class TestInProcessQueue:

    def test_send_and_receive(self, queue):
        message_id = queue.send({"assetId": "a"})

        message = queue.dequeue(timeout=0)

        assert message.message_id == message_id
        assert message.body == {"assetId": "a"}
        assert message.receive_count == 1
        assert message.receipt

    def test_empty_queue_times_out(self, queue):
        assert queue.dequeue(timeout=0.05) is None

    def test_leased_message_is_hidden(self, queue):
        queue.send({"n": 1})
        queue.dequeue(timeout=0)

        assert queue.dequeue(timeout=0) is None
        assert queue.size() == 0
        assert queue.in_flight() == 1

    def test_ack_removes(self, queue):
        queue.send({"n": 1})
        queue.ack(queue.dequeue(timeout=0))

        assert queue.size() == 0
        assert queue.in_flight() == 0

    def test_nack_redelivers_with_count(self, queue):
        queue.send({"n": 1})
        first = queue.dequeue(timeout=0)

        queue.nack(first, delay_seconds=0)
        second = queue.dequeue(timeout=0)

        assert second.message_id == first.message_id
        assert second.receive_count == 2
        assert second.receipt != first.receipt

    def test_nack_delay_hides_message(self, queue):
        queue.send({"n": 1})
        queue.nack(queue.dequeue(timeout=0), delay_seconds=30)

        assert queue.dequeue(timeout=0) is None
        assert queue.size() == 1

    def test_expired_lease_is_redelivered(self):
        queue = InProcessQueue("uploads", visibility_timeout=0.05)
        queue.send({"n": 1})
        stale = queue.dequeue(timeout=0)
        time.sleep(0.1)

        fresh = queue.dequeue(timeout=0.5)

        assert fresh.message_id == stale.message_id
        assert fresh.receive_count == 2

        # Ack with the expired receipt must not delete the new delivery
        queue.ack(stale)
        assert queue.in_flight() == 1
        queue.ack(fresh)
        assert queue.in_flight() == 0

    def test_closed_queue(self, queue):
        queue.close()

        assert queue.dequeue(timeout=0) is None
        with pytest.raises(RuntimeError):
            queue.send({"n": 1})
