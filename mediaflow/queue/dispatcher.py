"""
Queue Dispatcher.

Pulls notifications from each configured queue on a pool of worker
threads and hands them to their handler. A message is acked only after
its handler returns; failures are released for redelivery until the
delivery ceiling, after which the message goes to the dead letter store.
"""

import logging
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from mediaflow.common.errors import PermanentError
from mediaflow.common.logging_config import clear_correlation_id, set_correlation_id
from mediaflow.common.metrics import queue_messages_total
from mediaflow.queue.dlq import DeadLetterQueue
from mediaflow.queue.interface import QueueBackend, QueueMessage

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Any]

ACKED = "acked"
RETRIED = "retried"
DEAD_LETTERED = "dead_lettered"


@dataclass
class Route:
    queue: QueueBackend
    handler: Handler


class QueueDispatcher:
    """
    Worker pool consuming one or more queues.

    Spawns ``threads_per_queue`` threads per route; each thread polls its
    queue, runs the handler and settles the delivery.
    """

    def __init__(
        self,
        routes: List[Route],
        dlq: DeadLetterQueue,
        max_receive_count: int = 5,
        threads_per_queue: int = 2,
        poll_timeout: float = 1.0,
        retry_base_delay: float = 2.0,
        max_retry_delay: float = 60.0,
    ):
        """
        Args:
            routes: Queue and handler pairs
            dlq: Dead letter store for poison messages
            max_receive_count: Deliveries allowed before dead-lettering
            threads_per_queue: Worker threads per queue
            poll_timeout: Seconds each dequeue waits for a message
            retry_base_delay: Redelivery delay after the first failure
            max_retry_delay: Upper bound of the exponential redelivery delay
        """
        self.routes = routes
        self.dlq = dlq
        self.max_receive_count = max_receive_count
        self.threads_per_queue = threads_per_queue
        self.poll_timeout = poll_timeout
        self.retry_base_delay = retry_base_delay
        self.max_retry_delay = max_retry_delay
        self.workers: List[threading.Thread] = []
        self.running = False
        self._shutdown_event = threading.Event()

    def start(self) -> None:
        """Start worker threads."""
        if self.running:
            logger.warning("Queue dispatcher already running")
            return
        self.running = True
        self._shutdown_event.clear()

        for route in self.routes:
            for i in range(self.threads_per_queue):
                worker = threading.Thread(
                    target=self._worker_loop,
                    args=(route,),
                    name=f"Worker-{route.queue.name}-{i + 1}",
                    daemon=True,
                )
                worker.start()
                self.workers.append(worker)
        logger.info(f"Queue dispatcher started {len(self.workers)} workers")

    def stop(self, timeout: float = 30.0) -> None:
        """Stop worker threads, letting in-flight handlers finish."""
        if not self.running:
            return
        logger.info("Stopping queue dispatcher...")
        self.running = False
        self._shutdown_event.set()
        for worker in self.workers:
            worker.join(timeout=timeout / max(1, len(self.workers)))
            if worker.is_alive():
                logger.warning(f"Worker {worker.name} did not stop gracefully")
        self.workers.clear()
        logger.info("Queue dispatcher stopped")

    def _worker_loop(self, route: Route) -> None:
        worker_name = threading.current_thread().name
        logger.info(f"{worker_name} started")
        while self.running:
            try:
                message = route.queue.dequeue(timeout=self.poll_timeout)
                if message is None:
                    continue
                self.handle(route, message)
            except Exception as e:
                logger.error(f"{worker_name} error in worker loop: {e}", exc_info=True)
                # Back off from a broken queue connection
                self._shutdown_event.wait(1.0)
        logger.info(f"{worker_name} stopped")

    def poll_once(self, route: Route, timeout: float = 0.0) -> Optional[str]:
        """Receive and handle at most one message. Returns the outcome."""
        message = route.queue.dequeue(timeout=timeout)
        if message is None:
            return None
        return self.handle(route, message)

    def handle(self, route: Route, message: QueueMessage) -> str:
        """
        Run the handler for one delivery and settle it.

        Returns:
            "acked", "retried" or "dead_lettered"
        """
        queue_name = route.queue.name
        set_correlation_id(message.message_id)
        started = time.perf_counter()
        try:
            try:
                route.handler(message.body)
            except PermanentError as e:
                logger.error(f"Permanent failure for message {message.message_id}: {e}")
                outcome = self._dead_letter(route, message, e)
            except Exception as e:
                outcome = self._retry_or_dead_letter(route, message, e)
            else:
                route.queue.ack(message)
                outcome = ACKED
                logger.info(
                    f"Message {message.message_id} on {queue_name} handled in "
                    f"{(time.perf_counter() - started) * 1000:.1f}ms")
        finally:
            clear_correlation_id()
        queue_messages_total.labels(queue=queue_name, outcome=outcome).inc()
        return outcome

    def _retry_or_dead_letter(self, route: Route, message: QueueMessage, error: Exception) -> str:
        if message.receive_count >= self.max_receive_count:
            logger.error(
                f"Message {message.message_id} failed {message.receive_count} times: {error}")
            return self._dead_letter(route, message, error)

        delay = min(self.retry_base_delay * 2 ** (message.receive_count - 1), self.max_retry_delay)
        logger.warning(
            f"Message {message.message_id} failed (delivery {message.receive_count}), "
            f"retrying in {delay:.0f}s: {error}"
        )
        route.queue.nack(message, delay_seconds=delay)
        return RETRIED

    def _dead_letter(self, route: Route, message: QueueMessage, error: Exception) -> str:
        try:
            self.dlq.add(
                queue=route.queue.name,
                message_id=message.message_id,
                body=message.body,
                error="".join(traceback.format_exception_only(type(error), error)).strip(),
                receive_count=message.receive_count,
                original_timestamp=message.enqueued_at.isoformat(),
            )
        except OSError as e:
            # Keep the message on its live queue rather than lose it
            logger.critical(f"Failed to write message {message.message_id} to DLQ: {e}")
            route.queue.nack(message)
            return RETRIED
        route.queue.ack(message)
        return DEAD_LETTERED
