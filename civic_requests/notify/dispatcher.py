"""
Fire-and-forget delivery of committed notifications.

The state machine stores notification rows in the same transaction as
the transition that caused them, then hands copies to the dispatcher.
A worker thread pushes each copy to every configured sink, retrying with
backoff. A delivery failure is logged and counted; it never reaches the
caller that made the transition.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Optional

from civic_requests.notify.retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

_STOP = object()


class NotificationSink(ABC):
    """An outside channel notifications are copied to."""

    name = "sink"

    @abstractmethod
    def deliver(self, notification: dict[str, Any]) -> None:
        """Deliver one notification; raise on failure."""

    def close(self) -> None:
        pass


class LogSink(NotificationSink):
    """Write each notification to the log. Used when no gateway is configured."""

    name = "log"

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def deliver(self, notification: dict[str, Any]) -> None:
        logger.log(
            self.level,
            "[%s] to %s: %s",
            notification.get("type"),
            notification.get("recipient_id"),
            notification.get("title"),
        )


class NotificationDispatcher:
    """
    Queue plus worker thread that copies notifications to sinks.

    Usage:
        dispatcher = NotificationDispatcher([LogSink()])
        dispatcher.start()
        state_machine = StateMachine(store, publisher=dispatcher.publish)
        ...
        dispatcher.stop()
    """

    def __init__(
        self,
        sinks: Optional[Iterable[NotificationSink]] = None,
        retry: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.sinks = list(sinks) if sinks is not None else [LogSink()]
        self.retry = retry or RetryConfig()
        self._sleep = sleep
        self._queue: queue.Queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.delivered = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(
            target=self._run, name="notification-dispatcher", daemon=True
        )
        self._thread.start()
        logger.debug("Notification dispatcher started with %d sink(s)", len(self.sinks))

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        """Deliver what is already queued, then stop the worker."""
        if not self.running:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Notification dispatcher did not stop within %ss", timeout)
        self._thread = None

    def close(self) -> None:
        self.stop()
        for sink in self.sinks:
            sink.close()

    def publish(self, notifications: list[dict[str, Any]]) -> None:
        for notification in notifications:
            self.enqueue(notification)

    def enqueue(self, notification: dict[str, Any]) -> None:
        self._queue.put(notification)

    def drain(self) -> None:
        """Block until every queued notification has been attempted."""
        if self.running:
            self._queue.join()
            return
        # No worker: deliver inline on the caller's thread.
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            try:
                if item is not _STOP:
                    self._deliver(item)
            finally:
                self._queue.task_done()

    def pending(self) -> int:
        return self._queue.qsize()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, notification: dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                retry_with_backoff(
                    lambda: sink.deliver(notification),
                    self.retry,
                    logger_=logger,
                    sleep=self._sleep,
                )
            except Exception:
                with self._lock:
                    self.failed += 1
                logger.exception(
                    "Giving up on %s delivery of notification %s to %s",
                    sink.name,
                    notification.get("id"),
                    notification.get("recipient_id"),
                )
            else:
                with self._lock:
                    self.delivered += 1
