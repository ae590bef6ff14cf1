"""Notification channels for raised alerts.

Version: 0.3.0

Every channel is a callable ``notify(title, body, *, tag, require_interaction)``
that the alert evaluator invokes for critical alerts. Channels never raise
and never block on the network: delivery problems are logged and counted.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from clusterwatch.config import ClusterwatchConfig

logger = logging.getLogger(__name__)

WEBHOOK_EVENT = "cluster_alert"


def log_notifier(title: str, body: str, *, tag: str, require_interaction: bool = False) -> None:
    """Notifier that writes notifications to the log."""
    logger.warning("[%s] %s: %s", tag, title, body.replace("\n", " | "))


# =============================================================================
# Webhook
# =============================================================================

@dataclass
class WebhookNotifier:
    """POST notifications as JSON to a webhook URL.

    Calls only enqueue the payload. A daemon worker thread, started on first
    use, performs the requests and retries so the caller never waits on the
    network.

    Attributes:
        url: Endpoint receiving the notifications
        timeout: Request timeout in seconds
        retry_count: Extra attempts after a failed one
        retry_delay: Pause between attempts in seconds
        client: httpx client to send with; one is created per delivery when None
        sent: Notifications delivered
        failed: Notifications given up on
    """

    url: str
    timeout: float = 5.0
    retry_count: int = 0
    retry_delay: float = 1.0
    client: Optional[httpx.Client] = None
    sent: int = 0
    failed: int = 0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    _queue: queue.Queue[Optional[Dict[str, Any]]] = field(default_factory=queue.Queue, init=False, repr=False)
    _worker: Optional[threading.Thread] = field(default=None, init=False, repr=False)
    _worker_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __call__(self, title: str, body: str, *, tag: str, require_interaction: bool = False) -> None:
        payload = {
            "event": WEBHOOK_EVENT,
            "title": title,
            "body": body,
            "tag": tag,
            "require_interaction": require_interaction,
            "timestamp": datetime.now().isoformat(),
        }
        self._ensure_worker()
        self._queue.put(payload)
        logger.debug("Queued webhook notification %s", tag)

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="WebhookNotifier", daemon=True)
            self._worker.start()

    def _run(self) -> None:
        while True:
            payload = self._queue.get()
            try:
                if payload is None:
                    return
                self.deliver(payload)
            except Exception as e:
                logger.error("Webhook worker error: %s", e)
            finally:
                self._queue.task_done()

    def deliver(self, payload: Dict[str, Any]) -> bool:
        """Send one payload, retrying as configured. Blocks until done."""
        attempts = 1 + max(self.retry_count, 0)
        for attempt in range(1, attempts + 1):
            if self._post(payload, attempt, attempts):
                self.sent += 1
                return True
            if attempt < attempts:
                self.sleep(self.retry_delay)
        self.failed += 1
        logger.error("Giving up on webhook notification %s after %d attempt(s)", payload.get("tag"), attempts)
        return False

    def _post(self, payload: Dict[str, Any], attempt: int, attempts: int) -> bool:
        try:
            if self.client is not None:
                response = self.client.post(self.url, json=payload, timeout=self.timeout)
            else:
                with httpx.Client() as client:
                    response = client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning("Webhook attempt %d/%d failed: %s", attempt, attempts, e)
            return False

    def flush(self) -> None:
        """Wait until every queued notification has been handled."""
        self._queue.join()

    def close(self, timeout: Optional[float] = None) -> None:
        """Deliver what is queued, then stop the worker."""
        with self._worker_lock:
            worker = self._worker
        if worker is None or not worker.is_alive():
            return
        self._queue.put(None)
        worker.join(timeout)

    def stats(self) -> Dict[str, int]:
        return {"sent": self.sent, "failed": self.failed, "pending": self._queue.qsize()}


# =============================================================================
# Fan-out
# =============================================================================

class CompositeNotifier:
    """Deliver each notification to every channel in turn."""

    def __init__(self, channels: List[Callable[..., None]]):
        self.channels = list(channels)

    def __call__(self, title: str, body: str, *, tag: str, require_interaction: bool = False) -> None:
        for channel in self.channels:
            try:
                channel(title, body, tag=tag, require_interaction=require_interaction)
            except Exception as e:
                logger.error("Notification channel %r failed: %s", channel, e)

    def flush(self) -> None:
        for channel in self.channels:
            if hasattr(channel, "flush"):
                channel.flush()

    def close(self, timeout: Optional[float] = None) -> None:
        for channel in self.channels:
            if hasattr(channel, "close"):
                channel.close(timeout)


def build_notifier(config: ClusterwatchConfig) -> CompositeNotifier:
    """Log notifier, plus a webhook when ``notifications.webhook_url`` is set."""
    channels: List[Callable[..., None]] = [log_notifier]
    settings = config.notifications
    if settings.webhook_url:
        channels.append(
            WebhookNotifier(
                url=settings.webhook_url,
                timeout=settings.timeout,
                retry_count=settings.retry_count,
                retry_delay=settings.retry_delay,
            )
        )
        logger.info("Webhook notifications enabled for %s", settings.webhook_url)
    return CompositeNotifier(channels)
