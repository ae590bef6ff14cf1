"""Tests for notification channels."""

import json
import logging
import threading

import httpx
import pytest

from clusterwatch.config import ClusterwatchConfig
from clusterwatch.core.notifications import (
    CompositeNotifier,
    WebhookNotifier,
    build_notifier,
    log_notifier,
)

URL = "https://hooks.example.test/cw"


def mock_client(responses, received):
    """httpx client answering with the given status codes in order."""
    statuses = iter(responses)

    def handler(request):
        received.append(json.loads(request.content))
        status = next(statuses)
        if status is None:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(status)

    return httpx.Client(transport=httpx.MockTransport(handler))


def send(notifier):
    notifier(
        "Cluster Alert: Critical CPU Usage",
        "CPU usage is critically high\nCurrent: 95.0%",
        tag="cluster-alert-high-cpu-usage",
        require_interaction=True,
    )


class TestWebhookNotifier:
    """Tests for webhook delivery."""

    def test_posts_payload(self):
        received = []
        notifier = WebhookNotifier(url=URL, client=mock_client([200], received))

        send(notifier)
        notifier.flush()

        assert notifier.stats() == {"sent": 1, "failed": 0, "pending": 0}
        payload = received[0]
        assert payload["event"] == "cluster_alert"
        assert payload["title"] == "Cluster Alert: Critical CPU Usage"
        assert payload["tag"] == "cluster-alert-high-cpu-usage"
        assert payload["require_interaction"] is True
        assert "timestamp" in payload

    def test_retries_then_succeeds(self):
        received, pauses = [], []
        notifier = WebhookNotifier(
            url=URL,
            retry_count=2,
            retry_delay=0.5,
            client=mock_client([503, None, 204], received),
            sleep=pauses.append,
        )

        send(notifier)
        notifier.flush()

        assert len(received) == 3
        assert pauses == [0.5, 0.5]
        assert notifier.stats() == {"sent": 1, "failed": 0, "pending": 0}

    def test_gives_up_without_raising(self, caplog):
        received = []
        notifier = WebhookNotifier(url=URL, retry_count=1, client=mock_client([500, 500], received), sleep=lambda s: None)

        with caplog.at_level(logging.WARNING):
            send(notifier)
            notifier.flush()

        assert notifier.stats() == {"sent": 0, "failed": 1, "pending": 0}
        assert "Giving up on webhook notification" in caplog.text

    def test_call_only_queues(self):
        release = threading.Event()
        received = []

        def handler(request):
            release.wait(5.0)
            received.append(request)
            return httpx.Response(200)

        notifier = WebhookNotifier(url=URL, client=httpx.Client(transport=httpx.MockTransport(handler)))
        send(notifier)
        send(notifier)

        assert received == []
        release.set()
        notifier.close(timeout=5.0)
        assert notifier.stats() == {"sent": 2, "failed": 0, "pending": 0}


class TestFanOut:
    """Tests for composing channels."""

    def test_failing_channel_does_not_stop_others(self):
        calls = []

        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        def recorder(title, body, **kwargs):
            calls.append((title, kwargs["tag"]))

        send(CompositeNotifier([broken, recorder]))
        assert calls == [("Cluster Alert: Critical CPU Usage", "cluster-alert-high-cpu-usage")]

    def test_log_notifier(self, caplog):
        with caplog.at_level(logging.WARNING):
            send(log_notifier)
        assert "cluster-alert-high-cpu-usage" in caplog.text
        assert "Current: 95.0%" in caplog.text

    def test_build_without_webhook(self):
        notifier = build_notifier(ClusterwatchConfig())
        assert notifier.channels == [log_notifier]

    @pytest.mark.parametrize("retries", [0, 3])
    def test_build_with_webhook(self, retries):
        config = ClusterwatchConfig()
        config.notifications.webhook_url = URL
        config.notifications.retry_count = retries
        channels = build_notifier(config).channels
        assert isinstance(channels[1], WebhookNotifier)
        assert channels[1].url == URL
        assert channels[1].retry_count == retries
