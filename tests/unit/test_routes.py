"""Unit tests for the HTTP API."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from structlog.testing import capture_logs

from feedcircle.config import Settings
from feedcircle.main import create_app
from feedcircle.services.orchestrator import CycleStatus
from feedcircle.services.ratelimit import RateLimiter

SECRET = "s3cret"


def _make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "secret_key": SECRET,
        "friends_url": "https://config.example/friends.json",
        "output_file": str(tmp_path / "feed.json"),
        "allowed_origins": ["https://blog.example.com"],
    }
    values.update(overrides)
    return Settings(**values)


def _make_client(settings: Settings, clock) -> tuple[TestClient, MagicMock]:
    app = create_app(settings)
    app.state.clock = clock
    app.state.limiter = RateLimiter(clock)
    orchestrator = MagicMock()
    orchestrator.start_cycle.return_value = CycleStatus.STARTED
    orchestrator.is_running = False
    app.state.orchestrator = orchestrator
    return TestClient(app), orchestrator


def _has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return _make_settings(tmp_path)


class TestTrigger:
    """Tests for GET /trigger."""

    def test_wrong_key_forbidden(self, settings: Settings, clock) -> None:
        """A bad key is rejected and no crawl starts."""
        client, orchestrator = _make_client(settings, clock)

        response = client.get("/trigger", params={"key": "wrong"})

        assert response.status_code == 403
        assert response.json() == {"error": "invalid access key"}
        orchestrator.start_cycle.assert_not_called()

    def test_missing_key_forbidden(self, settings: Settings, clock) -> None:
        client, orchestrator = _make_client(settings, clock)

        assert client.get("/trigger").status_code == 403
        orchestrator.start_cycle.assert_not_called()

    def test_starts_crawl(self, settings: Settings, clock) -> None:
        """A valid key starts a background crawl and answers right away."""
        client, orchestrator = _make_client(settings, clock)

        response = client.get("/trigger", params={"key": SECRET})

        assert response.status_code == 200
        assert response.json() == {"message": "crawl started"}
        orchestrator.start_cycle.assert_called_once()

    def test_already_running(self, settings: Settings, clock) -> None:
        """A second crawl while one is running gets 425."""
        client, orchestrator = _make_client(settings, clock)
        orchestrator.start_cycle.return_value = CycleStatus.ALREADY_RUNNING

        response = client.get("/trigger", params={"key": SECRET})

        assert response.status_code == 425
        assert "already running" in response.json()["message"]

    def test_rate_limited_with_retry_time(self, settings: Settings, clock) -> None:
        """The third request in a second is blocked for a day."""
        client, orchestrator = _make_client(settings, clock)

        statuses = [client.get("/trigger", params={"key": SECRET}).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]
        response = client.get("/trigger", params={"key": SECRET})
        assert response.status_code == 429
        assert response.json() == {
            "error": "too many requests, please wait until 2024-05-02 08:00:00"
        }
        assert orchestrator.start_cycle.call_count == 2

    def test_bad_key_logged_with_forwarded_client(self, settings: Settings, clock) -> None:
        """The warning names the same client the rate limiter uses."""
        client, _ = _make_client(settings, clock)

        with capture_logs() as logs:
            client.get("/trigger", params={"key": "wrong"}, headers={"X-Forwarded-For": "203.0.113.7"})

        events = [e for e in logs if e["event"] == "Invalid trigger key"]
        assert events and events[0]["client"] == "203.0.113.7"

    def test_invalid_rate_configuration(self, tmp_path: Path, clock) -> None:
        """A non-positive configured rate answers 400."""
        client, orchestrator = _make_client(_make_settings(tmp_path, trigger_rate=0), clock)

        response = client.get("/trigger", params={"key": SECRET})

        assert response.status_code == 400
        assert response.json() == {"error": "invalid rate limit configuration"}
        orchestrator.start_cycle.assert_not_called()


class TestDigest:
    """Tests for GET /digest."""

    def test_returns_file_verbatim(self, settings: Settings, clock) -> None:
        """The stored JSON is returned byte for byte."""
        payload = '{"meta": {"article_count": 0}, "articles": []}'.encode("utf-8")
        Path(settings.output_file).write_bytes(payload)
        client, _ = _make_client(settings, clock)

        response = client.get("/digest")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.content == payload

    def test_missing_file(self, settings: Settings, clock) -> None:
        """An unreadable digest gives 500 with an error body."""
        client, _ = _make_client(settings, clock)

        response = client.get("/digest")

        assert response.status_code == 500
        assert "error" in response.json()

    def test_rate_limits_are_per_endpoint_and_client(self, settings: Settings, clock) -> None:
        """Blocking one client on /digest leaves other clients and /trigger alone."""
        Path(settings.output_file).write_text("{}")
        client, _ = _make_client(settings, clock)

        statuses = [client.get("/digest").status_code for _ in range(6)]
        assert statuses == [200] * 5 + [429]
        assert client.get("/digest").json() == {
            "error": "too many requests, please wait until 2024-05-01 08:02:00"
        }

        other = client.get("/digest", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert other.status_code == 200
        assert client.get("/trigger", params={"key": SECRET}).status_code == 200

        clock.advance(121)
        assert client.get("/digest").status_code == 200


    def test_endpoints_use_their_own_burst(self, tmp_path: Path, clock) -> None:
        """Each endpoint's configured burst sizes its bucket."""
        settings = _make_settings(tmp_path, trigger_burst=1, digest_burst=3)
        Path(settings.output_file).write_text("{}")
        client, _ = _make_client(settings, clock)

        trigger = [client.get("/trigger", params={"key": SECRET}).status_code for _ in range(2)]
        digest = [client.get("/digest").status_code for _ in range(4)]

        assert trigger == [200, 429]
        assert digest == [200, 200, 200, 429]

    def test_reads_off_the_event_loop(self, settings: Settings, clock) -> None:
        """The digest file is read outside the event loop."""
        client, _ = _make_client(settings, clock)
        on_loop = []
        storage = MagicMock()

        def read_digest(path: str) -> bytes:
            on_loop.append(_has_running_loop())
            return b"{}"

        storage.read_digest.side_effect = read_digest
        client.app.state.storage = storage

        assert client.get("/digest").content == b"{}"
        assert on_loop == [False]


class TestMisc:
    """Tests for health and CORS."""

    def test_health(self, settings: Settings, clock) -> None:
        client, _ = _make_client(settings, clock)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["crawling"] is False

    def test_cors_allowed_origin(self, settings: Settings, clock) -> None:
        Path(settings.output_file).write_text("{}")
        client, _ = _make_client(settings, clock)

        allowed = client.get("/digest", headers={"Origin": "https://blog.example.com"})
        denied = client.get("/digest", headers={"Origin": "https://evil.example.com"})

        assert allowed.headers["access-control-allow-origin"] == "https://blog.example.com"
        assert "access-control-allow-origin" not in denied.headers
