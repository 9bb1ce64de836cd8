"""Tests for the v1 submission and status endpoints."""

from unittest.mock import patch

from pap.core.errors import LedgerBusy
from tests.fixtures.packages import build_package
from tests.fixtures.platform import make_hash


class TestSubmitEndpoint:
    """Test POST /api/v1/submit."""

    async def test_should_accept_new_package(self, client, platform, valid_package):
        response = await client.post("/api/v1/submit", content=valid_package)

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "queued"
        assert len(body["hash"]) == 64
        assert body["status_url"] == f"/api/v1/status/{body['hash']}"
        assert body["hash"] in platform.queue

    async def test_should_report_duplicate(self, client, valid_package):
        first = await client.post("/api/v1/submit", content=valid_package)
        second = await client.post("/api/v1/submit", content=valid_package)

        assert second.status_code == 200
        assert second.json() == {
            "status": "duplicate",
            "hash": first.json()["hash"],
            "status_url": first.json()["status_url"],
        }

    async def test_should_reject_malformed_package(self, client, platform):
        response = await client.post("/api/v1/submit", content=b"\x00\x01garbage")

        assert response.status_code == 400
        body = response.json()
        assert body["status"] == "malformed"
        assert "unable to parse the package into a ZIP archive" in body["reason"]
        assert platform.store.get_statistics()["total_submissions"] == 0

    async def test_should_reject_layout_violation_with_reason(self, client):
        response = await client.post(
            "/api/v1/submit", content=build_package(extra={"solution.py": b"x"})
        )

        assert response.status_code == 400
        assert response.json() == {
            "status": "malformed",
            "reason": "unrecognized item: solution.py",
        }

    async def test_should_reject_empty_body(self, client):
        response = await client.post("/api/v1/submit", content=b"")

        assert response.status_code == 400
        assert response.json()["reason"] == "empty package"

    async def test_should_refuse_declared_oversized_body(self, client, platform):
        platform.max_upload_bytes = 1024

        with patch.object(platform.gate, "admit") as admit:
            response = await client.post("/api/v1/submit", content=b"x" * 4096)

        assert response.status_code == 400
        assert response.json() == {
            "status": "malformed",
            "reason": "package is too big (limit 1024 bytes)",
        }
        admit.assert_not_called()
        assert platform.store.get_statistics()["total_submissions"] == 0

    async def test_should_stop_reading_oversized_stream(self, client, platform):
        platform.max_upload_bytes = 1024
        sent = []

        async def chunks():
            for _ in range(64):
                sent.append(256)
                yield b"y" * 256

        with patch.object(platform.gate, "admit") as admit:
            response = await client.post("/api/v1/submit", content=chunks())

        assert response.status_code == 400
        assert response.json()["status"] == "malformed"
        assert "too big" in response.json()["reason"]
        admit.assert_not_called()
        assert platform.store.get_statistics()["total_submissions"] == 0
        assert len(platform.queue) == 0

    async def test_should_accept_streamed_package_within_limit(
        self, client, platform, valid_package
    ):
        async def chunks():
            for start in range(0, len(valid_package), 100):
                yield valid_package[start : start + 100]

        response = await client.post("/api/v1/submit", content=chunks())

        assert response.status_code == 202
        assert response.json()["hash"] in platform.queue

    async def test_should_return_503_when_ledger_busy(self, client, platform, valid_package):
        with patch.object(platform.gate, "admit", side_effect=LedgerBusy("lock timeout")):
            response = await client.post(
                "/api/v1/submit",
                content=valid_package,
                headers={"X-Request-ID": "busy-req-0001"},
            )

        assert response.status_code == 503
        body = response.json()
        assert body["error"] == "LedgerBusy"
        assert body["message"] == "lock timeout"
        assert body["correlation_id"] == "busy-req-0001"
        assert response.headers["X-Request-ID"] == "busy-req-0001"


class TestStatusEndpoint:
    """Test GET /api/v1/status/{hash}."""

    async def test_should_return_404_for_unknown_hash(self, client):
        response = await client.get(f"/api/v1/status/{make_hash('nobody')}")

        assert response.status_code == 404
        assert response.json() == {"status": "not_found"}

    async def test_should_return_404_for_malformed_hash(self, client):
        response = await client.get("/api/v1/status/not-a-hash")

        assert response.status_code == 404
        assert response.json() == {"status": "not_found"}

    async def test_should_return_queue_position(self, client, valid_package):
        submitted = (await client.post("/api/v1/submit", content=valid_package)).json()

        response = await client.get(submitted["status_url"])

        assert response.status_code == 200
        assert response.json() == {"status": "queued", "position": 1}


class TestHealthEndpoint:
    """Test GET /api/v1/health."""

    async def test_should_report_health(self, client, platform, valid_package):
        await client.post("/api/v1/submit", content=valid_package)

        response = await client.get("/api/v1/health", headers={"X-Request-ID": "health-check-1"})

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "version": "0.1.0",
            "queue_depth": 1,
            "slots": platform.dispatcher.slots,
            "correlation_id": "health-check-1",
        }
