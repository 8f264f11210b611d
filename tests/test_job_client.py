"""Tests for JobClient.

Verifies against an httpx.MockTransport backend:
- Multipart submission (single and batch) and error bodies
- Sequential polling, progress reporting and terminal detection
- Polling deadline and cooperative cancellation
- Malformed responses, transport failures, health checks and deletion
"""

import json
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

import quippix.client.jobs as jobs_module
from quippix.client import CancellationToken, JobClient
from quippix.core.config import ClientConfig
from quippix.core.errors import (
    ApiError,
    ErrorCategory,
    GenerationCancelledError,
    GenerationTimeoutError,
    MalformedResponseError,
    classify,
)
from quippix.core.models import (
    BatchGenerationRequest,
    BatchState,
    BatchStatus,
    GenerationParams,
    GenerationRequest,
    JobState,
    JobStatus,
)

Handler = Callable[[httpx.Request], httpx.Response]

# =============================================================================
# Helpers
# =============================================================================


def status_sequence(*payloads: dict[str, Any]) -> tuple[Handler, list[httpx.Request]]:
    """Handler answering status requests with each payload in turn (last one repeats)."""
    seen: list[httpx.Request] = []
    remaining: Iterator[dict[str, Any]] = iter(payloads)
    last: dict[str, Any] = payloads[-1]

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal last
        seen.append(request)
        last = next(remaining, last)
        return httpx.Response(200, json=last)

    return handler, seen


def job(state: str, progress: float = 0, **extra: Any) -> dict[str, Any]:
    return {"jobId": "job-1", "status": state, "progress": progress, **extra}


# =============================================================================
# Submission
# =============================================================================


class TestSubmitSingle:
    @pytest.mark.asyncio
    async def test_returns_job_id_and_sends_multipart(
        self, make_client, request_for, image_file: Path
    ):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"jobId": "job-123"})

        async with make_client(handler) as client:
            job_id = await client.submit_single(request_for(image_file))

        assert job_id == "job-123"
        request = captured[0]
        assert request.method == "POST"
        assert request.url.path == "/generate"
        assert request.headers["X-QuipPix-Tier"] == "free"
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.content
        assert b'name="image"; filename="selfie.jpg"' in body
        assert b"fake-jpeg" in body
        assert b'name="params"' in body
        assert b'"styleId": "pixel-art"' in body

    @pytest.mark.asyncio
    async def test_accepts_file_uri(self, make_client, params: GenerationParams, image_file: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            assert b"fake-jpeg" in request.content
            return httpx.Response(200, json={"jobId": "job-uri"})

        request = GenerationRequest(image_ref=image_file.as_uri(), params=params)
        async with make_client(handler) as client:
            assert await client.submit_single(request) == "job-uri"

    @pytest.mark.asyncio
    async def test_error_field_wins(self, make_client, request_for, image_file: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Invalid style", "message": "ignored"})

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.submit_single(request_for(image_file))

        assert exc_info.value.status == 400
        assert exc_info.value.message == "Invalid style"
        assert exc_info.value.body == {"error": "Invalid style", "message": "ignored"}
        assert classify(exc_info.value) is ErrorCategory.UNKNOWN

    @pytest.mark.asyncio
    async def test_limit_message_classifies_as_limit(
        self, make_client, request_for, image_file: Path
    ):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"message": "Daily generation limit reached"})

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.submit_single(request_for(image_file))

        assert exc_info.value.message == "Daily generation limit reached"
        assert classify(exc_info.value) is ErrorCategory.LIMIT

    @pytest.mark.asyncio
    async def test_unparsable_error_body(self, make_client, request_for, image_file: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad gateway</html>")

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.submit_single(request_for(image_file))

        assert exc_info.value.body == {"error": "Unknown error"}
        assert exc_info.value.message == "Unknown error"
        assert classify(exc_info.value) is ErrorCategory.SERVER

    @pytest.mark.asyncio
    async def test_empty_error_body_uses_default_message(
        self, make_client, request_for, image_file: Path
    ):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={})

        async with make_client(handler) as client:
            with pytest.raises(ApiError, match="Generation failed"):
                await client.submit_single(request_for(image_file))

    @pytest.mark.asyncio
    async def test_success_without_job_id_is_malformed(
        self, make_client, request_for, image_file: Path
    ):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler) as client:
            with pytest.raises(MalformedResponseError):
                await client.submit_single(request_for(image_file))

    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self, make_client, request_for, image_file: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Network is unreachable", request=request)

        async with make_client(handler) as client:
            with pytest.raises(httpx.ConnectError) as exc_info:
                await client.submit_single(request_for(image_file))

        assert classify(exc_info.value) is ErrorCategory.NETWORK


class TestSubmitBatch:
    @pytest.mark.asyncio
    async def test_uploads_indexed_images(
        self, make_client, params: GenerationParams, tmp_path: Path
    ):
        refs = []
        for i in range(3):
            path = tmp_path / f"p{i}.png"
            path.write_bytes(f"png-{i}".encode())
            refs.append(str(path))
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"batchId": "b-1", "jobIds": ["j0", "j1", "j2"]})

        async with make_client(handler) as client:
            result = await client.submit_batch(
                BatchGenerationRequest(image_refs=tuple(refs), params=params)
            )

        assert result.batch_id == "b-1"
        assert result.job_ids == ["j0", "j1", "j2"]
        body = captured[0].content
        assert captured[0].url.path == "/batch-generate"
        for i in range(3):
            assert f'name="image_{i}"'.encode() in body
        assert b'name="params"' in body

    @pytest.mark.asyncio
    async def test_images_are_read_off_the_event_loop(
        self, make_client, params: GenerationParams, monkeypatch: pytest.MonkeyPatch
    ):
        loop_thread = threading.get_ident()
        reader_threads: list[int] = []

        def fake_image_part(image_ref: str, default_name: str) -> tuple[str, bytes, str]:
            reader_threads.append(threading.get_ident())
            return (default_name, b"png", "image/png")

        monkeypatch.setattr(jobs_module, "_image_part", fake_image_part)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"batchId": "b-1", "jobIds": ["j0", "j1"]})

        async with make_client(handler) as client:
            await client.submit_batch(
                BatchGenerationRequest(image_refs=("a.png", "b.png"), params=params)
            )

        assert len(reader_threads) == 2
        assert loop_thread not in reader_threads

    def test_batch_size_is_bounded(self, params: GenerationParams):
        with pytest.raises(ValueError):
            BatchGenerationRequest(image_refs=tuple(f"{i}.png" for i in range(11)), params=params)
        with pytest.raises(ValueError):
            BatchGenerationRequest(image_refs=(), params=params)


# =============================================================================
# Status
# =============================================================================


class TestGetStatus:
    @pytest.mark.asyncio
    async def test_parses_wire_fields(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/status/job-1"
            return httpx.Response(
                200,
                json=job("done", 100, resultUrl="https://cdn.test/r.png", unexpected="ignored"),
            )

        async with make_client(handler) as client:
            status = await client.get_status("job-1")

        assert status.state is JobState.DONE
        assert status.progress == 100
        assert status.result_url == "https://cdn.test/r.png"
        assert status.is_terminal

    @pytest.mark.asyncio
    async def test_non_2xx_raises_api_error(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "Job not found"})

        async with make_client(handler) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.get_status("missing")

        assert exc_info.value.status == 404
        assert exc_info.value.message == "Failed to get job status"
        assert exc_info.value.body == {"error": "Job not found"}

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        async with make_client(handler) as client:
            with pytest.raises(MalformedResponseError):
                await client.get_status("job-1")

    @pytest.mark.asyncio
    async def test_unknown_state_is_malformed(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=job("exploded"))

        async with make_client(handler) as client:
            with pytest.raises(MalformedResponseError):
                await client.get_status("job-1")


# =============================================================================
# Polling
# =============================================================================


class TestPollUntilTerminal:
    @pytest.mark.asyncio
    async def test_reports_every_status_and_returns_terminal(self, make_client, fake_clock):
        handler, seen = status_sequence(
            job("queued", 0),
            job("running", 40),
            job("running", 80),
            job("done", 100, resultUrl="https://cdn.test/r.png"),
        )
        reported: list[JobStatus] = []

        async with make_client(handler) as client:
            final = await client.poll_until_terminal("job-1", reported.append)

        assert [s.progress for s in reported] == [0, 40, 80, 100]
        assert [s.state for s in reported] == [
            JobState.QUEUED,
            JobState.RUNNING,
            JobState.RUNNING,
            JobState.DONE,
        ]
        assert final.state is JobState.DONE
        assert final.result_url == "https://cdn.test/r.png"
        assert len(seen) == 4
        # fetch, wait, fetch: one wait between each pair of polls, none after the last
        assert fake_clock.sleeps == [2.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_failed_is_terminal(self, make_client):
        handler, _ = status_sequence(job("running", 10), job("failed", 10, error="GPU crashed"))

        async with make_client(handler) as client:
            final = await client.poll_until_terminal("job-1", lambda s: None)

        assert final.state is JobState.FAILED
        assert final.error == "GPU crashed"

    @pytest.mark.asyncio
    async def test_progress_is_not_smoothed(self, make_client):
        handler, _ = status_sequence(job("running", 60), job("running", 30), job("done", 100))
        reported: list[float] = []

        async with make_client(handler) as client:
            await client.poll_until_terminal("job-1", lambda s: reported.append(s.progress))

        assert reported == [60, 30, 100]

    @pytest.mark.asyncio
    async def test_async_progress_callback(self, make_client):
        handler, _ = status_sequence(job("running", 50), job("done", 100))
        reported: list[float] = []

        async def on_progress(status: JobStatus) -> None:
            reported.append(status.progress)

        async with make_client(handler) as client:
            await client.poll_until_terminal("job-1", on_progress)

        assert reported == [50, 100]

    @pytest.mark.asyncio
    async def test_deadline_raises_timeout(self, make_client, fake_clock):
        handler, seen = status_sequence(job("running", 10))

        async with make_client(handler) as client:
            with pytest.raises(GenerationTimeoutError) as exc_info:
                await client.poll_until_terminal(
                    "job-1", lambda s: None, interval=2.0, timeout=10.0
                )

        assert classify(exc_info.value) is ErrorCategory.TIMEOUT
        assert len(seen) == 5
        assert fake_clock.now == 10.0

    @pytest.mark.asyncio
    async def test_poll_transport_failure_ends_loop(self, make_client):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 2:
                raise httpx.ReadError("connection dropped", request=request)
            return httpx.Response(200, json=job("running", 20))

        async with make_client(handler) as client:
            with pytest.raises(httpx.ReadError):
                await client.poll_until_terminal("job-1", lambda s: None)

        assert calls == 2

    @pytest.mark.asyncio
    async def test_cancel_during_wait_stops_without_progress(self, make_client):
        handler, seen = status_sequence(job("running", 10), job("running", 20), job("done", 100))
        token = CancellationToken()
        reported: list[float] = []

        def on_progress(status: JobStatus) -> None:
            reported.append(status.progress)
            token.cancel("screen dismissed")

        async with make_client(handler) as client:
            with pytest.raises(GenerationCancelledError, match="screen dismissed"):
                await client.poll_until_terminal("job-1", on_progress, token=token)

        assert reported == [10]
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_cancel_during_fetch_discards_result(self, make_client):
        token = CancellationToken()
        reported: list[JobStatus] = []

        def handler(request: httpx.Request) -> httpx.Response:
            token.cancel()
            return httpx.Response(200, json=job("done", 100))

        async with make_client(handler) as client:
            with pytest.raises(GenerationCancelledError):
                await client.poll_until_terminal("job-1", reported.append, token=token)

        assert reported == []


class TestPollBatchUntilTerminal:
    @pytest.mark.asyncio
    async def test_one_request_per_interval(self, make_client, fake_clock):
        sub_jobs = [
            {"jobId": "j0", "status": "done", "progress": 100, "resultUrl": "https://cdn.test/0"},
            {"jobId": "j1", "status": "failed", "progress": 0, "error": "NSFW"},
        ]
        handler, seen = status_sequence(
            {
                "batchId": "b-1",
                "status": "processing",
                "totalJobs": 2,
                "completedJobs": 1,
                "failedJobs": 0,
                "overallProgress": 50,
                "jobs": sub_jobs[:1],
            },
            {
                "batchId": "b-1",
                "status": "partial_failure",
                "totalJobs": 2,
                "completedJobs": 1,
                "failedJobs": 1,
                "overallProgress": 100,
                "jobs": sub_jobs,
            },
        )
        reported: list[BatchStatus] = []

        async with make_client(handler) as client:
            final = await client.poll_batch_until_terminal("b-1", reported.append)

        assert [r.url.path for r in seen] == ["/batch-status/b-1", "/batch-status/b-1"]
        assert [s.overall_progress for s in reported] == [50, 100]
        assert final.state is BatchState.PARTIAL_FAILURE
        assert final.is_terminal
        assert [j.job_id for j in final.successful_results()] == ["j0"]
        assert fake_clock.sleeps == [2.5]


# =============================================================================
# Maintenance
# =============================================================================


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_delete_job(self, make_client):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(204)

        async with make_client(handler) as client:
            await client.delete_job("job-9")

        assert captured[0].method == "DELETE"
        assert captured[0].url.path == "/job/job-9"

    @pytest.mark.asyncio
    async def test_delete_job_is_best_effort(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        async with make_client(handler) as client:
            await client.delete_job("job-9")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("status_code", "expected"), [(200, True), (503, False)])
    async def test_health_check_status(self, make_client, status_code: int, expected: bool):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/health"
            return httpx.Response(status_code, json={"status": "ok"})

        async with make_client(handler) as client:
            assert await client.health_check(timeout=1.0) is expected

    @pytest.mark.asyncio
    async def test_health_check_offline(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        async with make_client(handler) as client:
            assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_client):
        client = make_client(lambda request: httpx.Response(200, json={"status": "ok"}))
        await client.health_check()
        await client.close()
        await client.close()

    def test_from_config(self):
        config = ClientConfig(base_url="https://api.quippix.app/", tier="pro")
        client = JobClient.from_config(config)
        assert client.base_url == "https://api.quippix.app"
        assert client.tier == "pro"
        assert client.timeout == config.request_timeout_seconds


def test_params_field_is_json_string(params: GenerationParams):
    from quippix.client.jobs import _params_field

    field = _params_field(params)
    assert json.loads(field["params"]) == {"styleId": "pixel-art", "sliders": {"intensity": 70}}
