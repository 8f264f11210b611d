"""HTTP client for the remote rendering service.

Submits single-image and batch generations as multipart uploads and polls
their status until a terminal state. Polling is strictly sequential for a
given job (fetch, wait, fetch), reports every observed status through the
progress callback, and ends on the first terminal status, on its own
deadline, or at the next checkpoint after its CancellationToken is set.

Per-poll transport and parsing failures are not retried here; they end the
loop immediately. Retrying is a caller-level, category-aware decision (see
quippix.execution.retry).
"""

from __future__ import annotations

import asyncio
import inspect
import json
import mimetypes
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, TypeVar
from urllib.parse import unquote, urlparse

import httpx
from pydantic import BaseModel, ValidationError

from quippix.client.cancellation import CancellationToken
from quippix.core.constants import (
    BATCH_POLL_INTERVAL_SECONDS,
    BATCH_POLL_TIMEOUT_SECONDS,
    DEFAULT_BASE_URL,
    POLL_INTERVAL_SECONDS,
    POLL_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    TIER_HEADER,
)
from quippix.core.errors import ApiError, GenerationTimeoutError, MalformedResponseError
from quippix.core.logging import get_logger
from quippix.core.models import (
    BatchGenerationRequest,
    BatchStatus,
    BatchSubmitResult,
    GenerationParams,
    GenerationRequest,
    JobStatus,
    SubmitResult,
)

if TYPE_CHECKING:
    from quippix.core.config import ClientConfig

_logger = get_logger("client")

StatusT = TypeVar("StatusT", JobStatus, BatchStatus)
ModelT = TypeVar("ModelT", bound=BaseModel)
ProgressCallback = Callable[[StatusT], Awaitable[None] | None]

# Multipart file tuple: (filename, content, content type)
_FilePart = tuple[str, bytes, str]


def _image_path(image_ref: str) -> Path:
    """Resolve a local path or file:// URI to a filesystem path."""
    if image_ref.startswith("file://"):
        return Path(unquote(urlparse(image_ref).path))
    return Path(image_ref).expanduser()


def _image_part(image_ref: str, default_name: str) -> _FilePart:
    path = _image_path(image_ref)
    content_type = mimetypes.guess_type(path.name)[0] or "image/png"
    return (path.name or default_name, path.read_bytes(), content_type)


async def _read_image(image_ref: str, default_name: str) -> _FilePart:
    return await asyncio.to_thread(_image_part, image_ref, default_name)


def _params_field(params: GenerationParams) -> dict[str, str]:
    return {"params": json.dumps(params.to_wire())}


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class JobClient:
    """Client for the generation endpoints of the rendering backend.

    Example usage:
        async with JobClient(base_url="https://api.quippix.app", tier="pro") as client:
            job_id = await client.submit_single(request)
            final = await client.poll_until_terminal(job_id, on_progress=print)

    Args:
        base_url: Backend base URL.
        tier: Entitlement tier sent in the X-QuipPix-Tier header.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
        sleep: Coroutine used for inter-poll waits.
        clock: Monotonic clock used for polling deadlines.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        tier: Literal["free", "pro"] = "free",
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.tier = tier
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> JobClient:
        """Create a client from ClientConfig."""
        return cls(
            base_url=config.base_url,
            tier=config.tier,
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client.

        Lazy initialization to avoid creating the client before the event loop.
        """
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                headers={TIER_HEADER: self.tier},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> JobClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_single(self, request: GenerationRequest) -> str:
        """Upload one image with its parameters.

        Returns:
            The backend job id.

        Raises:
            ApiError: Non-2xx response, carrying the parsed body when available.
            MalformedResponseError: 2xx response without a usable job id.
            httpx.TransportError: The request never got a response.
        """
        files = {"image": await _read_image(request.image_ref, "photo.png")}
        response = await self._post_multipart("/generate", files, request.params)
        result = self._parse(response, SubmitResult)
        _logger.info("job_submitted", job_id=result.job_id, style_id=request.params.style_id)
        return result.job_id

    async def submit_batch(self, request: BatchGenerationRequest) -> BatchSubmitResult:
        """Upload up to ten images sharing one set of parameters."""
        parts = await asyncio.gather(
            *(_read_image(ref, f"photo_{i}.png") for i, ref in enumerate(request.image_refs))
        )
        files = {f"image_{i}": part for i, part in enumerate(parts)}
        response = await self._post_multipart("/batch-generate", files, request.params)
        result = self._parse(response, BatchSubmitResult)
        _logger.info(
            "batch_submitted",
            batch_id=result.batch_id,
            image_count=len(request.image_refs),
            job_count=len(result.job_ids),
        )
        return result

    async def _post_multipart(
        self,
        path: str,
        files: dict[str, _FilePart],
        params: GenerationParams,
    ) -> httpx.Response:
        client = await self._get_client()
        _logger.debug("http_request", method="POST", path=path, file_count=len(files))
        response = await client.post(path, files=files, data=_params_field(params))
        if not response.is_success:
            body = _error_body(response)
            if not isinstance(body, dict):
                body = {"error": "Unknown error"}
            message = body.get("error") or body.get("message") or "Generation failed"
            _logger.warning(
                "submit_rejected",
                path=path,
                status_code=response.status_code,
                error_message=str(message)[:200],
            )
            raise ApiError(response.status_code, str(message), body)
        return response

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_status(self, job_id: str) -> JobStatus:
        """Fetch the current status of a single-image job."""
        return await self._get_json(f"/status/{job_id}", JobStatus)

    async def get_batch_status(self, batch_id: str) -> BatchStatus:
        """Fetch the current status of a batch."""
        return await self._get_json(f"/batch-status/{batch_id}", BatchStatus)

    async def _get_json(self, path: str, model: type[ModelT]) -> ModelT:
        client = await self._get_client()
        response = await client.get(path)
        if not response.is_success:
            raise ApiError(response.status_code, "Failed to get job status", _error_body(response))
        return self._parse(response, model)

    @staticmethod
    def _parse(response: httpx.Response, model: type[ModelT]) -> ModelT:
        try:
            return model.model_validate(response.json())
        except ValueError as e:
            # ValidationError is a ValueError, as is JSONDecodeError
            kind = "shape" if isinstance(e, ValidationError) else "json"
            raise MalformedResponseError(
                f"Unexpected {kind} in response from {response.request.url.path}: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll_until_terminal(
        self,
        job_id: str,
        on_progress: ProgressCallback[JobStatus],
        interval: float = POLL_INTERVAL_SECONDS,
        timeout: float = POLL_TIMEOUT_SECONDS,
        token: CancellationToken | None = None,
    ) -> JobStatus:
        """Poll a job until it is done or failed.

        Args:
            job_id: Job to observe.
            on_progress: Called with every fetched status, terminal included,
                in chronological order. May be sync or async.
            interval: Seconds to wait between polls.
            timeout: Deadline in seconds for reaching a terminal state.
            token: Optional cancellation token checked after every await.

        Returns:
            The first terminal JobStatus.

        Raises:
            GenerationTimeoutError: Deadline elapsed (classifies as timeout).
            GenerationCancelledError: Token observed; no progress reported.
        """
        return await self._poll(
            lambda: self.get_status(job_id),
            on_progress,
            interval,
            timeout,
            token,
            target=job_id,
        )

    async def poll_batch_until_terminal(
        self,
        batch_id: str,
        on_progress: ProgressCallback[BatchStatus],
        interval: float = BATCH_POLL_INTERVAL_SECONDS,
        timeout: float = BATCH_POLL_TIMEOUT_SECONDS,
        token: CancellationToken | None = None,
    ) -> BatchStatus:
        """Poll a batch until it is done or partially failed.

        One status request per interval covers every sub-job. Same contract
        as poll_until_terminal().
        """
        return await self._poll(
            lambda: self.get_batch_status(batch_id),
            on_progress,
            interval,
            timeout,
            token,
            target=batch_id,
        )

    async def _poll(
        self,
        fetch: Callable[[], Awaitable[StatusT]],
        on_progress: ProgressCallback[StatusT],
        interval: float,
        timeout: float,
        token: CancellationToken | None,
        target: str,
    ) -> StatusT:
        started = self._clock()
        polls = 0

        while self._clock() - started < timeout:
            status = await fetch()
            polls += 1
            if token is not None:
                token.raise_if_cancelled()

            result = on_progress(status)
            if inspect.isawaitable(result):
                await result

            if status.is_terminal:
                _logger.info(
                    "poll_terminal",
                    target=target,
                    state=status.state.value,
                    polls=polls,
                    elapsed_seconds=round(self._clock() - started, 2),
                )
                return status

            _logger.debug("poll_progress", target=target, state=status.state.value)
            await self._sleep(interval)
            if token is not None:
                token.raise_if_cancelled()

        _logger.warning("poll_timeout", target=target, polls=polls, timeout_seconds=timeout)
        raise GenerationTimeoutError()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def delete_job(self, job_id: str) -> None:
        """Ask the backend to delete a job early. Best-effort."""
        client = await self._get_client()
        try:
            response = await client.delete(f"/job/{job_id}")
        except httpx.TransportError as e:
            _logger.warning("delete_failed", job_id=job_id, error=str(e))
            return
        if not response.is_success:
            _logger.warning("delete_rejected", job_id=job_id, status_code=response.status_code)

    async def health_check(self, timeout: float | None = None) -> bool:
        """Return True if the backend answers GET /health with a 2xx."""
        client = await self._get_client()
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(timeout)} if timeout else {}
        try:
            response = await client.get("/health", **kwargs)
        except httpx.TransportError as e:
            _logger.debug("health_check_failed", error=str(e))
            return False
        return response.is_success
