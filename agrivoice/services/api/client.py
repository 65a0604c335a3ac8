"""
Asynchronous HTTP client for the farming-assistant backend.

Every backend call in the app goes through ``BackendClient``. Each public
method is attempted exactly once, bounded by its own timeout, and returns
an ``ApiResult`` -- network, timeout and parsing failures are converted to
``ApiResult(success=False, error=...)`` and never raised to the caller.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from agrivoice.core.config import Settings
from agrivoice.core.exceptions import (
    AgriVoiceError,
    BackendRejectedError,
    MalformedResponseError,
    NetworkUnreachableError,
    RequestTimeoutError,
)
from agrivoice.core.models import (
    ApiResult,
    CallEndEvent,
    TextQueryRequest,
    TextQueryResponse,
    UploadMetadata,
    VoiceQueryAnswer,
    VoiceQueryContext,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestTimeouts:
    """Timeout (seconds) per operation class."""

    health: float = 5.0
    call_end: float = 10.0
    upload: float = 60.0
    voice_query: float = 30.0
    default: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RequestTimeouts":
        return cls(
            health=settings.health_timeout,
            call_end=settings.call_end_timeout,
            upload=settings.upload_timeout,
            voice_query=settings.voice_query_timeout,
            default=settings.default_timeout,
        )


class BackendClient:
    """Thin asynchronous wrapper around ``httpx.AsyncClient``.

    Timeouts are enforced twice: httpx's own per-phase timeout and an overall
    ``asyncio.wait_for`` bound, which cancels the in-flight request task
    rather than abandoning it.

    Args:
        base_url: Backend base URL (trailing slash is stripped).
        timeouts: Per-operation timeouts.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeouts: RequestTimeouts | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeouts = timeouts or RequestTimeouts()
        self._transport = transport
        self._client = self._build_client()

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeouts.default,
            transport=self._transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeouts(self) -> RequestTimeouts:
        return self._timeouts

    async def update_base_url(self, base_url: str) -> None:
        """Point the client at a different backend, closing the old connection pool."""
        old = self._client
        self._base_url = base_url.rstrip("/")
        self._client = self._build_client()
        await old.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, timeout: float, **kwargs) -> httpx.Response:
        """Execute an HTTP request bounded by *timeout*.

        Args:
            method: HTTP method name ("GET", "POST").
            path: API endpoint path (e.g. "/api/calls/end").
            timeout: Overall bound in seconds; the request is cancelled when exceeded.
            **kwargs: Passed through to httpx (json, data, files, params).

        Returns:
            The httpx Response object with a successful status code.

        Raises:
            RequestTimeoutError: The request did not finish within *timeout*.
            NetworkUnreachableError: Connection or transport failure.
            BackendRejectedError: Non-2xx response.
        """
        try:
            resp = await asyncio.wait_for(
                self._client.request(method, path, timeout=timeout, **kwargs),
                timeout=timeout,
            )
        except (TimeoutError, httpx.TimeoutException):
            raise RequestTimeoutError(timeout) from None
        except httpx.HTTPError as exc:
            raise NetworkUnreachableError(f"Network error: {exc}") from None

        if resp.is_success:
            return resp
        raise BackendRejectedError(_error_detail(resp), status_code=resp.status_code)

    async def _call(
        self,
        operation: str,
        method: str,
        path: str,
        timeout: float,
        success_message: str | None = None,
        **kwargs,
    ) -> ApiResult:
        """Run one request and convert the outcome into an ``ApiResult``."""
        try:
            resp = await self._request(method, path, timeout, **kwargs)
            data = _json_body(resp)
        except AgriVoiceError as exc:
            logger.warning("%s failed: %s", operation, exc.detail)
            return ApiResult.fail(exc.detail, message=f"{operation} failed")
        except Exception as exc:
            logger.exception("Unexpected error during %s", operation)
            return ApiResult.fail(str(exc) or type(exc).__name__, message=f"{operation} failed")
        return ApiResult.ok(data, message=success_message)

    # -- health --

    async def check_connection(self) -> bool:
        """Return True iff ``GET /health`` answers with a success status."""
        try:
            await self._request("GET", "/health", self._timeouts.health)
            return True
        except AgriVoiceError as exc:
            logger.debug("Connection check failed: %s", exc.detail)
            return False
        except Exception:
            logger.exception("Unexpected error during connection check")
            return False

    async def get_server_status(self) -> ApiResult:
        return await self._call("Server status", "GET", "/api/status", self._timeouts.health)

    # -- calls --

    async def send_call_end_event(self, event: CallEndEvent) -> ApiResult:
        """Send the end-of-call summary as JSON."""
        return await self._call(
            "Call end event",
            "POST",
            "/api/calls/end",
            self._timeouts.call_end,
            success_message="Call end event sent successfully",
            json=event.model_dump(mode="json", by_alias=True),
        )

    async def get_call_history(self, user_id: str | None = None, limit: int | None = None) -> ApiResult:
        params: dict = {}
        if user_id:
            params["userId"] = user_id
        if limit:
            params["limit"] = limit
        return await self._call(
            "Call history", "GET", "/api/calls/history", self._timeouts.default, params=params
        )

    # -- recordings --

    async def upload_recording(
        self,
        file_path: str | Path,
        metadata: UploadMetadata,
        filename: str | None = None,
        content_type: str = "audio/mp4",
    ) -> ApiResult:
        """Upload one audio file as multipart form data with a JSON metadata field.

        On success ``data`` holds the backend response, including the
        backend-assigned ``id`` and ``url`` when provided.
        """
        path = Path(file_path)
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            logger.warning("Cannot read recording %s: %s", path, exc)
            return ApiResult.fail(f"Cannot read recording file: {exc}", message="Upload failed")

        return await self._call(
            "Recording upload",
            "POST",
            "/api/recordings/upload",
            self._timeouts.upload,
            success_message="Recording uploaded successfully",
            files={"recording": (filename or path.name, content, content_type)},
            data={"metadata": metadata.model_dump_json(by_alias=True, exclude_none=True)},
        )

    async def get_recordings(self, user_id: str | None = None) -> ApiResult:
        path = f"/api/recordings/user/{user_id}" if user_id else "/api/recordings"
        return await self._call("Recording list", "GET", path, self._timeouts.default)

    async def get_analytics(self, user_id: str | None = None) -> ApiResult:
        path = f"/api/analytics/user/{user_id}" if user_id else "/api/analytics"
        return await self._call("Analytics", "GET", path, self._timeouts.default)

    # -- queries --

    async def send_voice_query(
        self,
        audio_path: str | Path,
        context: VoiceQueryContext,
        content_type: str = "audio/mp4",
    ) -> ApiResult:
        """Submit a voice clip; ``data`` is a ``VoiceQueryAnswer`` on success."""
        path = Path(audio_path)
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            logger.warning("Cannot read voice clip %s: %s", path, exc)
            return ApiResult.fail(f"Cannot read voice clip: {exc}", message="Voice query failed")

        result = await self._call(
            "Voice query",
            "POST",
            "/speech/voice-query-json",
            self._timeouts.voice_query,
            success_message="Voice query processed successfully",
            files={"audio": (path.name, content, content_type)},
            data={
                "district": context.district,
                "state": context.state,
                "choice": str(context.choice),
                "current_crop": context.current_crop or "rice",
                "preferred_language": context.preferred_language,
            },
        )
        return _parse_data(result, VoiceQueryAnswer, "Voice query")

    async def send_text_query(self, request: TextQueryRequest) -> ApiResult:
        """Ask a typed question; ``data`` is a ``TextQueryResponse`` on success."""
        result = await self._call(
            "Text query",
            "POST",
            "/query",
            self._timeouts.default,
            json=request.model_dump(exclude_none=True),
        )
        return _parse_data(result, TextQueryResponse, "Text query")


def _json_body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedResponseError(f"Malformed response from backend: {exc}") from None


def _error_detail(resp: httpx.Response) -> str:
    """Pull a human-readable message out of an error response."""
    fallback = f"Request failed with status: {resp.status_code}"
    try:
        body = resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return resp.text or fallback
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return fallback


def _parse_data(result: ApiResult, model: type, operation: str) -> ApiResult:
    if not result.success:
        return result
    try:
        parsed = model.model_validate(result.data)
    except ValidationError as exc:
        logger.warning("%s returned an unexpected body: %s", operation, exc)
        return ApiResult.fail("Malformed response from backend", message=f"{operation} failed")
    return ApiResult.ok(parsed, message=result.message)
