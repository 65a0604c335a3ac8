"""
AgriVoice exception hierarchy.

All application-specific exceptions inherit from AgriVoiceError. Network
errors never escape ``BackendClient``; they are converted into failed
``ApiResult`` objects at that boundary.
"""

from datetime import UTC, datetime


class AgriVoiceError(Exception):
    """Base exception for all AgriVoice errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "AGRIVOICE_ERROR",
    ) -> None:
        self.detail = detail
        self.code = code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


class PermissionDeniedError(AgriVoiceError):
    """Raised when microphone access is refused."""

    def __init__(self) -> None:
        super().__init__(
            detail="Permission to access microphone is required to record calls.",
            code="PERMISSION_DENIED",
        )


class RecordingAlreadyActiveError(AgriVoiceError):
    """Raised when trying to start a capture while one is already active."""

    def __init__(self, owner: str | None = None) -> None:
        detail = "A recording is already active"
        if owner:
            detail = f"{detail} (owned by {owner})"
        super().__init__(detail=detail, code="RECORDING_ALREADY_ACTIVE")


class CaptureFailedError(AgriVoiceError):
    """Raised when the platform audio capture fails to start."""

    def __init__(self, detail: str = "Audio capture failed to start") -> None:
        super().__init__(detail=detail, code="CAPTURE_FAILED")


class StorageUnavailableError(AgriVoiceError):
    """Raised when the durable key-value store cannot be read or written."""

    def __init__(self, detail: str = "Storage unavailable") -> None:
        super().__init__(detail=detail, code="STORAGE_UNAVAILABLE")


class NetworkUnreachableError(AgriVoiceError):
    """Raised when the backend cannot be reached."""

    def __init__(self, detail: str = "Backend is unreachable") -> None:
        super().__init__(detail=detail, code="NETWORK_UNREACHABLE")


class RequestTimeoutError(AgriVoiceError):
    """Raised when a request exceeds its timeout and is cancelled."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            detail=f"Request timeout after {int(timeout * 1000)}ms",
            code="REQUEST_TIMEOUT",
        )


class BackendRejectedError(AgriVoiceError):
    """Raised when the backend answers with a non-2xx status."""

    def __init__(self, detail: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(detail=detail, code="BACKEND_REJECTED")


class MalformedResponseError(AgriVoiceError):
    """Raised when a backend response body cannot be parsed."""

    def __init__(self, detail: str = "Malformed response from backend") -> None:
        super().__init__(detail=detail, code="MALFORMED_RESPONSE")


class CallNotConnectedError(AgriVoiceError):
    """Raised when a feature that needs a connected call is invoked outside one."""

    def __init__(self) -> None:
        super().__init__(detail="Call is not connected", code="CALL_NOT_CONNECTED")


class VoiceQueryInProgressError(AgriVoiceError):
    """Raised when a voice query is requested while another is in flight."""

    def __init__(self) -> None:
        super().__init__(
            detail="A voice query is already in progress",
            code="VOICE_QUERY_IN_PROGRESS",
        )
