"""
Pydantic v2 models shared by the recording, upload and session services.

Recording metadata is persisted as camelCase JSON; every backend payload
is produced from these models with ``by_alias=True``.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class UploadStatus(StrEnum):
    """Remote sync state of a persisted recording."""

    pending = "pending"
    uploading = "uploading"
    uploaded = "uploaded"
    failed = "failed"


class CallState(StrEnum):
    """States of the call session machine."""

    idle = "idle"
    connecting = "connecting"
    connected = "connected"


class CaptureOwner(StrEnum):
    """Logical caller currently holding the recorder."""

    call = "call"
    voice_query = "voice_query"


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys, populated by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


class Recording(CamelModel):
    """A persisted artifact of one local audio capture (whole call or segment)."""

    id: str
    filename: str
    local_path: str
    duration_seconds: int = 0
    created_at_millis: int
    size_bytes: int = 0
    language_code: str
    format: str = "m4a"
    upload_status: UploadStatus = UploadStatus.pending
    remote_id: str | None = None
    remote_url: str | None = None
    call_id: str | None = None
    segment_index: int | None = None

    @property
    def is_segment(self) -> bool:
        return self.segment_index is not None


class CallSession(BaseModel):
    """Identity and timing of one connected call."""

    call_id: str
    start_time_millis: int
    language: str
    duration_seconds: int = 0
    segments: list[Recording] = Field(default_factory=list)
    voice_query_used: bool = False
    pieces: list[Recording] = Field(default_factory=list)


class ConnectivityState(BaseModel):
    """Latest backend reachability probe result."""

    reachable: bool = False
    last_checked_at: datetime | None = None


# ---------------------------------------------------------------------------
# API results and payloads
# ---------------------------------------------------------------------------


class ApiResult(BaseModel):
    """Uniform result of every backend operation."""

    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None) -> "ApiResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str | None = None) -> "ApiResult":
        return cls(success=False, error=error, message=message)


class DeviceInfo(CamelModel):
    """Device descriptor attached to uploads and call-end events."""

    platform: str
    version: str


class UploadMetadata(CamelModel):
    """JSON sidecar sent with ``POST /api/recordings/upload``."""

    user_id: str
    call_id: str | None = None
    duration: int
    language: str
    timestamp: int
    is_segment: bool = False
    segment_index: int | None = None
    device_info: DeviceInfo


class CallEndEvent(CamelModel):
    """Payload of ``POST /api/calls/end``."""

    call_id: str
    user_id: str
    duration: int
    start_time: str
    end_time: str
    language: str
    recording_path: str | None = None
    device_info: DeviceInfo
    metadata: dict[str, Any] = Field(default_factory=dict)


class VoiceQueryContext(BaseModel):
    """Contextual form fields sent alongside a voice clip."""

    district: str
    state: str
    choice: int = 1
    current_crop: str = "rice"
    preferred_language: str = "en"


class VoiceQueryAnswer(BaseModel):
    """Backend answer to a voice query."""

    transcribed_text: str
    native_answer: str
    detected_language: str = ""


class TextQueryRequest(BaseModel):
    """Body of ``POST /query``."""

    query: str
    choice: int = 1
    district: str
    state: str
    current_crop: str | None = None


class RetrievedChunk(BaseModel):
    id: str
    text: str
    score: float


class TextQueryResponse(BaseModel):
    """Answer to a typed question, with the knowledge chunks it used."""

    answer: str
    retrieved_chunks: list[RetrievedChunk] = Field(default_factory=list)
    context: str = ""
