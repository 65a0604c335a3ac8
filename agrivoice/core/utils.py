"""Shared utility functions for AgriVoice."""

import platform
from datetime import UTC, datetime

from agrivoice.core.models import DeviceInfo


def now_millis() -> int:
    """Current epoch time in milliseconds."""
    return int(datetime.now(UTC).timestamp() * 1000)


def millis_to_iso(millis: int) -> str:
    """Format an epoch-millisecond timestamp as ISO 8601 (UTC)."""
    return datetime.fromtimestamp(millis / 1000, tz=UTC).isoformat().replace("+00:00", "Z")


def build_recording_id(created_at_millis: int, segment_index: int | None = None) -> str:
    """Recording id derived from creation time, plus the segment index for segments."""
    if segment_index is None:
        return str(created_at_millis)
    return f"{created_at_millis}_seg{segment_index}"


def build_recording_filename(
    created_at_millis: int,
    language: str,
    extension: str = "m4a",
    segment_index: int | None = None,
) -> str:
    """Return ``call_<date>_<time>[_seg<N>]_<language>.<ext>``.

    Date and time are rendered in local time as ``YYYY-MM-DD`` and ``HH-MM-SS``.
    """
    created = datetime.fromtimestamp(created_at_millis / 1000)
    parts = ["call", created.strftime("%Y-%m-%d"), created.strftime("%H-%M-%S")]
    if segment_index is not None:
        parts.append(f"seg{segment_index}")
    parts.append(language)
    return "_".join(parts) + f".{extension}"


def device_info() -> DeviceInfo:
    """Describe the host platform for backend payloads."""
    return DeviceInfo(platform=platform.system().lower() or "unknown", version=platform.release())
