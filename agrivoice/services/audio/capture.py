"""
Abstract platform audio-capture capability.

The operating system's microphone, permission prompt and audio routing are
provided by the host application through this interface, enabling
platform-agnostic recording logic in ``Recorder``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AudioMode:
    """Audio routing requested before a call capture starts."""

    allows_recording: bool = True
    plays_in_silent_mode: bool = True
    ducks_other_audio: bool = True
    play_through_earpiece: bool = False


CALL_AUDIO_MODE = AudioMode()


class AudioCapture(ABC):
    """Interface that every platform audio backend must implement."""

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask for microphone access.

        Returns:
            True if access is granted.
        """

    @abstractmethod
    async def set_audio_mode(self, mode: AudioMode) -> None:
        """Configure routing for simultaneous recording and playback."""

    @abstractmethod
    async def start(self) -> None:
        """Begin capturing audio to a temporary file."""

    @abstractmethod
    async def stop(self) -> str | None:
        """Finalize the capture.

        Returns:
            Path or URI of the temporary audio file, or None if the
            platform produced no file.
        """
