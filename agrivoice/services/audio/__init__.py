"""
Audio module - Platform capture interface and the recorder.
"""

from agrivoice.services.audio.capture import CALL_AUDIO_MODE, AudioCapture, AudioMode
from agrivoice.services.audio.recorder import Recorder

__all__ = ["AudioCapture", "AudioMode", "CALL_AUDIO_MODE", "Recorder"]
