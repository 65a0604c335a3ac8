"""
Call module - Session state machine, segment sending and voice queries.
"""

from agrivoice.services.call.segments import SegmentCoordinator
from agrivoice.services.call.session import AutoRecordObserver, CallObserver, CallSessionMachine
from agrivoice.services.call.voice_query import VoiceQueryOrchestrator

__all__ = [
    "AutoRecordObserver",
    "CallObserver",
    "CallSessionMachine",
    "SegmentCoordinator",
    "VoiceQueryOrchestrator",
]
