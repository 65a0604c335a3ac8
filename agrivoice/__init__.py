"""
AgriVoice call client - call recording, local indexing and backend sync
for the farming-assistant service.
"""

__version__ = "0.1.0"
