"""
API module - HTTP client for the farming-assistant backend.
"""

from agrivoice.services.api.client import BackendClient, RequestTimeouts

__all__ = ["BackendClient", "RequestTimeouts"]
