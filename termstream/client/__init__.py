"""
Client side of termstream: socket ownership, replay consumption and
coalesced output delivery, plus an HTTP client for session CRUD.
"""

from .api_client import TermstreamApiClient
from .connection import PtyConnection, PtyConnectionManager, PtySubscriber

__all__ = [
    "PtyConnection",
    "PtyConnectionManager",
    "PtySubscriber",
    "TermstreamApiClient",
]
