"""
HTTP and WebSocket gateway in front of the session registry.
"""

from .fastapi_adapter import create_fastapi_app, run_fastapi_server

__all__ = ["create_fastapi_app", "run_fastapi_server"]
