"""termstream: shell processes as reconnectable, multi-viewer WebSocket streams."""

__version__ = "0.1.0"
