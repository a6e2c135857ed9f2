"""
Configuration module
"""

from .settings import ServerSettings, generate_token

__all__ = [
    "ServerSettings",
    "generate_token",
]
