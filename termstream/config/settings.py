"""
Server settings.

Precedence, lowest first: defaults, ``.env`` file, ``TERMSTREAM_*``
environment variables, command-line flags.
"""

import os
import secrets
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "TERMSTREAM_"
LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


def generate_token() -> str:
    return secrets.token_hex(32)


class ServerSettings(BaseModel):
    """Settings of one server instance"""

    host: str = Field("127.0.0.1", description="Interface to bind, loopback by default")
    port: int = Field(3000, ge=0, le=65535, description="TCP port")
    token: str = Field(default_factory=generate_token, description="Shared auth token")
    buffer_max: int = Field(
        2 * 1024 * 1024, gt=0, description="Replay buffer size per session in bytes"
    )
    replay_chunk_size: int = Field(
        64 * 1024, gt=0, description="Maximum size of one replay frame in bytes"
    )
    osc_buffer_max: int = Field(
        4096, gt=0, description="Cap on an unterminated escape sequence in bytes"
    )
    notify_min_duration_ms: int = Field(
        5000, ge=0, description="Commands longer than this notify when unwatched"
    )
    log_level: str = Field("info", description="Root log level")

    @field_validator("token")
    @classmethod
    def validate_token(cls, v):
        # An empty token would let every request through
        return v or generate_token()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        if v.lower() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return v.lower()

    @classmethod
    def load(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ServerSettings":
        """
        Build settings from the environment plus explicit overrides.

        Args:
            environ: Environment to read, defaults to ``os.environ``
            overrides: Values that win over the environment (CLI flags);
                None values are ignored

        Raises:
            pydantic.ValidationError: If a value is invalid
        """
        environ = os.environ if environ is None else environ

        values: Dict[str, Any] = {}
        if environ.get("PORT"):
            values["port"] = environ["PORT"]
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if environ.get(key):
                values[name] = environ[key]

        if overrides:
            values.update({k: v for k, v in overrides.items() if v is not None})

        return cls.model_validate(values)
