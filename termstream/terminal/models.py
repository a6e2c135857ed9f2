"""
PTY session models and exception hierarchy.

Request and response shapes are pydantic models so the HTTP layer gets
field validation for free; the exceptions form the error taxonomy shared by
the registry, the gateway and the client.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TerminalSize(BaseModel):
    """Terminal dimensions"""

    cols: int = Field(gt=0, description="Number of columns, must be > 0")
    rows: int = Field(gt=0, description="Number of rows, must be > 0")


class CreatePtyRequest(BaseModel):
    """Body of ``POST /pty``"""

    cwd: Optional[str] = Field(None, description="Working directory for the shell")
    shell: Optional[str] = Field(None, description="Shell executable, $SHELL if empty")
    shell_args: Optional[List[str]] = Field(
        None, alias="shellArgs", description="Shell arguments, ['--login'] if empty"
    )
    env: Optional[Dict[str, str]] = Field(
        None, description="Extra environment variables applied last"
    )
    cols: int = Field(80, gt=0, description="Initial columns")
    rows: int = Field(24, gt=0, description="Initial rows")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("cols", "rows", mode="before")
    @classmethod
    def default_dimension(cls, v, info):
        # 0 / null fall back to the 80x24 default
        if not v:
            return 80 if info.field_name == "cols" else 24
        return v


class CreatePtyResponse(BaseModel):
    """Response of ``POST /pty``"""

    name: str
    cwd: Optional[str] = None


class PtySessionInfo(BaseModel):
    """Snapshot of a session used by the enumeration endpoints"""

    name: str
    cwd: Optional[str] = None
    title: Optional[str] = None
    command: Optional[str] = None
    cols: int
    rows: int


class PtyError(Exception):
    """Base class for PTY session errors"""

    def __init__(self, message: str, name: Optional[str] = None):
        self.message = message
        self.name = name
        super().__init__(self.message)


class SessionNotFoundError(PtyError):
    """Raised for operations against an unknown session name"""

    def __init__(self, name: str):
        super().__init__(f"PTY session '{name}' not found", name)


class SpawnError(PtyError):
    """Raised when the shell process could not be created"""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(f"Failed to spawn shell: {message}", name)


class ControlFrameError(PtyError):
    """Raised when a binary control frame cannot be decoded"""


class ViewerClosedError(PtyError):
    """Raised when data is pushed to a viewer whose transport is gone"""


class UnauthorizedError(PtyError):
    """Raised when a request does not present the shared token"""

    def __init__(self):
        super().__init__("Unauthorized")
