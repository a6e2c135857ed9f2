"""
WebSocket wire protocol.

Text frames carry raw terminal data in both directions. Binary frames carry
control messages: one tag byte followed by a UTF-8 JSON payload.

    0x00  server -> client  {"cursor": N}            replay complete, live at N
    0x01  client -> server  {"cols": C, "rows": R}   resize request
"""

import json
from typing import Union

from pydantic import BaseModel, Field, ValidationError

from ..terminal.models import ControlFrameError

TAG_CURSOR_SYNC = 0x00
TAG_RESIZE_REQUEST = 0x01


class CursorSync(BaseModel):
    """Replay is complete; subsequent text frames are live output."""

    cursor: int = Field(ge=0)


class ResizeRequest(BaseModel):
    """Client asks the session to change its terminal size."""

    cols: int = Field(gt=0)
    rows: int = Field(gt=0)


ControlFrame = Union[CursorSync, ResizeRequest]

_TAGS = {
    CursorSync: TAG_CURSOR_SYNC,
    ResizeRequest: TAG_RESIZE_REQUEST,
}
_MODELS = {tag: model for model, tag in _TAGS.items()}


def encode_control(frame: ControlFrame) -> bytes:
    """Serialize a control frame to its binary form."""
    tag = _TAGS[type(frame)]
    return bytes([tag]) + json.dumps(frame.model_dump()).encode("utf-8")


def decode_control(data: bytes) -> ControlFrame:
    """
    Parse a binary control frame.

    Raises:
        ControlFrameError: Empty frame, unknown tag or invalid payload
    """
    if not data:
        raise ControlFrameError("empty control frame")

    model = _MODELS.get(data[0])
    if model is None:
        raise ControlFrameError(f"unknown control tag 0x{data[0]:02x}")

    try:
        payload = json.loads(data[1:].decode("utf-8"))
        return model.model_validate(payload)
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        raise ControlFrameError(f"invalid {model.__name__} payload: {e}") from e
