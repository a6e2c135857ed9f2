"""
Shared-token authentication for HTTP and WebSocket requests.

The token may be presented, in order of precedence, as an
``Authorization: Bearer`` header, a ``token`` query parameter (browsers
cannot set headers on WebSocket upgrades) or a ``Sec-WebSocket-Protocol``
entry.
"""

import logging
import secrets
from typing import List, Optional

from fastapi import Depends, Request, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.requests import HTTPConnection

from ..terminal.models import UnauthorizedError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

WS_POLICY_VIOLATION = 1008


def _matches(candidate: Optional[str], token: str) -> bool:
    if not candidate:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), token.encode("utf-8"))


def offered_subprotocols(conn: HTTPConnection) -> List[str]:
    header = conn.headers.get("sec-websocket-protocol", "")
    return [p.strip() for p in header.split(",") if p.strip()]


def is_authorized(conn: HTTPConnection, token: str) -> bool:
    """Check every supported token location of a request."""
    header = conn.headers.get("authorization")
    if header:
        parts = header.split(" ")
        if len(parts) == 2 and parts[0] == "Bearer" and _matches(parts[1], token):
            return True

    if _matches(conn.query_params.get("token"), token):
        return True

    return any(_matches(p, token) for p in offered_subprotocols(conn))


async def verify_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> bool:
    """HTTP dependency: raise ``UnauthorizedError`` unless the token matches."""
    token = request.app.state.settings.token
    if credentials is not None and _matches(credentials.credentials, token):
        return True
    if is_authorized(request, token):
        return True

    logger.warning(f"Unauthorized request: {request.method} {request.url.path}")
    raise UnauthorizedError()


async def validate_websocket_connection(websocket: WebSocket) -> Optional[str]:
    """
    Validate a WebSocket upgrade before accepting it.

    Returns:
        The subprotocol to accept with (the token itself when the client
        authenticated that way), or "" when none is needed. None if the
        connection was refused; it has already been closed.
    """
    token = websocket.app.state.settings.token
    if not is_authorized(websocket, token):
        logger.warning(f"[WebSocket] {websocket.url.path} denied: invalid or missing token")
        await websocket.close(code=WS_POLICY_VIOLATION, reason="Unauthorized")
        return None

    if token in offered_subprotocols(websocket):
        return token
    return ""
