"""HTTP client for the termstream server."""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class TermstreamApiClient:
    """Client for the session CRUD endpoints of a termstream server."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def health(self) -> bool:
        """Check that the server is up. Needs no token."""
        async with self._client() as client:
            response = await client.get("/health")
            response.raise_for_status()
            return bool(response.json().get("ok"))

    async def list_sessions(self) -> List[Dict[str, Any]]:
        async with self._client() as client:
            response = await client.get("/pty")
            response.raise_for_status()
            return response.json()

    async def get_session(self, name: str) -> Optional[Dict[str, Any]]:
        """Get one session, or None if the server does not know it."""
        async with self._client() as client:
            response = await client.get(f"/pty/{name}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()

    async def create_session(
        self,
        cols: int = 80,
        rows: int = 24,
        cwd: Optional[str] = None,
        shell: Optional[str] = None,
        shell_args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Spawn a new shell session.

        Returns:
            ``{"name": ..., "cwd": ...}`` of the new session

        Raises:
            httpx.HTTPStatusError: If the server could not spawn the shell
        """
        body: Dict[str, Any] = {"cols": cols, "rows": rows}
        if cwd:
            body["cwd"] = cwd
        if shell:
            body["shell"] = shell
        if shell_args is not None:
            body["shellArgs"] = shell_args
        if env:
            body["env"] = env

        async with self._client() as client:
            response = await client.post("/pty", json=body)
            response.raise_for_status()
            return response.json()

    async def resize_session(self, name: str, cols: int, rows: int) -> None:
        async with self._client() as client:
            response = await client.post(
                f"/pty/{name}/resize", json={"cols": cols, "rows": rows}
            )
            response.raise_for_status()

    async def kill_session(self, name: str) -> None:
        async with self._client() as client:
            response = await client.delete(f"/pty/{name}")
            response.raise_for_status()
