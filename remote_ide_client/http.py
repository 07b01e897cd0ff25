"""HTTP client for Remote IDE server REST endpoints."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from .errors import (
    RemoteIdeConnectionError,
    RemoteIdeResponseError,
    RemoteIdeTimeout,
)

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30)


@dataclass(frozen=True)
class HealthStatus:
    """Server health report."""

    status: str
    timestamp: str = ""
    active_sessions: int = 0


@dataclass(frozen=True)
class SessionInfo:
    """Server-side session summary."""

    id: str
    project_path: str = ""
    status: str = ""
    message_count: int = 0
    last_activity: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionInfo:
        return cls(
            id=str(data.get("id", "")),
            project_path=data.get("projectPath", ""),
            status=data.get("status", ""),
            message_count=data.get("messageCount", 0),
            last_activity=data.get("lastActivity"),
        )


@dataclass(frozen=True)
class HistoryMessage:
    """One stored message of a session's history."""

    role: str
    content: str
    timestamp: int = 0
    seq: int = 0


@dataclass(frozen=True)
class SessionDetail:
    """Session summary plus its message history."""

    session: SessionInfo
    messages: list[HistoryMessage] = field(default_factory=lambda: [])


@dataclass(frozen=True)
class Project:
    """Project directory known to the server."""

    path: str
    name: str


class RemoteIdeHttpClient:
    """HTTP client wrapper for Remote IDE session bootstrap endpoints."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        *,
        token: str | None = None,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._token = token

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def health(self) -> HealthStatus:
        """Fetch /health.

        Some proxies answer the health route with plain text; that text becomes
        the status.
        """
        url = self._url("/health")
        try:
            async with self._session.get(
                url,
                headers=self._auth_headers(),
                timeout=_REQUEST_TIMEOUT,
            ) as resp:
                if resp.status != 200:
                    raise RemoteIdeResponseError(
                        resp.status, f"Health check failed ({resp.status})"
                    )
                body = await resp.text()
        except TimeoutError as err:
            raise RemoteIdeTimeout("Health request timed out") from err
        except aiohttp.ClientError as err:
            raise RemoteIdeConnectionError("Health request failed") from err

        try:
            data = _json_object(body)
        except ValueError:
            return HealthStatus(status=body.strip())
        return HealthStatus(
            status=data.get("status", ""),
            timestamp=data.get("timestamp", ""),
            active_sessions=data.get("activeSessions", 0),
        )

    async def create_session(self, project_path: str) -> SessionInfo:
        """Create a session for ``project_path`` via POST /api/sessions."""
        url = self._url("/api/sessions")
        try:
            async with self._session.post(
                url,
                json={"projectPath": project_path},
                headers=self._auth_headers(),
                timeout=_REQUEST_TIMEOUT,
            ) as resp:
                if resp.status != 201:
                    body = await resp.text()
                    raise RemoteIdeResponseError(
                        resp.status,
                        f"Create session failed ({resp.status}): {body}",
                    )
                data = await resp.json()
        except TimeoutError as err:
            raise RemoteIdeTimeout("Create session request timed out") from err
        except aiohttp.ClientError as err:
            raise RemoteIdeConnectionError("Create session request failed") from err
        return SessionInfo.from_dict(data)

    async def list_sessions(self) -> list[SessionInfo]:
        """List sessions via GET /api/sessions."""
        data = await self._get_json("/api/sessions", "List sessions")
        return [SessionInfo.from_dict(item) for item in data or []]

    async def get_session(self, session_id: str, *, since: int = 0) -> SessionDetail:
        """Fetch one session with history newer than ``since``.

        Raises:
            RemoteIdeResponseError: 404 when the session does not exist
        """
        path = f"/api/sessions/{session_id}"
        if since > 0:
            path += f"?since={since}"
        data = await self._get_json(path, "Get session")
        messages = [
            HistoryMessage(
                role=item.get("role", ""),
                content=item.get("content", ""),
                timestamp=item.get("timestamp", 0),
                seq=item.get("seq", 0),
            )
            for item in data.get("messages") or []
        ]
        return SessionDetail(session=SessionInfo.from_dict(data), messages=messages)

    async def list_projects(self) -> list[Project]:
        """List projects via GET /api/projects."""
        data = await self._get_json("/api/projects", "List projects")
        return [
            Project(path=item.get("path", ""), name=item.get("name", ""))
            for item in data or []
        ]

    async def _get_json(self, path: str, action: str) -> Any:
        url = self._url(path)
        try:
            async with self._session.get(
                url,
                headers=self._auth_headers(),
                timeout=_REQUEST_TIMEOUT,
            ) as resp:
                if resp.status == 404:
                    raise RemoteIdeResponseError(404, f"{action}: not found")
                if resp.status != 200:
                    raise RemoteIdeResponseError(
                        resp.status, f"{action} failed ({resp.status})"
                    )
                return await resp.json()
        except TimeoutError as err:
            raise RemoteIdeTimeout(f"{action} request timed out") from err
        except aiohttp.ClientError as err:
            raise RemoteIdeConnectionError(f"{action} request failed") from err


def _json_object(body: str) -> dict[str, Any]:
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError("Response body is not a JSON object")
    return data
