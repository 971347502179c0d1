"""
Backend Gateway
HTTP client for the remote session store. Every failure mode (transport
error, timeout, non-2xx status, malformed body) is raised as
BackendUnreachable so callers can fall back to offline behaviour.
"""

import httpx
from typing import Any, Dict, Optional
import logging

from models.proctoring_models import IntegrityEvent
from services.errors import BackendUnreachable

logger = logging.getLogger(__name__)


class BackendGateway:
    """Client for the proctoring session store API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8080/api/proctoring",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.request(method, path, json=json_body)
                response.raise_for_status()
                return response
        except httpx.HTTPError as e:
            raise BackendUnreachable(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise BackendUnreachable(f"Invalid JSON from {response.request.url}") from e
        if not isinstance(body, dict):
            raise BackendUnreachable(f"Unexpected body from {response.request.url}")
        return body

    async def start_session(self, candidate_name: str) -> str:
        response = await self._request("POST", "/sessions/start", {"candidateName": candidate_name})
        session_id = self._json(response).get("sessionId")
        if not session_id:
            raise BackendUnreachable("Session store did not return a sessionId")
        return str(session_id)

    async def end_session(self, session_id: str) -> bool:
        response = await self._request("POST", f"/sessions/{session_id}/end")
        if not response.content:
            return True
        return bool(self._json(response).get("success", True))

    async def add_event(self, session_id: str, event: IntegrityEvent) -> str:
        response = await self._request("POST", f"/sessions/{session_id}/events", event.to_backend_payload())
        return response.text

    async def get_report(self, session_id: str) -> Dict[str, Any]:
        """Final report as {integrityScore, events}"""
        response = await self._request("GET", f"/sessions/{session_id}/report")
        return self._json(response)

    async def health_check(self) -> Dict[str, Any]:
        """Advisory only: never raises"""
        try:
            response = await self._request("GET", "/health")
            return self._json(response)
        except BackendUnreachable as e:
            logger.info(f"Using offline mode - backend not available ({e})")
            return {"status": "offline"}
