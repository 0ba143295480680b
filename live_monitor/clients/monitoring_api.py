"""REST client for the exam server's monitoring endpoints."""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .. import config
from ..exceptions import AuthExpiredError, MonitoringApiError
from ..models.violation import ViolationRecord, parse_violations

logger = logging.getLogger(__name__)


class MonitoringApiClient:
    """Thin async wrapper around the monitoring REST API.

    Commands are opaque remote calls: they either succeed or raise
    ``MonitoringApiError``. Rejected credentials raise ``AuthExpiredError``.
    """

    def __init__(self, base_url: str = config.SERVER_URL, token: str = config.API_TOKEN,
                 prefix: str = config.API_PREFIX,
                 timeout: float = config.REQUEST_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.prefix = prefix.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self.set_token(token)

    def set_token(self, token: Optional[str]) -> None:
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                       params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.prefix}{path}"
        try:
            response = await self._client.request(method, url, json=payload, params=params)
        except httpx.HTTPError as e:
            raise MonitoringApiError(f"{method} {url} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthExpiredError(f"Authentication rejected by {url}", response.status_code)
        if response.is_error:
            message = f"API Error: {response.status_code} {response.reason_phrase}"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = body["message"]
            except ValueError:
                pass
            raise MonitoringApiError(message, response.status_code)

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise MonitoringApiError(f"{url} returned invalid JSON", response.status_code) from e
        if isinstance(body, dict) and body.get("success") is False:
            raise MonitoringApiError(body.get("error") or body.get("message") or "Request failed",
                                     response.status_code)
        return body

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def fetch_snapshot(self) -> Any:
        """Full session/alert snapshot used for seeding and fallback polling."""
        return await self._request("GET", "/submissions/active-sessions")

    async def fetch_violations(self, limit: int = config.VIOLATIONS_FETCH_LIMIT) -> List[ViolationRecord]:
        body = await self._request("GET", "/monitoring/violations", params={"limit": limit})
        if isinstance(body, dict):
            data = body.get("data") if isinstance(body.get("data"), dict) else body
            rows = data.get("violations") or []
        elif isinstance(body, list):
            rows = body
        else:
            rows = []
        return parse_violations(rows)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def resolve_alert(self, alert_id: str) -> None:
        await self._request("POST", "/monitoring/resolve-alert", {"alertId": alert_id})

    async def flag_session(self, session_id: str, reason: str) -> None:
        await self._request("POST", "/monitoring/flag-session", {"sessionId": session_id, "reason": reason})

    async def invalidate_session(self, session_id: str, reason: str) -> None:
        await self._request("POST", "/monitoring/admin/invalidate", {"sessionId": session_id, "reason": reason})

    async def apply_penalty(self, session_id: str, penalty_pct: float) -> None:
        await self._request("POST", "/monitoring/admin/penalty", {"sessionId": session_id, "penaltyPct": penalty_pct})

    async def grant_retake(self, session_id: str, max_attempts: Optional[int] = None) -> None:
        payload: Dict[str, Any] = {"sessionId": session_id}
        if max_attempts is not None:
            payload["maxAttempts"] = max_attempts
        await self._request("POST", "/monitoring/admin/retake", payload)

    async def delete_violation(self, violation_id: str) -> None:
        await self._request("DELETE", f"/monitoring/violations/{quote(violation_id, safe='')}")
