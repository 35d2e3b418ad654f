"""Client for the agent server running inside a ready workspace.

Each ready workspace exposes its own server at ``Workspace.opencode_url``.
This client covers the calls the state layer needs: session list/create,
message bootstrap, outbound prompts, provider list and the live ``/event``
SSE stream.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from sandboxchat.client_state.errors import TransportError
from sandboxchat.client_state.models.conversation import MessageWithParts, Snapshot
from sandboxchat.client_state.models.events import LiveEvent, parse_event


class OpencodeClient:
    """Thin async wrapper over one workspace's agent server."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(headers=headers, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- Requests --------------------------------------------------------------

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        if not response.is_success:
            raise TransportError(
                f"{method} {path} failed ({response.status_code}): {response.text.strip()[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path} returned invalid JSON") from exc

    # -- Sessions --------------------------------------------------------------

    async def list_sessions(self) -> list[dict[str, Any]]:
        return list(await self._call("GET", "/session") or [])

    async def create_session(self, title: str | None = None, parent_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if title is not None:
            body["title"] = title
        if parent_id is not None:
            body["parentID"] = parent_id
        session = await self._call("POST", "/session", json=body)
        if not isinstance(session, dict) or "id" not in session:
            msg = "Agent server returned invalid session response (missing id)"
            raise TransportError(msg)
        return session

    # -- Messages --------------------------------------------------------------

    async def list_messages(self, session_id: str) -> Snapshot:
        """Load the full conversation of a session as a snapshot."""
        items = await self._call("GET", f"/session/{session_id}/message") or []
        try:
            return tuple(MessageWithParts.from_wire(item) for item in items)
        except (KeyError, TypeError, ValidationError) as exc:
            raise TransportError(f"Session {session_id} returned malformed messages: {exc}") from exc

    async def send_prompt(
        self,
        session_id: str,
        text: str,
        *,
        provider_id: str | None = None,
        model_id: str | None = None,
    ) -> Any:
        body: dict[str, Any] = {"parts": [{"type": "text", "text": text}]}
        if provider_id and model_id:
            body["model"] = {"providerID": provider_id, "modelID": model_id}
        return await self._call("POST", f"/session/{session_id}/message", json=body)

    # -- Config ----------------------------------------------------------------

    async def list_providers(self) -> list[dict[str, Any]]:
        data = await self._call("GET", "/config/providers") or {}
        if isinstance(data, dict):
            return list(data.get("providers") or [])
        return list(data)

    # -- Events ----------------------------------------------------------------

    async def stream_events(self) -> AsyncIterator[LiveEvent]:
        """Yield live events from the server's SSE endpoint until it closes.

        Lines that are not valid JSON, or known events with malformed payloads,
        are logged and skipped.  Connection failures raise ``TransportError``.
        """
        url = f"{self.base_url}/event"
        timeout = httpx.Timeout(self._client.timeout.connect, read=None)
        try:
            async with self._client.stream("GET", url, timeout=timeout) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace").strip()
                    raise TransportError(
                        f"Event stream failed ({response.status_code}): {body or response.reason_phrase}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    raw = line.strip()
                    if not raw or raw.startswith(":"):
                        continue
                    if not raw.startswith("data:"):
                        continue
                    raw = raw[5:].strip()
                    if not raw:
                        continue
                    try:
                        payload = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("Event stream: dropping unparseable line: {}", raw[:200])
                        continue
                    if not isinstance(payload, dict):
                        continue
                    try:
                        yield parse_event(payload)
                    except (KeyError, TypeError, ValidationError) as exc:
                        logger.warning("Event stream: dropping malformed {} event: {}", payload.get("type"), exc)
        except httpx.HTTPError as exc:
            raise TransportError(f"Event stream request failed: {exc}") from exc
