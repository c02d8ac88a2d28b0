"""Agent invocation clients.

The engine never talks to a language model directly. Agent nodes and
chain steps call an ``AgentInvoker``; the HTTP invoker forwards each
call to an external agent service.

Environment:
    AGENT_INVOKER_URL: base URL of the agent service
    AGENT_INVOKER_TOKEN: optional bearer token

Usage:
    invoker = HttpAgentInvoker()
    result = await invoker.invoke("summarizer", {"topic": "x"})
    result["output"]
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import httpx

from ..config import AGENT_INVOKER_TOKEN, AGENT_INVOKER_URL
from ..errors import AgentInvocationError
from ..settings import (
    AGENT_HTTP_MAX_CONNECTIONS,
    AGENT_HTTP_MAX_KEEPALIVE,
    AGENT_HTTP_TIMEOUT,
)

logger = logging.getLogger(__name__)


class AgentInvoker(Protocol):
    """Opaque LLM call capability.

    ``invoke`` returns ``{"output": ...}`` or raises AgentInvocationError.
    Implementations may retry or rate-limit internally; the engine treats
    each call as a single blocking operation.
    """

    async def invoke(self, agent_ref: str, input: Dict[str, Any]) -> Dict[str, Any]:
        ...


class HttpAgentInvoker:
    """Async client for the external agent service.

    POST {base_url}/agents/{agent_ref}/invoke with body ``{"input": ...}``.

    Args:
        base_url: Agent service URL. Falls back to AGENT_INVOKER_URL.
        token: Bearer token. Falls back to AGENT_INVOKER_TOKEN.
        timeout: HTTP request timeout in seconds.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = AGENT_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = (base_url or AGENT_INVOKER_URL).rstrip("/")
        self._token = token if token is not None else AGENT_INVOKER_TOKEN
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                limits=httpx.Limits(
                    max_connections=AGENT_HTTP_MAX_CONNECTIONS,
                    max_keepalive_connections=AGENT_HTTP_MAX_KEEPALIVE,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def invoke(self, agent_ref: str, input: Dict[str, Any]) -> Dict[str, Any]:
        if not agent_ref:
            raise AgentInvocationError("", "no agent reference configured")

        client = await self._get_client()
        path = f"/agents/{quote(agent_ref, safe='')}/invoke"
        logger.info(f"Invoking agent '{agent_ref}' ({len(input)} input keys)")
        try:
            resp = await client.post(path, json={"input": input})
        except httpx.TimeoutException as e:
            raise AgentInvocationError(agent_ref, "agent service timeout") from e
        except httpx.HTTPError as e:
            raise AgentInvocationError(agent_ref, f"agent service unreachable: {e}") from e

        if resp.status_code == 404:
            raise AgentInvocationError(agent_ref, "agent not found")
        if resp.status_code == 429:
            raise AgentInvocationError(agent_ref, "agent service rate limit exceeded")
        if resp.status_code >= 400:
            raise AgentInvocationError(
                agent_ref, f"agent service error {resp.status_code}: {resp.text[:200]}"
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise AgentInvocationError(agent_ref, "agent service returned invalid JSON") from e

        if isinstance(body, dict) and "output" in body:
            return {"output": body["output"]}
        return {"output": body}


class EchoAgentInvoker:
    """Local invoker that answers without calling any model.

    Used when no agent service is configured, and handy in development.
    """

    async def invoke(self, agent_ref: str, input: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "output": {
                "response": f"Response from agent {agent_ref}",
                "input": input,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        }


def get_default_invoker() -> AgentInvoker:
    """HTTP invoker when AGENT_INVOKER_URL is set, echo invoker otherwise."""
    if AGENT_INVOKER_URL:
        return HttpAgentInvoker()
    logger.warning("AGENT_INVOKER_URL is empty; using EchoAgentInvoker")
    return EchoAgentInvoker()
