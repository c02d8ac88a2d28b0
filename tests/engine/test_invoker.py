"""Tests for the agent service clients (agentflow/agents/invoker.py)."""

import json
from unittest.mock import patch

import httpx
import pytest

from agentflow.agents import EchoAgentInvoker, HttpAgentInvoker, get_default_invoker
from agentflow.errors import AgentInvocationError


def _invoker(handler, token="secret") -> HttpAgentInvoker:
    return HttpAgentInvoker(
        base_url="http://agents.test/",
        token=token,
        transport=httpx.MockTransport(handler),
    )


class TestHttpAgentInvoker:

    @pytest.mark.asyncio
    async def test_posts_input_and_unwraps_output(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"output": {"summary": "s"}, "usage": {"tokens": 12}})

        invoker = _invoker(handler)
        result = await invoker.invoke("summarizer", {"topic": "x"})
        await invoker.close()

        assert result == {"output": {"summary": "s"}}
        assert seen["url"] == "http://agents.test/agents/summarizer/invoke"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"] == {"input": {"topic": "x"}}

    @pytest.mark.asyncio
    async def test_bare_body_becomes_output(self):
        invoker = _invoker(lambda request: httpx.Response(200, json=["a", "b"]), token="")
        assert await invoker.invoke("lister", {}) == {"output": ["a", "b"]}

    @pytest.mark.asyncio
    async def test_no_token_no_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"output": 1})

        await _invoker(handler, token="").invoke("a", {})
        assert seen["auth"] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,message", [
        (404, "agent not found"),
        (429, "rate limit"),
        (500, "agent service error 500"),
    ])
    async def test_error_statuses(self, status, message):
        invoker = _invoker(lambda request: httpx.Response(status, text="nope"))
        with pytest.raises(AgentInvocationError, match=message) as exc_info:
            await invoker.invoke("writer", {})
        assert exc_info.value.agent_ref == "writer"

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        invoker = _invoker(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(AgentInvocationError, match="invalid JSON"):
            await invoker.invoke("writer", {})

    @pytest.mark.asyncio
    async def test_transport_failures(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(AgentInvocationError, match="unreachable"):
            await _invoker(unreachable).invoke("writer", {})
        with pytest.raises(AgentInvocationError, match="timeout"):
            await _invoker(slow).invoke("writer", {})

    @pytest.mark.asyncio
    async def test_empty_agent_ref(self):
        with pytest.raises(AgentInvocationError, match="no agent reference"):
            await _invoker(lambda request: httpx.Response(200, json={})).invoke("", {})

    @pytest.mark.asyncio
    async def test_agent_ref_is_escaped(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.raw_path
            return httpx.Response(200, json={"output": 1})

        await _invoker(handler).invoke("team/writer", {})
        assert seen["path"] == b"/agents/team%2Fwriter/invoke"


class TestDefaultInvoker:

    @pytest.mark.asyncio
    async def test_echo(self):
        result = await EchoAgentInvoker().invoke("writer", {"topic": "x"})
        assert result["output"]["response"] == "Response from agent writer"
        assert result["output"]["input"] == {"topic": "x"}

    def test_http_when_url_configured(self):
        with patch("agentflow.agents.invoker.AGENT_INVOKER_URL", "http://agents.test"):
            assert isinstance(get_default_invoker(), HttpAgentInvoker)

    def test_echo_when_url_empty(self):
        with patch("agentflow.agents.invoker.AGENT_INVOKER_URL", ""):
            assert isinstance(get_default_invoker(), EchoAgentInvoker)
