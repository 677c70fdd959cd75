"""
Unit Tests for the Reasoning Client

The Anthropic client is exercised against httpx.MockTransport, so no
request leaves the process.
"""

import json

import httpx
import pytest

from autopilot.errors import ReasoningError
from autopilot.reasoning_client import AnthropicReasoningClient, ReasoningResponse, StopReason


def _client(handler):
    return AnthropicReasoningClient(
        api_key="sk-test",
        model="claude-test",
        url="https://api.example/v1/messages",
        max_tokens=256,
        transport=httpx.MockTransport(handler),
    )


# -----------------------------------------------------------------------------
# Response Parsing Tests
# -----------------------------------------------------------------------------
class TestResponseParsing:
    """Content blocks and stop reasons map onto the generic contract."""

    def test_text_and_tool_use_blocks(self):
        response = ReasoningResponse.from_api({
            "stop_reason": "tool_use",
            "content": [
                {"type": "text", "text": "Let me look."},
                {"type": "tool_use", "id": "tu-1", "name": "read_file", "input": {"path": "a.txt"}},
            ],
        })
        assert response.stop_reason == StopReason.TOOL_USE
        assert response.text == "Let me look."
        assert response.tool_uses[0].name == "read_file"
        assert response.to_message()["content"][1] == {
            "type": "tool_use", "id": "tu-1", "name": "read_file", "input": {"path": "a.txt"},
        }

    @pytest.mark.parametrize("raw,expected", [
        ("end_turn", StopReason.END_TURN),
        ("stop_sequence", StopReason.END_TURN),
        ("max_tokens", StopReason.LENGTH_LIMIT),
        ("something_new", StopReason.END_TURN),
    ])
    def test_stop_reason_mapping(self, raw, expected):
        assert ReasoningResponse.from_api({"stop_reason": raw, "content": []}).stop_reason == expected


# -----------------------------------------------------------------------------
# HTTP Client Tests
# -----------------------------------------------------------------------------
class TestAnthropicClient:
    """Requests carry auth, model and tools; failures raise ReasoningError."""

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"stop_reason": "end_turn", "content": [{"type": "text", "text": "hi"}]})

        tools = [{"name": "read_file", "description": "read", "input_schema": {"type": "object"}}]
        response = await _client(handler).complete([{"role": "user", "content": "hello"}], tools=tools, system="be brief")

        assert response.text == "hi"
        assert seen["headers"]["x-api-key"] == "sk-test"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"]["model"] == "claude-test"
        assert seen["body"]["max_tokens"] == 256
        assert seen["body"]["tools"] == tools
        assert seen["body"]["system"] == "be brief"

    @pytest.mark.asyncio
    async def test_non_200_raises(self):
        client = _client(lambda request: httpx.Response(529, text="overloaded"))
        with pytest.raises(ReasoningError) as exc_info:
            await client.complete([{"role": "user", "content": "hello"}])
        assert exc_info.value.details["status_code"] == 529

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ReasoningError):
            await _client(handler).complete([{"role": "user", "content": "hello"}])
