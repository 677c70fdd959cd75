"""
Reasoning Client

Generic request/response contract for the reasoning service plus the concrete
Anthropic Messages API client.

Request:  ordered message list + available tool catalog
Response: content blocks (text and/or tool-use requests) + stop reason

The execution loop depends only on ReasoningClient, so tests drive it with a
scripted fake and no network.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Any

import httpx

from .errors import ReasoningError

logger = logging.getLogger("reasoning_client")

ANTHROPIC_VERSION = "2023-06-01"


class StopReason(str, Enum):
    TOOL_USE = "tool_use"
    END_TURN = "end_turn"
    LENGTH_LIMIT = "length_limit"


# Provider stop reasons -> contract stop reasons
_STOP_REASON_MAP = {
    "tool_use": StopReason.TOOL_USE,
    "end_turn": StopReason.END_TURN,
    "stop_sequence": StopReason.END_TURN,
    "max_tokens": StopReason.LENGTH_LIMIT,
}


@dataclass(frozen=True)
class ToolUseRequest:
    """A tool call requested by the reasoning service."""
    tool_use_id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)

    def to_block(self) -> Dict[str, Any]:
        return {"type": "tool_use", "id": self.tool_use_id, "name": self.name, "input": self.input}


@dataclass(frozen=True)
class ReasoningResponse:
    stop_reason: StopReason
    text_blocks: List[str] = field(default_factory=list)
    tool_uses: List[ToolUseRequest] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(t for t in self.text_blocks if t)

    def to_message(self) -> Dict[str, Any]:
        """Assistant transcript entry for this response."""
        content: List[Dict[str, Any]] = [{"type": "text", "text": t} for t in self.text_blocks]
        content.extend(t.to_block() for t in self.tool_uses)
        return {"role": "assistant", "content": content}

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ReasoningResponse":
        texts: List[str] = []
        tool_uses: List[ToolUseRequest] = []
        for block in data.get("content", []):
            if block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_uses.append(ToolUseRequest(
                    tool_use_id=block["id"],
                    name=block["name"],
                    input=block.get("input") or {},
                ))

        raw_reason = data.get("stop_reason", "end_turn")
        stop_reason = _STOP_REASON_MAP.get(raw_reason)
        if stop_reason is None:
            logger.warning(f"Unknown stop reason '{raw_reason}', treating as end_turn")
            stop_reason = StopReason.END_TURN
        return cls(stop_reason=stop_reason, text_blocks=texts, tool_uses=tool_uses)


class ReasoningClient(ABC):
    """Anything that can answer a message list with tool-aware content."""

    @abstractmethod
    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        system: Optional[str] = None,
    ) -> ReasoningResponse:
        """Send one request. Raises ReasoningError on failure."""


class AnthropicReasoningClient(ReasoningClient):
    """
    Anthropic Messages API over httpx.

    Every request carries an explicit timeout.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        url: str = "https://api.anthropic.com/v1/messages",
        max_tokens: int = 4096,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._transport = transport

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        system: Optional[str] = None,
    ) -> ReasoningResponse:
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": messages,
        }
        if tools:
            payload["tools"] = tools
        if system:
            payload["system"] = system

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    headers={
                        "x-api-key": self.api_key,
                        "anthropic-version": ANTHROPIC_VERSION,
                        "content-type": "application/json",
                    },
                    json=payload,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            raise ReasoningError(f"{type(e).__name__}: {e}")

        if response.status_code != 200:
            raise ReasoningError(response.text[:200], status_code=response.status_code)

        return ReasoningResponse.from_api(response.json())
