"""
Tool-calling chat model wrapper.

Handles:
- Streaming completions, accumulating text and tool-call deltas
- Falling back to a single non-streaming call when the stream fails
- A hard timeout on every model call
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Protocol

from config import (
    logger,
    OPENAI_MODEL,
    OPENAI_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    LLM_STREAMING,
)


class ModelInvocationError(RuntimeError):
    """Both the streaming and the non-streaming attempt failed."""


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


@dataclass
class ModelOutput:
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)

    def to_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"role": "assistant", "content": self.content or None}
        if self.tool_calls:
            message["tool_calls"] = [tc.to_message() for tc in self.tool_calls]
        return message


class ToolCallingModel(Protocol):
    async def invoke(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> ModelOutput: ...


def _parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"[LLM] Malformed tool arguments: {raw[:120]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIToolModel:
    def __init__(
        self,
        client: Any,
        model: str = OPENAI_MODEL,
        temperature: float = OPENAI_TEMPERATURE,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS,
        streaming: bool = LLM_STREAMING,
    ):
        self._client = client
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.streaming = streaming

    def _request(self, system_prompt: str, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        return request

    async def invoke(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> ModelOutput:
        request = self._request(system_prompt, messages, tools)
        started = time.perf_counter()

        if self.streaming:
            try:
                output = await asyncio.wait_for(self._invoke_streaming(request), timeout=self.timeout_seconds)
                logger.debug(f"[LLM] Streamed reply in {int((time.perf_counter() - started) * 1000)}ms")
                return output
            except Exception as e:
                logger.warning(f"[LLM] ⚠️ Streaming failed ({e}), retrying without streaming")

        try:
            output = await asyncio.wait_for(self._invoke_once(request), timeout=self.timeout_seconds)
        except Exception as e:
            logger.error(f"[LLM] ❌ Model invocation failed: {e}")
            raise ModelInvocationError(str(e)) from e
        logger.debug(f"[LLM] Reply in {int((time.perf_counter() - started) * 1000)}ms")
        return output

    async def _invoke_streaming(self, request: Dict[str, Any]) -> ModelOutput:
        stream = await self._client.chat.completions.create(**request, stream=True)
        content_parts: List[str] = []
        # Tool-call fragments arrive keyed by position in the call list
        partial: Dict[int, Dict[str, str]] = {}

        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                content_parts.append(delta.content)
            for tc in delta.tool_calls or []:
                slot = partial.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if tc.id:
                    slot["id"] = tc.id
                if tc.function is not None:
                    if tc.function.name:
                        slot["name"] += tc.function.name
                    if tc.function.arguments:
                        slot["arguments"] += tc.function.arguments

        tool_calls = [
            ToolCall(id=slot["id"] or f"call_{index}", name=slot["name"], arguments=_parse_arguments(slot["arguments"]))
            for index, slot in sorted(partial.items())
        ]
        return ModelOutput(content="".join(content_parts), tool_calls=tool_calls)

    async def _invoke_once(self, request: Dict[str, Any]) -> ModelOutput:
        response = await self._client.chat.completions.create(**request)
        message = response.choices[0].message
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=_parse_arguments(tc.function.arguments))
            for tc in (message.tool_calls or [])
        ]
        return ModelOutput(content=message.content or "", tool_calls=tool_calls)
