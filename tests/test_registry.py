import asyncio

import pytest
from pydantic import BaseModel

from tools.calendar_tools import build_calendar_registry
from tools.registry import CapabilityRegistry, CapabilityArgumentError, UnknownCapabilityError


class EchoArgs(BaseModel):
    text: str
    times: int = 1


def _registry() -> CapabilityRegistry:
    registry = CapabilityRegistry()

    @registry.capability("echo", "Repeat the text.", EchoArgs)
    async def echo(args: EchoArgs, ctx):
        return {"echo": args.text * args.times, "ctx": ctx}

    return registry


def test_invoke_validates_arguments() -> None:
    async def _run():
        registry = _registry()
        result = await registry.invoke("echo", {"text": "ab", "times": 2}, ctx="context")
        assert result == {"echo": "abab", "ctx": "context"}

        with pytest.raises(CapabilityArgumentError):
            await registry.invoke("echo", {"times": "many"}, ctx=None)

    asyncio.run(_run())


def test_unknown_capability() -> None:
    async def _run():
        with pytest.raises(UnknownCapabilityError, match="Unknown tool: nope"):
            await _registry().invoke("nope", {}, ctx=None)

    asyncio.run(_run())


def test_tool_specs_publish_argument_schema() -> None:
    tool_spec = _registry().openai_tool_specs()[0]
    assert tool_spec["type"] == "function"
    assert tool_spec["function"]["name"] == "echo"
    assert tool_spec["function"]["description"] == "Repeat the text."
    assert tool_spec["function"]["parameters"]["required"] == ["text"]


def test_calendar_registry_flags() -> None:
    registry = build_calendar_registry()
    assert set(registry.names()) == {
        "check_calendar", "shift_appointment", "cancel_appointment", "create_appointment", "end_call",
    }
    assert registry.is_mutating("shift_appointment")
    assert registry.is_mutating("cancel_appointment")
    assert not registry.is_mutating("check_calendar")
    assert registry.is_terminal("end_call")
    assert not registry.is_terminal("shift_appointment")
    assert not registry.has("send_email")


def test_task_types_come_from_mutating_capabilities() -> None:
    registry = build_calendar_registry()
    assert registry.task_type("shift_appointment") == "shift"
    assert registry.task_type("cancel_appointment") == "cancel"
    assert registry.task_type("create_appointment") == "create"
    assert registry.task_type("check_calendar") is None
    assert registry.task_type("end_call") is None
    assert registry.task_type("send_email") is None

    custom = _registry()
    custom.capability("archive", "Archive it.", EchoArgs, mutating=True)(lambda args, ctx: None)
    assert custom.task_type("archive") == "archive"
