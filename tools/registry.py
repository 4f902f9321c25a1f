"""
Capability registry: stable names mapped to typed handlers.

Each capability declares a pydantic argument model; the registry validates raw
model arguments against it before the handler runs and publishes the schemas
as OpenAI tool specs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from config import logger

Handler = Callable[[Any, Any], Awaitable[Dict[str, Any]]]


class UnknownCapabilityError(LookupError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class CapabilityArgumentError(ValueError):
    def __init__(self, name: str, error: ValidationError):
        super().__init__(f"Invalid arguments for {name}: {error.errors(include_url=False)}")
        self.name = name
        self.error = error


@dataclass(frozen=True)
class Capability:
    name: str
    description: str
    args_model: Type[BaseModel]
    handler: Handler
    mutating: bool = False
    terminal: bool = False
    task_type: Optional[str] = None

    def tool_spec(self) -> Dict[str, Any]:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }


class CapabilityRegistry:
    def __init__(self):
        self._capabilities: Dict[str, Capability] = {}

    def register(self, capability: Capability) -> Capability:
        if capability.name in self._capabilities:
            logger.warning(f"[TOOLS] Replacing capability '{capability.name}'")
        self._capabilities[capability.name] = capability
        return capability

    def capability(
        self,
        name: str,
        description: str,
        args_model: Type[BaseModel],
        mutating: bool = False,
        terminal: bool = False,
        task_type: Optional[str] = None,
    ) -> Callable[[Handler], Handler]:
        """Decorator form of register()."""
        def decorator(handler: Handler) -> Handler:
            self.register(Capability(name, description.strip(), args_model, handler, mutating, terminal, task_type))
            return handler
        return decorator

    def get(self, name: str) -> Capability:
        capability = self._capabilities.get(name)
        if capability is None:
            raise UnknownCapabilityError(name)
        return capability

    def has(self, name: str) -> bool:
        return name in self._capabilities

    def names(self) -> List[str]:
        return list(self._capabilities)

    def is_mutating(self, name: str) -> bool:
        capability = self._capabilities.get(name)
        return bool(capability and capability.mutating)

    def is_terminal(self, name: str) -> bool:
        capability = self._capabilities.get(name)
        return bool(capability and capability.terminal)

    def task_type(self, name: str) -> Optional[str]:
        """Task recorded in the conversation state when a mutating capability runs."""
        capability = self._capabilities.get(name)
        if capability is None or not capability.mutating:
            return None
        return capability.task_type or capability.name

    def openai_tool_specs(self) -> List[Dict[str, Any]]:
        return [c.tool_spec() for c in self._capabilities.values()]

    async def invoke(self, name: str, raw_args: Dict[str, Any], ctx: Any) -> Dict[str, Any]:
        capability = self.get(name)
        try:
            args = capability.args_model.model_validate(raw_args or {})
        except ValidationError as e:
            raise CapabilityArgumentError(name, e) from e
        return await capability.handler(args, ctx)
