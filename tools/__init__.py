"""
Capabilities the conversation model can call.
"""

from .registry import (
    Capability,
    CapabilityRegistry,
    UnknownCapabilityError,
    CapabilityArgumentError,
)
from .calendar_tools import ToolContext, build_calendar_registry

__all__ = [
    "Capability",
    "CapabilityRegistry",
    "UnknownCapabilityError",
    "CapabilityArgumentError",
    "ToolContext",
    "build_calendar_registry",
]
