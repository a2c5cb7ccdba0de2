"""Built-in local tools."""

from .calculate import calculate
from .current_time import get_current_time

BUILTIN_TOOLS = [get_current_time, calculate]

__all__ = ["BUILTIN_TOOLS", "calculate", "get_current_time"]
