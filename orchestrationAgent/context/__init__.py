"""Context window management."""

from .budgeter import ContextBudgeter, ContextManagementResult
from .token_counter import TokenCounter, get_context_limit

__all__ = ["ContextBudgeter", "ContextManagementResult", "TokenCounter", "get_context_limit"]
