"""Get current UTC datetime."""

from datetime import datetime, timezone

from langchain_core.tools import tool


@tool
def get_current_time() -> str:
    """Return current UTC datetime in ISO format.

    Useful for timestamps and reasoning about relative dates such as
    "tomorrow" or "next week".
    """
    return datetime.now(timezone.utc).isoformat()


__all__ = ["get_current_time"]
