"""Logging utilities for the orchestration engine."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

ROOT_LOGGER_NAME = "orchestrationAgent"


def setup_logging(level: Union[int, str] = logging.INFO, log_dir: Optional[str] = "logs") -> logging.Logger:
    """Setup logging configuration for the orchestration engine.

    Args:
        level: Console logging level (default: INFO). File logs always capture DEBUG.
        log_dir: Directory for the session log file, or None for console only

    Returns:
        Configured package logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(max(level, logging.WARNING) if isinstance(level, int) else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    if log_dir:
        logs_path = Path(log_dir)
        logs_path.mkdir(parents=True, exist_ok=True)
        log_file = logs_path / f"orchestration_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

        logger.info("=" * 80)
        logger.info("Orchestration session started")
        logger.info(f"Log file: {log_file}")
        logger.info("=" * 80)

    return logger


def log_tool_call(logger: logging.Logger, tool_id: str, args: Dict[str, Any]) -> None:
    """Log tool invocation.

    Args:
        logger: Logger instance
        tool_id: Id of the tool being called
        args: Tool arguments
    """
    logger.info(f"Tool call: {tool_id}")
    logger.debug(f"  Arguments: {json.dumps(args, ensure_ascii=False, indent=2, default=str)}")


def log_tool_result(logger: logging.Logger, tool_id: str, result: Any, success: bool = True) -> None:
    """Log tool execution result, truncating the preview."""
    status = "success" if success else "failed"
    logger.info(f"Tool result: {tool_id} - {status}")

    result_str = str(result)
    if len(result_str) > 500:
        result_str = result_str[:500] + "... (truncated)"
    logger.debug(f"  Result: {result_str}")


def log_error(logger: logging.Logger, error: BaseException, context: str = "") -> None:
    """Log error with context.

    Args:
        logger: Logger instance
        error: Exception instance
        context: Additional context about where the error occurred
    """
    logger.error(f"Error occurred: {type(error).__name__}: {str(error)}")
    if context:
        logger.error(f"  Context: {context}")
    logger.debug("Full traceback:", exc_info=error)


def log_prompt(logger: logging.Logger, phase: str, prompt: str) -> None:
    """Log the system prompt used for a phase (agent type or orchestrator)."""
    logger.debug(f"\n{'='*80}")
    logger.debug(f"System Prompt for {phase}:")
    logger.debug(f"{'='*80}")
    logger.debug(prompt)
    logger.debug(f"{'='*80}\n")


def log_context_compression(
    logger: logging.Logger,
    scope: str,
    original_tokens: int,
    new_tokens: int,
    summarized_messages: int,
) -> None:
    """Log a context summarization outcome."""
    saved = original_tokens - new_tokens
    ratio = (saved / original_tokens * 100) if original_tokens else 0.0
    logger.info(
        f"Context summarized for {scope}: {summarized_messages} messages, "
        f"{original_tokens} -> {new_tokens} tokens ({ratio:.1f}% saved)"
    )


def log_routing_decision(logger: logging.Logger, from_node: str, decision: str, reason: str = "") -> None:
    """Log a graph routing decision.

    Args:
        logger: Logger instance
        from_node: Source node making the decision
        decision: Routing destination
        reason: Reason for the routing decision
    """
    logger.debug(f"Routing decision from {from_node}: -> {decision}")
    if reason:
        logger.debug(f"  Reason: {reason}")
