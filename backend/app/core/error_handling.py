"""Error handling utilities: structured logging and error responses."""
from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


def error_scope(story_id: str | None = None, session_id: str | None = None) -> str:
    """Label an error line with its story/session; "-" when neither is known."""
    if story_id and session_id:
        return f"{story_id}/{session_id}"
    return story_id or (f"?/{session_id}" if session_id else "-")


def log_error_with_context(
    error: Exception,
    node_name: str,
    story_id: str | None = None,
    session_id: str | None = None,
    extra_context: dict[str, Any] | None = None,
) -> None:
    """Log an error with its story/session scope and stack trace.

    node_name is the failing component ('corpus_loader', 'inventory', 'turn',
    'state_sweep', ...). The story id, session id and extra_context travel on
    the record as a single `narrative_context` dict so handlers can index them
    without colliding with LogRecord attributes.
    """
    context: dict[str, Any] = dict(extra_context or {})
    context.update(node=node_name, story_id=story_id, session_id=session_id)
    logger.error(
        "[%s] %s: %s (%s)",
        node_name,
        type(error).__name__,
        error,
        error_scope(story_id, session_id),
        exc_info=error,
        extra={"narrative_context": context},
    )


def create_error_response(
    error_code: str,
    message: str,
    node: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create a structured error response for API endpoints.

    Args:
        error_code: Error code (e.g., 'CORPUS_INVALID', 'HTTP_404')
        message: Human-readable error message
        node: Component where the error occurred
        details: Additional error details

    Returns:
        Structured error dict
    """
    response: dict[str, Any] = {
        "error_code": error_code,
        "message": message,
    }
    if node:
        response["node"] = node
    if details:
        response["details"] = details
    return response
