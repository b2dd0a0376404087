"""Logging context management using contextvars.

Each request (or background flush) carries identifiers that are injected
into every log entry without passing them explicitly through the call stack.
"""

from contextvars import ContextVar, Token
from typing import Any
from uuid import uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
course_id_var: ContextVar[str | None] = ContextVar("course_id", default=None)
lesson_id_var: ContextVar[str | None] = ContextVar("lesson_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context, generating one if absent."""
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    """Get the current user ID."""
    return user_id_var.get()


def set_user_id(user_id: str | None) -> None:
    """Set the user ID for the current context."""
    user_id_var.set(str(user_id) if user_id is not None else None)


def get_context() -> dict[str, Any]:
    """Get all non-empty context variables as a dictionary."""
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    for key, var in (
        ("user_id", user_id_var),
        ("course_id", course_id_var),
        ("lesson_id", lesson_id_var),
    ):
        value = var.get()
        if value:
            context[key] = value

    return context


def clear_context() -> None:
    """Clear all context variables at the end of a request."""
    request_id_var.set("")
    user_id_var.set(None)
    course_id_var.set(None)
    lesson_id_var.set(None)


class ProgressContext:
    """Context manager binding progress identifiers for log entries.

    Usage:
        with ProgressContext(user_id="u1", course_id="c1", lesson_id="l1"):
            logger.info("progress_flushed")  # includes the three ids
    """

    def __init__(
        self,
        user_id: str | None = None,
        course_id: str | None = None,
        lesson_id: str | None = None,
    ) -> None:
        self._values = {
            user_id_var: user_id,
            course_id_var: course_id,
            lesson_id_var: lesson_id,
        }
        self._tokens: list[tuple[ContextVar[str | None], Token[str | None]]] = []

    def __enter__(self) -> "ProgressContext":
        for var, value in self._values.items():
            if value is not None:
                self._tokens.append((var, var.set(str(value))))
        return self

    def __exit__(self, *_: object) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
