"""Exception types raised by the permission gate and its backends."""

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .models import BlockedItem

DEFAULT_SUMMARY_LIMIT = 4


def format_blocked_list(
    blocked: Sequence["BlockedItem"], limit: int = DEFAULT_SUMMARY_LIMIT
) -> str:
    """
    Render blocked items as a short bullet list.

    Args:
        blocked: Items returned by the decision engine
        limit: Maximum number of items listed before the "+N more" line

    Returns:
        One line per shown item plus a "- +N more" line when truncated
    """
    if not blocked:
        return ""
    lines = []
    for item in blocked[:limit]:
        scope = f" (scope: {item.scope_path})" if item.scope_path else ""
        lines.append(f"- {item.capability}: {item.path}{scope}")
    hidden = len(blocked) - limit
    if hidden > 0:
        lines.append(f"- +{hidden} more")
    return "\n".join(lines)


class PermissionGateError(Exception):
    """Base class for permission gate errors."""


class PermissionDenied(PermissionGateError):
    """The decision engine denied the action outright."""

    def __init__(
        self,
        blocked: Optional[Sequence["BlockedItem"]] = None,
        message: Optional[str] = None,
        limit: int = DEFAULT_SUMMARY_LIMIT,
    ):
        self.blocked = list(blocked or [])
        if message is None:
            details = format_blocked_list(self.blocked, limit)
            message = f"Permission denied.\n{details}" if details else "Permission denied."
        super().__init__(message)


class PermissionDeniedByUser(PermissionDenied):
    """
    The user declined (or let expire) an "ask" prompt.

    Subclasses PermissionDenied so a single `except PermissionDenied` stops the
    action either way. Catch this type first to tell a user refusal apart from
    an engine denial.
    """

    def __init__(self, message: str = "Permission denied by user"):
        super().__init__(blocked=[], message=message)


class GrantPersistenceFailure(PermissionGateError):
    """Writing an "always allow" grant failed. Never fatal to the current action."""


class BackendUnavailable(PermissionGateError):
    """The decision engine or scope store could not be reached."""


class InvalidPermissionMode(ValueError):
    """A mode string outside deny|ask|allow."""


class UnknownAction(ValueError):
    """An action name with no capability mapping."""
