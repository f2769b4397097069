"""ScopeGate - permission decisions and prompt queue for file-manager actions."""

__version__ = "0.1.0"

from .errors import (
    BackendUnavailable,
    GrantPersistenceFailure,
    PermissionDenied,
    PermissionDeniedByUser,
)
from .gate import PermissionDecisionClient
from .paths import normalize_path, normalize_paths
from .prompts.queue import PromptDecision, PromptQueue, get_prompt_queue

__all__ = [
    "BackendUnavailable",
    "GrantPersistenceFailure",
    "PermissionDecisionClient",
    "PermissionDenied",
    "PermissionDeniedByUser",
    "PromptDecision",
    "PromptQueue",
    "get_prompt_queue",
    "normalize_path",
    "normalize_paths",
    "__version__",
]
