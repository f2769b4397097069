"""
Permission gate: preflight checks, user prompts and the retry fallback.

Every action that touches paths calls ``preflight_permission`` before running
and passes the returned flag as ``allow_once`` to its underlying command. When
that command fails anyway, the caller runs ``retry_permission_after_failure``
once before surfacing the error.
"""

from typing import Iterable, List, Optional, Sequence

from loguru import logger

from .audit import AuditLogger
from .backend.base import PermissionBackend
from .config import Config
from .errors import (
    BackendUnavailable,
    GrantPersistenceFailure,
    InvalidPermissionMode,
    PermissionDenied,
    PermissionDeniedByUser,
    PermissionGateError,
    UnknownAction,
)
from .grants import ScopeChoice, persist_always_allow, resolve_grant_targets
from .models import BlockedItem, PermissionCheckResult
from .paths import normalize_paths
from .prompts.queue import (
    PromptDecision,
    PromptInput,
    PromptKind,
    PromptQueue,
    get_prompt_queue,
)

_ALWAYS_ALLOW = {
    PromptDecision.ALWAYS_ALLOW_FOLDER: ScopeChoice.FOLDER,
    PromptDecision.ALWAYS_ALLOW_EXACT: ScopeChoice.EXACT,
}


class PermissionDecisionClient:
    """
    Orchestrates the backend decision engine, the prompt queue and grant persistence.

    Features:
    - allow/deny outcomes never touch the prompt queue
    - "ask" outcomes go through the shared PromptQueue (FIFO, deduplicated)
    - "always allow" grants are persisted best-effort
    - decision-engine failures propagate as BackendUnavailable, never as allow
    """

    def __init__(
        self,
        backend: PermissionBackend,
        queue: Optional[PromptQueue] = None,
        audit: Optional[AuditLogger] = None,
    ):
        """
        Initialize the client.

        Args:
            backend: Decision engine, grant-target resolver and scope store
            queue: Prompt queue (defaults to the process-wide instance)
            audit: Optional audit logger
        """
        self.backend = backend
        self._queue = queue
        self.audit = audit

    @property
    def queue(self) -> PromptQueue:
        if self._queue is None:
            self._queue = get_prompt_queue()
        return self._queue

    async def _check(self, action: str, paths: List[str]) -> PermissionCheckResult:
        try:
            return await self.backend.check_permission_request(action, paths)
        except (PermissionGateError, UnknownAction, InvalidPermissionMode):
            raise
        except Exception as e:
            logger.error(f"Permission check failed for action={action}: {e}")
            raise BackendUnavailable(f"permission check failed for {action}: {e}") from e

    async def preflight_permission(
        self, action: str, paths: Iterable[str], prompt_title: str
    ) -> bool:
        """
        Gate an action over a set of paths.

        Args:
            action: Action identifier (e.g. "move_files")
            paths: Paths the action will touch
            prompt_title: Header shown if the user has to be asked

        Returns:
            True if the user granted this call explicitly (pass it as allow_once),
            False if no explicit grant is needed

        Raises:
            PermissionDenied: The decision engine denied the action
            PermissionDeniedByUser: The user declined, or the prompt expired or was cancelled
            BackendUnavailable: The decision check could not be performed
        """
        normalized = normalize_paths(paths)
        if not normalized:
            return False

        logger.debug(f"preflight: action={action}, paths={normalized}")
        result = await self._check(action, normalized)
        blocked = list(result.blocked or [])
        logger.debug(f"preflight result: decision={result.decision}, blocked={len(blocked)}")
        if self.audit is not None:
            self.audit.log_check(action, normalized, result.decision, len(blocked))

        if result.decision == "allow":
            return False

        if result.decision == "deny":
            if self.audit is not None:
                self.audit.log_denied(action, normalized, reason="backend")
            raise PermissionDenied(blocked, limit=Config.BLOCKED_SUMMARY_LIMIT)

        grant_targets = await resolve_grant_targets(self.backend, blocked)
        allow_exact_path = any(target.ambiguous for target in grant_targets)
        decision = await self.queue.request_prompt(
            PromptInput(
                title=prompt_title,
                action=action,
                prompt_kind=PromptKind.INITIAL,
                blocked=tuple(blocked),
                allow_always=len(blocked) > 0,
                allow_exact_path=allow_exact_path,
            )
        )
        logger.debug(f"user decision: {decision.value}")

        if decision == PromptDecision.DENY:
            if self.audit is not None:
                self.audit.log_denied(action, normalized, reason="user")
            raise PermissionDeniedByUser()

        scope_choice = _ALWAYS_ALLOW.get(decision)
        if scope_choice is not None:
            try:
                await persist_always_allow(
                    self.backend, blocked, scope_choice, grant_targets, audit=self.audit
                )
            except GrantPersistenceFailure as e:
                logger.error(f"Failed to persist always-allow scopes: {e}")

        return True

    async def confirm_allow_once_fallback(
        self,
        prompt_title: str,
        action: str,
        blocked: Sequence[BlockedItem] = (),
    ) -> bool:
        """Ask for a one-off retry grant; True only on allow_once."""
        decision = await self.queue.request_prompt(
            PromptInput(
                title=prompt_title,
                action=action,
                prompt_kind=PromptKind.RETRY,
                blocked=tuple(blocked),
                allow_always=False,
                allow_exact_path=False,
            )
        )
        return decision == PromptDecision.ALLOW_ONCE

    async def retry_permission_after_failure(
        self, action: str, paths: Iterable[str], prompt_title: str
    ) -> bool:
        """
        Offer one more allow-once chance after an approved action failed.

        Only an "ask" outcome of a fresh check leads to a prompt. Failures of
        the check itself are logged and answered with False. Callers retry the
        original operation at most once with the result.
        """
        normalized = normalize_paths(paths)
        if not normalized:
            return False

        try:
            result = await self.backend.check_permission_request(action, normalized)
        except Exception as e:
            logger.error(f"Retry permission check failed for action={action}: {e}")
            return False

        if result.decision != "ask":
            return False
        return await self.confirm_allow_once_fallback(
            prompt_title, action, list(result.blocked or [])
        )


# ============================================================================
# Process-wide client
# ============================================================================

_permission_client: Optional[PermissionDecisionClient] = None


def get_permission_client() -> PermissionDecisionClient:
    """
    Get the shared client.

    Raises:
        RuntimeError: If no client has been configured
    """
    if _permission_client is None:
        raise RuntimeError("Permission client not configured; call configure_permission_client()")
    return _permission_client


def configure_permission_client(
    backend: PermissionBackend,
    queue: Optional[PromptQueue] = None,
    audit: Optional[AuditLogger] = None,
) -> PermissionDecisionClient:
    """Create and install the shared client."""
    global _permission_client
    _permission_client = PermissionDecisionClient(backend, queue=queue, audit=audit)
    return _permission_client


def reset_permission_client() -> None:
    global _permission_client
    _permission_client = None


async def preflight_permission(action: str, paths: Iterable[str], prompt_title: str) -> bool:
    """Shorthand for get_permission_client().preflight_permission(...)."""
    return await get_permission_client().preflight_permission(action, paths, prompt_title)


async def retry_permission_after_failure(
    action: str, paths: Iterable[str], prompt_title: str
) -> bool:
    """Shorthand for get_permission_client().retry_permission_after_failure(...)."""
    return await get_permission_client().retry_permission_after_failure(
        action, paths, prompt_title
    )
