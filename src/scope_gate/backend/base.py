"""Interface to the decision engine, scope store and grant-target resolver."""

from abc import ABC, abstractmethod
from typing import List, Sequence

from ..models import (
    GrantTarget,
    GrantTargetRequest,
    PermissionCheckResult,
    PermissionDefaults,
    PermissionScope,
    ScopeModes,
    ScopeNormalizationReport,
)


class PermissionBackend(ABC):
    """
    Abstract collaborator consulted by the permission gate.

    All methods are async so implementations can sit behind IPC, Redis or a
    network hop. Implementations raise BackendUnavailable when they cannot
    answer; they never guess an answer.
    """

    # ------------------------------------------------------------------
    # Decision engine
    # ------------------------------------------------------------------

    @abstractmethod
    async def check_permission_request(
        self, action: str, paths: Sequence[str]
    ) -> PermissionCheckResult:
        """
        Classify an action over a set of (normalized) paths.

        Returns:
            allow, deny or ask, with every non-allow evaluation in ``blocked``
        """

    @abstractmethod
    async def resolve_grant_targets(
        self, items: Sequence[GrantTargetRequest]
    ) -> List[GrantTarget]:
        """
        Resolve folder/exact grant directories for each requested path.
        """

    # ------------------------------------------------------------------
    # Scope store
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_scopes(self) -> List[PermissionScope]:
        """Return every persisted scope."""

    @abstractmethod
    async def get_defaults(self) -> PermissionDefaults:
        """Return the global fallback modes."""

    @abstractmethod
    async def set_defaults(self, defaults: PermissionDefaults) -> None:
        """Replace the global fallback modes."""

    @abstractmethod
    async def upsert_scope(self, directory_path: str, modes: ScopeModes) -> int:
        """Create or overwrite the scope rooted at ``directory_path``; return its id."""

    @abstractmethod
    async def delete_scope(self, scope_id: int) -> int:
        """Delete a scope by id; return the number of rows removed."""

    @abstractmethod
    async def normalize_scopes(self) -> ScopeNormalizationReport:
        """Merge and clean overlapping or redundant scopes."""

    async def close(self) -> None:
        """Release any held connections."""
