"""In-process permission backend: reference policy over a scope store."""

from typing import List, Optional, Sequence, Tuple

from loguru import logger

from ..config import Config
from ..models import (
    GrantTarget,
    GrantTargetRequest,
    PermissionCheckResult,
    PermissionDefaults,
    PermissionScope,
    ScopeModes,
    ScopeNormalizationReport,
)
from ..paths import normalize_paths
from .base import PermissionBackend
from .policy import (
    ActionRegistry,
    check_request,
    get_action_registry,
    plan_scope_normalization,
    resolve_grant_targets,
)
from .store import InMemoryScopeStore, ScopeStore


class LocalPermissionBackend(PermissionBackend):
    """
    Decision engine, grant-target resolver and scope store in one process.

    Scopes and defaults are cached between checks and reloaded only after a
    write through this backend bumps the policy version.
    """

    def __init__(self, store: ScopeStore, registry: Optional[ActionRegistry] = None):
        self.store = store
        self.registry = registry or get_action_registry()
        self._version = 0
        self._cached_version = -1
        self._cached_policy: Optional[Tuple[List[PermissionScope], PermissionDefaults]] = None

    @property
    def policy_version(self) -> int:
        return self._version

    def invalidate(self) -> None:
        """Drop the cached policy (call after writing to the store directly)."""
        self._version += 1

    async def _policy(self) -> Tuple[List[PermissionScope], PermissionDefaults]:
        if self._cached_policy is None or self._cached_version != self._version:
            version = self._version
            scopes = await self.store.list_scopes()
            defaults = await self.store.get_defaults()
            self._cached_policy = (scopes, defaults)
            self._cached_version = version
            logger.debug(f"Policy cache reloaded (version={version}, scopes={len(scopes)})")
        return self._cached_policy

    # ------------------------------------------------------------------
    # Decision engine
    # ------------------------------------------------------------------

    async def check_permission_request(
        self, action: str, paths: Sequence[str]
    ) -> PermissionCheckResult:
        capability = self.registry.capability_for(action)
        normalized = normalize_paths(paths)
        if not normalized:
            return PermissionCheckResult(decision="allow")
        scopes, defaults = await self._policy()
        return check_request(capability, normalized, scopes, defaults)

    async def resolve_grant_targets(
        self, items: Sequence[GrantTargetRequest]
    ) -> List[GrantTarget]:
        return resolve_grant_targets(items)

    # ------------------------------------------------------------------
    # Scope store
    # ------------------------------------------------------------------

    async def get_scopes(self) -> List[PermissionScope]:
        return await self.store.list_scopes()

    async def get_defaults(self) -> PermissionDefaults:
        return await self.store.get_defaults()

    async def set_defaults(self, defaults: PermissionDefaults) -> None:
        await self.store.set_defaults(defaults)
        self.invalidate()

    async def upsert_scope(self, directory_path: str, modes: ScopeModes) -> int:
        try:
            return await self.store.upsert_scope(directory_path, modes)
        finally:
            self.invalidate()

    async def delete_scope(self, scope_id: int) -> int:
        try:
            return await self.store.delete_scope(scope_id)
        finally:
            self.invalidate()

    async def normalize_scopes(self) -> ScopeNormalizationReport:
        scopes = await self.store.list_scopes()
        plan = plan_scope_normalization(scopes)
        try:
            for scope_id, (path, modes) in plan.updates.items():
                await self.store.update_scope(scope_id, path, modes)
            for scope_id in plan.deletes:
                await self.store.delete_scope(scope_id)
        finally:
            self.invalidate()
        logger.info(f"Scopes normalized: {plan.report.to_dict()}")
        return plan.report

    async def close(self) -> None:
        await self.store.close()


def create_scope_store(kind: Optional[str] = None) -> ScopeStore:
    """
    Build the scope store named by ``kind`` (defaults to Config.SCOPE_STORE).

    Raises:
        ValueError: If the store kind is unknown
    """
    kind = (kind or Config.SCOPE_STORE).strip().lower()
    if kind == "memory":
        return InMemoryScopeStore()
    if kind == "redis":
        from .redis_store import RedisScopeStore

        return RedisScopeStore()
    raise ValueError(f"Unknown scope store: {kind}")


def create_local_backend(
    store: Optional[ScopeStore] = None, registry: Optional[ActionRegistry] = None
) -> LocalPermissionBackend:
    """Build a LocalPermissionBackend over the configured store."""
    return LocalPermissionBackend(store or create_scope_store(), registry)
