"""Scope/default storage interface and the in-memory store."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..models import PermissionDefaults, PermissionScope, ScopeModes
from ..paths import normalize_path


class ScopeStore(ABC):
    """Persistence for permission scopes and global defaults."""

    @abstractmethod
    async def list_scopes(self) -> List[PermissionScope]:
        """Return every stored scope, ordered by id."""

    @abstractmethod
    async def get_defaults(self) -> PermissionDefaults:
        """Return stored defaults (unset capabilities fall back to model defaults)."""

    @abstractmethod
    async def set_defaults(self, defaults: PermissionDefaults) -> None:
        """Replace stored defaults."""

    @abstractmethod
    async def upsert_scope(self, directory_path: str, modes: ScopeModes) -> int:
        """
        Write modes for a directory, creating the scope if needed.

        The path is stored normalized; an existing scope at the same normalized
        path is updated in place and keeps its id.
        """

    @abstractmethod
    async def update_scope(self, scope_id: int, directory_path: str, modes: ScopeModes) -> None:
        """Rewrite a scope row by id (used by normalization)."""

    @abstractmethod
    async def delete_scope(self, scope_id: int) -> int:
        """Delete a scope; return the number of rows removed (0 or 1)."""

    async def close(self) -> None:
        """Release resources."""


class InMemoryScopeStore(ScopeStore):
    """Process-local store. Suitable for tests and single-process embedding."""

    def __init__(
        self,
        scopes: Optional[List[PermissionScope]] = None,
        defaults: Optional[PermissionDefaults] = None,
    ):
        self._scopes: Dict[int, PermissionScope] = {}
        self._defaults = defaults or PermissionDefaults()
        self._next_id = 1
        for scope in scopes or []:
            self._scopes[scope.id] = scope
            self._next_id = max(self._next_id, scope.id + 1)

    async def list_scopes(self) -> List[PermissionScope]:
        return [self._copy(self._scopes[key]) for key in sorted(self._scopes)]

    async def get_defaults(self) -> PermissionDefaults:
        return PermissionDefaults.from_dict(self._defaults.to_dict())

    async def set_defaults(self, defaults: PermissionDefaults) -> None:
        self._defaults = PermissionDefaults.from_dict(defaults.to_dict())

    async def upsert_scope(self, directory_path: str, modes: ScopeModes) -> int:
        path = normalize_path(directory_path)
        if not path:
            raise ValueError("directory_path must not be empty")
        for scope in self._scopes.values():
            if scope.directory_path == path:
                self._apply_modes(scope, modes)
                return scope.id
        scope_id = self._next_id
        self._next_id += 1
        self._scopes[scope_id] = PermissionScope(
            id=scope_id, directory_path=path, **modes.to_dict()
        )
        return scope_id

    async def update_scope(self, scope_id: int, directory_path: str, modes: ScopeModes) -> None:
        scope = self._scopes.get(scope_id)
        if scope is None:
            return
        scope.directory_path = directory_path
        self._apply_modes(scope, modes)

    async def delete_scope(self, scope_id: int) -> int:
        return 1 if self._scopes.pop(scope_id, None) is not None else 0

    @staticmethod
    def _apply_modes(scope: PermissionScope, modes: ScopeModes) -> None:
        scope.content_scan_mode = modes.content_scan_mode
        scope.modification_mode = modes.modification_mode
        scope.ocr_mode = modes.ocr_mode
        scope.indexing_mode = modes.indexing_mode

    @staticmethod
    def _copy(scope: PermissionScope) -> PermissionScope:
        return PermissionScope.from_dict(scope.to_dict())
