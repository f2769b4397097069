"""Permission backends: collaborator interface, reference policy and stores."""

from .base import PermissionBackend
from .local import LocalPermissionBackend, create_local_backend, create_scope_store
from .policy import ActionRegistry, get_action_registry
from .store import InMemoryScopeStore, ScopeStore

__all__ = [
    "ActionRegistry",
    "InMemoryScopeStore",
    "LocalPermissionBackend",
    "PermissionBackend",
    "ScopeStore",
    "create_local_backend",
    "create_scope_store",
    "get_action_registry",
]
