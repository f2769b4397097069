"""Resolution and persistence of "always allow" grants."""

from enum import Enum
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .audit import AuditLogger
from .backend.base import PermissionBackend
from .errors import GrantPersistenceFailure
from .models import BlockedItem, GrantTarget, GrantTargetRequest, ScopeModes, capability_to_field
from .paths import normalize_path


class ScopeChoice(str, Enum):
    """Granularity of a persisted grant."""

    FOLDER = "folder"
    EXACT = "exact"


def unique_grant_requests(blocked: Sequence[BlockedItem]) -> List[GrantTargetRequest]:
    """Collapse blocked items to one request per (path, scope_path), in order."""
    seen = set()
    requests = []
    for item in blocked:
        key = item.grant_key()
        if key in seen:
            continue
        seen.add(key)
        requests.append(GrantTargetRequest(path=item.path, scope_path=item.scope_path))
    return requests


async def resolve_grant_targets(
    backend: PermissionBackend, blocked: Sequence[BlockedItem]
) -> List[GrantTarget]:
    """
    Ask the backend for grant targets of the unique blocked locations.

    A backend failure is logged and yields an empty list; persistence then
    falls back to the scope path or the path itself.
    """
    requests = unique_grant_requests(blocked)
    if not requests:
        return []
    try:
        targets = await backend.resolve_grant_targets(requests)
    except Exception as e:
        logger.error(f"Failed to resolve grant targets for {len(requests)} path(s): {e}")
        return []
    return list(targets or [])


def _target_directory(
    item: BlockedItem,
    scope_choice: ScopeChoice,
    targets_by_key: Dict[str, GrantTarget],
) -> str:
    target = targets_by_key.get(item.grant_key())
    if target is not None:
        directory = target.exact_target if scope_choice == ScopeChoice.EXACT else target.folder_target
        if directory:
            return normalize_path(directory)
    return normalize_path(item.scope_path or item.path)


async def persist_always_allow(
    backend: PermissionBackend,
    blocked: Sequence[BlockedItem],
    scope_choice: ScopeChoice,
    grant_targets: Sequence[GrantTarget],
    audit: Optional[AuditLogger] = None,
) -> Dict[str, ScopeModes]:
    """
    Widen the blocked capabilities to ``allow`` on their grant directories.

    Each target directory starts from its existing scope (or the global
    defaults), gets only the implicated capabilities set to ``allow`` and is
    written once. Scope normalization runs once after all writes.

    Args:
        backend: Scope store collaborator
        blocked: Items the user just approved
        scope_choice: FOLDER or EXACT granularity
        grant_targets: Targets resolved for ``blocked`` (may be empty)
        audit: Optional audit logger

    Returns:
        Modes written, keyed by target directory

    Raises:
        GrantPersistenceFailure: If reading or writing scopes fails
    """
    scope_choice = ScopeChoice(scope_choice)
    targets_by_key = {target.grant_key(): target for target in grant_targets}

    updates: Dict[str, ScopeModes] = {}
    try:
        scopes = await backend.get_scopes()
        defaults = await backend.get_defaults()
        existing = {normalize_path(scope.directory_path): scope for scope in scopes}

        for item in blocked:
            mode_field = capability_to_field(item.capability)
            if mode_field is None:
                logger.debug(f"Not persisting unknown capability '{item.capability}'")
                continue
            directory = _target_directory(item, scope_choice, targets_by_key)
            if not directory:
                continue
            if directory not in updates:
                scope = existing.get(directory)
                updates[directory] = scope.modes if scope is not None else defaults.as_scope_modes()
            updates[directory] = updates[directory].with_allow(mode_field)

        for directory, modes in updates.items():
            await backend.upsert_scope(directory, modes)
        if updates:
            await backend.normalize_scopes()
    except Exception as e:
        _audit_grant(audit, updates, scope_choice, error=str(e))
        raise GrantPersistenceFailure(f"failed to persist always-allow grant: {e}") from e

    logger.info(
        f"Persisted always-allow ({scope_choice.value}) for {len(updates)} director"
        f"{'y' if len(updates) == 1 else 'ies'}"
    )
    if updates:
        _audit_grant(audit, updates, scope_choice)
    return updates


def _audit_grant(
    audit: Optional[AuditLogger],
    updates: Dict[str, ScopeModes],
    scope_choice: ScopeChoice,
    error: Optional[str] = None,
) -> None:
    # The scopes are already written (or already failed); auditing cannot change that.
    if audit is None:
        return
    try:
        audit.log_grant(
            {path: modes.to_dict() for path, modes in updates.items()},
            scope_choice.value,
            error=error,
        )
    except Exception as e:
        logger.error(f"Failed to audit always-allow grant: {e}")
