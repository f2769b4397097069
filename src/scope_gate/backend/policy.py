"""Reference permission policy: action registry, evaluation and scope hygiene."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import yaml
from loguru import logger

from ..config import Config
from ..errors import UnknownAction
from ..models import (
    MODE_FIELDS,
    BlockedItem,
    Capability,
    GrantTarget,
    GrantTargetRequest,
    PermissionCheckResult,
    PermissionDefaults,
    PermissionMode,
    PermissionScope,
    ScopeModes,
    ScopeNormalizationReport,
)
from ..paths import infer_folder_target, is_protected_path, is_within_scope, normalize_path


# ============================================================================
# ACTION REGISTRY
# ============================================================================


class ActionRegistry:
    """
    Static action -> capability registry loaded from YAML.

    Expected layout::

        capabilities:
          content_scan: [list_directory, search, ...]
          modification: [move_files, ...]
    """

    def __init__(self):
        self._actions: Dict[str, Capability] = {}

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "ActionRegistry":
        """
        Load registry from YAML file.

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If the structure or a capability name is invalid
        """
        registry = cls()

        yaml_file = Path(yaml_path)
        if not yaml_file.exists():
            raise FileNotFoundError(f"Action registry YAML not found: {yaml_path}")

        with open(yaml_file) as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict) or not isinstance(data.get("capabilities"), dict):
            raise ValueError("Invalid action registry: expected a 'capabilities' mapping")

        for capability_name, actions in data["capabilities"].items():
            capability = Capability(capability_name)
            if not isinstance(actions, list):
                raise ValueError(f"Actions for '{capability_name}' must be a list")
            for action in actions:
                registry.register(str(action), capability)

        return registry

    def register(self, action: str, capability: Capability) -> None:
        existing = self._actions.get(action)
        if existing is not None and existing != capability:
            raise ValueError(
                f"Action '{action}' mapped to both {existing.value} and {capability.value}"
            )
        self._actions[action] = capability

    def is_registered(self, action: str) -> bool:
        return action in self._actions

    def capability_for(self, action: str) -> Capability:
        try:
            return self._actions[action]
        except KeyError:
            raise UnknownAction(f"unknown action for permission preflight: {action}")

    def actions(self) -> Dict[str, Capability]:
        return dict(self._actions)


_action_registry: Optional[ActionRegistry] = None


def get_action_registry() -> ActionRegistry:
    """Get or load the default action registry."""
    global _action_registry
    if _action_registry is None:
        _action_registry = ActionRegistry.from_yaml(Config.ACTIONS_YAML_PATH)
        logger.debug(
            f"Loaded {len(_action_registry.actions())} actions from {Config.ACTIONS_YAML_PATH}"
        )
    return _action_registry


# ============================================================================
# EVALUATION
# ============================================================================


def resolve_default_mode(defaults: PermissionDefaults, capability: Capability) -> PermissionMode:
    """Indexing is always allowed outside protected paths; otherwise use the default."""
    if capability == Capability.INDEXING:
        return PermissionMode.ALLOW
    return defaults.get(capability)


def order_scopes(scopes: Iterable[PermissionScope]) -> List[PermissionScope]:
    """Most specific scope first, so nested grants override their parents."""
    return sorted(scopes, key=lambda scope: (-len(normalize_path(scope.directory_path)), scope.id))


def evaluate_with_scopes(
    scopes: Sequence[PermissionScope],
    path: str,
    capability: Capability,
    default_mode: PermissionMode,
) -> BlockedItem:
    """
    Evaluate one capability for one path.

    Args:
        scopes: Scopes in match order (see order_scopes)
        path: Normalized path
        capability: Capability being exercised
        default_mode: Mode used when no scope matches

    Returns:
        Evaluation record (path, capability, mode, scope_path)
    """
    if is_protected_path(path):
        return BlockedItem(path, capability.value, PermissionMode.DENY.value, None)

    if capability == Capability.INDEXING:
        return BlockedItem(path, capability.value, PermissionMode.ALLOW.value, None)

    for scope in scopes:
        if is_within_scope(path, scope.directory_path):
            mode = scope.modes.get(capability)
            return BlockedItem(path, capability.value, mode.value, scope.directory_path)

    return BlockedItem(path, capability.value, default_mode.value, None)


def check_request(
    capability: Capability,
    paths: Sequence[str],
    scopes: Sequence[PermissionScope],
    defaults: PermissionDefaults,
) -> PermissionCheckResult:
    """Aggregate per-path evaluations: any deny wins, then any ask, else allow."""
    ordered = order_scopes(scopes)
    default_mode = resolve_default_mode(defaults, capability)

    blocked = []
    has_deny = False
    has_ask = False
    for path in paths:
        evaluation = evaluate_with_scopes(ordered, path, capability, default_mode)
        if evaluation.mode == PermissionMode.DENY.value:
            has_deny = True
            blocked.append(evaluation)
        elif evaluation.mode == PermissionMode.ASK.value:
            has_ask = True
            blocked.append(evaluation)

    if has_deny:
        decision = "deny"
    elif has_ask:
        decision = "ask"
    else:
        decision = "allow"
    return PermissionCheckResult(decision=decision, blocked=blocked)


def resolve_grant_targets(items: Sequence[GrantTargetRequest]) -> List[GrantTarget]:
    """
    Resolve folder and exact-path candidates for each item.

    A matched scope is always the folder target. Otherwise the folder is
    inferred from the path, and the choice is ambiguous whenever folder and
    exact path differ.
    """
    targets = []
    for item in items:
        exact_target = normalize_path(item.path)
        if item.scope_path:
            folder_target = normalize_path(item.scope_path)
        else:
            folder_target = infer_folder_target(item.path)
        ambiguous = (
            not item.scope_path
            and bool(folder_target)
            and bool(exact_target)
            and folder_target != exact_target
        )
        targets.append(
            GrantTarget(
                path=item.path,
                scope_path=item.scope_path,
                folder_target=folder_target,
                exact_target=exact_target,
                ambiguous=ambiguous,
            )
        )
    return targets


# ============================================================================
# SCOPE NORMALIZATION
# ============================================================================


@dataclass
class NormalizationPlan:
    """Row-level changes a store applies to normalize its scopes."""

    updates: Dict[int, Tuple[str, ScopeModes]] = field(default_factory=dict)
    deletes: List[int] = field(default_factory=list)
    report: ScopeNormalizationReport = field(default_factory=ScopeNormalizationReport)


def _widest(left: ScopeModes, right: ScopeModes) -> ScopeModes:
    values = {}
    for name in MODE_FIELDS:
        a, b = getattr(left, name), getattr(right, name)
        values[name] = a if a.rank >= b.rank else b
    return ScopeModes(**values)


def plan_scope_normalization(scopes: Sequence[PermissionScope]) -> NormalizationPlan:
    """
    Compute how to normalize a set of scopes.

    1. Rewrite directory paths into normalized form; rows with empty paths are
       dropped.
    2. Rows that collapse onto the same path merge into the oldest one, taking
       the most permissive mode per capability.
    3. A scope whose modes equal its nearest enclosing scope is redundant and
       dropped.
    """
    plan = NormalizationPlan()
    plan.report.scanned = len(scopes)

    keepers: Dict[str, Tuple[PermissionScope, ScopeModes]] = {}
    changed: set = set()

    for scope in sorted(scopes, key=lambda s: s.id):
        path = normalize_path(scope.directory_path)
        if not path:
            plan.deletes.append(scope.id)
            plan.report.skipped += 1
            continue
        if path != scope.directory_path:
            plan.report.normalized += 1
            changed.add(scope.id)

        if path in keepers:
            keeper, modes = keepers[path]
            merged = _widest(modes, scope.modes)
            if merged != modes:
                changed.add(keeper.id)
            keepers[path] = (keeper, merged)
            plan.deletes.append(scope.id)
            plan.report.merged += 1
            continue

        keepers[path] = (scope, scope.modes)

    remaining = sorted(keepers.items(), key=lambda entry: len(entry[0]))
    survivors: Dict[str, ScopeModes] = {}
    for path, (scope, modes) in remaining:
        enclosing = [
            other for other in survivors if other != path and is_within_scope(path, other)
        ]
        if enclosing:
            parent = max(enclosing, key=len)
            if survivors[parent] == modes:
                plan.deletes.append(scope.id)
                plan.report.skipped += 1
                continue
        survivors[path] = modes
        if scope.id in changed:
            plan.updates[scope.id] = (path, modes)

    return plan
