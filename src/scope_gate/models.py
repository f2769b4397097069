"""Data models for permission scopes, decisions and grant targets."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from .errors import InvalidPermissionMode
from .paths import normalize_path


class PermissionMode(str, Enum):
    """Tri-state mode for a capability within a scope."""

    DENY = "deny"
    ASK = "ask"
    ALLOW = "allow"

    @classmethod
    def parse(cls, value: Any) -> "PermissionMode":
        """Parse a mode string, raising InvalidPermissionMode for anything else."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidPermissionMode(
                f"invalid permission mode '{value}' (expected: deny|ask|allow)"
            )

    @property
    def rank(self) -> int:
        """Permissiveness order: deny < ask < allow."""
        return _MODE_RANK[self]


_MODE_RANK = {PermissionMode.DENY: 0, PermissionMode.ASK: 1, PermissionMode.ALLOW: 2}


class Capability(str, Enum):
    """Kinds of access gated independently per directory scope."""

    CONTENT_SCAN = "content_scan"
    MODIFICATION = "modification"
    OCR = "ocr"
    INDEXING = "indexing"

    @property
    def mode_field(self) -> str:
        return f"{self.value}_mode"

    @property
    def default_field(self) -> str:
        return f"{self.value}_default"


MODE_FIELDS = tuple(capability.mode_field for capability in Capability)


def capability_to_field(capability: str) -> Optional[str]:
    """Map a capability name to its persisted scope field, or None if unknown."""
    try:
        return Capability(capability).mode_field
    except ValueError:
        return None


Decision = Literal["allow", "deny", "ask"]


@dataclass
class ScopeModes:
    """The four capability modes carried by a scope or by the defaults."""

    content_scan_mode: PermissionMode = PermissionMode.ASK
    modification_mode: PermissionMode = PermissionMode.ASK
    ocr_mode: PermissionMode = PermissionMode.ASK
    indexing_mode: PermissionMode = PermissionMode.ALLOW

    def __post_init__(self) -> None:
        for name in MODE_FIELDS:
            setattr(self, name, PermissionMode.parse(getattr(self, name)))

    def get(self, capability: Capability) -> PermissionMode:
        return getattr(self, capability.mode_field)

    def with_allow(self, mode_field: str) -> "ScopeModes":
        """Return a copy with ``mode_field`` widened to allow."""
        values = self.to_dict()
        values[mode_field] = PermissionMode.ALLOW
        return ScopeModes(**values)

    def to_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name).value for name in MODE_FIELDS}


@dataclass
class PermissionScope:
    """
    Persisted override of the four capability modes for a directory subtree.

    Attributes:
        id: Store-assigned identifier
        directory_path: Normalized root of the subtree
        content_scan_mode / modification_mode / ocr_mode / indexing_mode: Modes
        created_at: ISO 8601 UTC creation time
    """

    id: int
    directory_path: str
    content_scan_mode: PermissionMode
    modification_mode: PermissionMode
    ocr_mode: PermissionMode
    indexing_mode: PermissionMode
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def __post_init__(self) -> None:
        self.id = int(self.id)
        for name in MODE_FIELDS:
            setattr(self, name, PermissionMode.parse(getattr(self, name)))

    @property
    def modes(self) -> ScopeModes:
        return ScopeModes(**{name: getattr(self, name) for name in MODE_FIELDS})

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update(self.modes.to_dict())
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionScope":
        return cls(
            id=data["id"],
            directory_path=data["directory_path"],
            content_scan_mode=data["content_scan_mode"],
            modification_mode=data["modification_mode"],
            ocr_mode=data["ocr_mode"],
            indexing_mode=data["indexing_mode"],
            created_at=data.get("created_at") or datetime.now(timezone.utc).isoformat(),
        )


@dataclass
class PermissionDefaults:
    """Global fallback modes used when no scope matches a path."""

    content_scan_default: PermissionMode = PermissionMode.ASK
    modification_default: PermissionMode = PermissionMode.ASK
    ocr_default: PermissionMode = PermissionMode.ASK
    indexing_default: PermissionMode = PermissionMode.ALLOW

    def __post_init__(self) -> None:
        for capability in Capability:
            name = capability.default_field
            setattr(self, name, PermissionMode.parse(getattr(self, name)))

    def get(self, capability: Capability) -> PermissionMode:
        return getattr(self, capability.default_field)

    def as_scope_modes(self) -> ScopeModes:
        return ScopeModes(
            **{capability.mode_field: self.get(capability) for capability in Capability}
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            capability.default_field: self.get(capability).value
            for capability in Capability
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionDefaults":
        known = {capability.default_field for capability in Capability}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass(frozen=True)
class BlockedItem:
    """One capability/path requirement that kept a check from being ``allow``."""

    path: str
    capability: str
    mode: str
    scope_path: Optional[str] = None

    def grant_key(self) -> str:
        """Identity used to pair blocked items with their grant targets."""
        return grant_key(self.path, self.scope_path)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockedItem":
        return cls(
            path=data["path"],
            capability=data["capability"],
            mode=data.get("mode", PermissionMode.ASK.value),
            scope_path=data.get("scope_path"),
        )


def grant_key(path: str, scope_path: Optional[str]) -> str:
    return f"{normalize_path(path)}|{normalize_path(scope_path) if scope_path else ''}"


@dataclass(frozen=True)
class GrantTargetRequest:
    """A ``(path, scope_path)`` pair submitted for grant-target resolution."""

    path: str
    scope_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GrantTarget:
    """
    Candidate directories for persisting an "always allow" grant.

    ``ambiguous`` is True when the folder and exact-path choices differ and the
    user should be offered both.
    """

    path: str
    scope_path: Optional[str]
    folder_target: str
    exact_target: str
    ambiguous: bool = False

    def grant_key(self) -> str:
        return grant_key(self.path, self.scope_path)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GrantTarget":
        return cls(
            path=data["path"],
            scope_path=data.get("scope_path"),
            folder_target=data["folder_target"],
            exact_target=data["exact_target"],
            ambiguous=bool(data.get("ambiguous", False)),
        )


@dataclass
class PermissionCheckResult:
    """Verdict of the decision engine for an action over a set of paths."""

    decision: Decision
    blocked: List[BlockedItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision,
            "blocked": [item.to_dict() for item in self.blocked],
        }


@dataclass
class ScopeNormalizationReport:
    """Counters returned by a scope normalization pass."""

    scanned: int = 0
    normalized: int = 0
    merged: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)
