"""Path canonicalization and scope matching helpers.

Every path that reaches a permission check, a dedup key or a persisted scope
goes through ``normalize_path`` first, so string equality is path equality
everywhere else in the package.
"""

import os
import re
from typing import Iterable, List, Optional

PROTECTED_ROOTS = (
    "/Applications",
    "/bin",
    "/sbin",
    "/usr",
    "/System",
    "/Library",
    "/etc",
    "C:\\Windows",
    "C:\\Program Files",
    "C:\\Program Files (x86)",
)

_DRIVE_PATH = re.compile(r"^[A-Za-z]:")
_FILE_EXTENSION = re.compile(r"^[A-Za-z0-9]{1,12}$")


def normalize_path(path: Optional[str]) -> str:
    """
    Canonicalize a path for comparison and storage.

    Trims surrounding whitespace, converts backslashes to forward slashes and
    strips trailing slashes, keeping a bare root ("/") intact.

    Args:
        path: Raw path string (None is treated as empty)

    Returns:
        Normalized path, or "" for empty input
    """
    if not path:
        return ""
    normalized = path.strip().replace("\\", "/")
    while len(normalized) > 1 and normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized


def normalize_paths(paths: Iterable[Optional[str]]) -> List[str]:
    """Normalize a list of paths, dropping empties and duplicates (first occurrence wins)."""
    seen = set()
    result = []
    for path in paths:
        normalized = normalize_path(path)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result


def _is_drive_path(path: str) -> bool:
    return bool(_DRIVE_PATH.match(path))


def is_within_scope(path: str, root: str) -> bool:
    """
    Check whether ``path`` equals ``root`` or lives beneath it.

    Drive-letter paths compare case-insensitively. Sibling prefixes do not
    match ("/foo/barbaz" is not within "/foo/bar").
    """
    path = normalize_path(path)
    root = normalize_path(root)
    if not path or not root:
        return False
    if path == root:
        return True
    if root == "/":
        return path.startswith("/")
    if _is_drive_path(root):
        return path.lower().startswith(root.lower() + "/") or path.lower() == root.lower()
    return path.startswith(root + "/")


def is_protected_path(path: str) -> bool:
    """Return True for system locations that are never grantable."""
    return any(is_within_scope(path, root) for root in PROTECTED_ROOTS)


def parent_path(path: str) -> Optional[str]:
    """Return the parent of a normalized path, or None for the root."""
    if path == "/" or "/" not in path:
        return None
    index = path.rfind("/")
    if index == 0:
        return "/"
    return path[:index]


def looks_like_file_path(path: str) -> bool:
    """
    Heuristic for paths that name a file rather than a folder.

    True for ``name.ext`` where ext is 1-12 ASCII alphanumerics. Dotfiles,
    "." / "..", and names ending in a dot do not qualify.
    """
    name = path.rsplit("/", 1)[-1]
    if not name or name in {".", ".."} or name.startswith(".") or name.endswith("."):
        return False
    if "." not in name:
        return False
    extension = name.rsplit(".", 1)[1]
    return bool(_FILE_EXTENSION.match(extension))


def infer_folder_target(path: str) -> str:
    """
    Pick the folder an "always allow" grant for ``path`` should cover.

    Existing directories map to themselves and existing files to their parent.
    Paths that do not exist locally fall back to the file-name heuristic.
    """
    normalized = normalize_path(path)
    if not normalized:
        return normalized

    if os.path.isdir(path):
        return normalized
    if os.path.isfile(path):
        return parent_path(normalized) or normalized

    if looks_like_file_path(normalized):
        return parent_path(normalized) or normalized
    return normalized
