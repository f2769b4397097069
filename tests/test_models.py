"""Tests for data models and error formatting."""

import pytest

from scope_gate.errors import (
    InvalidPermissionMode,
    PermissionDenied,
    PermissionDeniedByUser,
    format_blocked_list,
)
from scope_gate.models import (
    BlockedItem,
    Capability,
    GrantTarget,
    PermissionDefaults,
    PermissionMode,
    PermissionScope,
    ScopeModes,
    capability_to_field,
)

pytestmark = pytest.mark.unit


def test_mode_parse_and_rank():
    assert PermissionMode.parse(" ALLOW ") is PermissionMode.ALLOW
    assert PermissionMode.DENY.rank < PermissionMode.ASK.rank < PermissionMode.ALLOW.rank
    with pytest.raises(InvalidPermissionMode):
        PermissionMode.parse("sometimes")


def test_invalid_mode_is_a_value_error():
    with pytest.raises(ValueError):
        ScopeModes(content_scan_mode="maybe")


def test_capability_fields():
    assert capability_to_field("content_scan") == "content_scan_mode"
    assert capability_to_field("indexing") == "indexing_mode"
    assert capability_to_field("network") is None
    assert Capability.OCR.default_field == "ocr_default"


def test_scope_modes_with_allow_only_widens_one_field():
    modes = ScopeModes(content_scan_mode="deny", modification_mode="deny", ocr_mode="deny", indexing_mode="deny")

    widened = modes.with_allow("ocr_mode")

    assert widened.ocr_mode is PermissionMode.ALLOW
    assert widened.content_scan_mode is PermissionMode.DENY
    assert modes.ocr_mode is PermissionMode.DENY


def test_scope_from_redis_style_strings():
    scope = PermissionScope.from_dict(
        {
            "id": "4",
            "directory_path": "/a",
            "content_scan_mode": "allow",
            "modification_mode": "ask",
            "ocr_mode": "deny",
            "indexing_mode": "allow",
            "created_at": "2024-01-01T00:00:00+00:00",
        }
    )

    assert scope.id == 4
    assert scope.modes.get(Capability.OCR) is PermissionMode.DENY
    assert scope.to_dict()["ocr_mode"] == "deny"


def test_defaults_ignore_unknown_keys():
    defaults = PermissionDefaults.from_dict({"ocr_default": "allow", "theme": "dark"})

    assert defaults.get(Capability.OCR) is PermissionMode.ALLOW
    assert defaults.get(Capability.INDEXING) is PermissionMode.ALLOW
    assert defaults.as_scope_modes().content_scan_mode is PermissionMode.ASK


def test_grant_key_pairs_blocked_items_and_targets():
    item = BlockedItem(path="/a/b.txt/", capability="ocr", mode="ask", scope_path="\\a")
    target = GrantTarget(path="/a/b.txt", scope_path="/a/", folder_target="/a", exact_target="/a/b.txt")

    assert item.grant_key() == target.grant_key() == "/a/b.txt|/a"


def test_format_blocked_list():
    assert format_blocked_list([]) == ""
    items = [BlockedItem(path=f"/p{i}", capability="ocr", mode="ask") for i in range(5)]

    lines = format_blocked_list(items, limit=4).splitlines()

    assert lines == ["- ocr: /p0", "- ocr: /p1", "- ocr: /p2", "- ocr: /p3", "- +1 more"]


def test_permission_denied_messages():
    assert str(PermissionDenied([])) == "Permission denied."
    by_user = PermissionDeniedByUser()
    assert str(by_user) == "Permission denied by user"
    assert by_user.blocked == []
    assert isinstance(by_user, PermissionDenied)
