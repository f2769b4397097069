"""Tests for the reference decision engine, grant targets and scope normalization."""

import pytest

from scope_gate.backend.policy import (
    ActionRegistry,
    check_request,
    evaluate_with_scopes,
    order_scopes,
    plan_scope_normalization,
    resolve_grant_targets,
)
from scope_gate.errors import UnknownAction
from scope_gate.models import (
    Capability,
    GrantTargetRequest,
    PermissionDefaults,
    PermissionMode,
    PermissionScope,
    ScopeModes,
)

pytestmark = pytest.mark.unit


def _scope(scope_id, path, cs="ask", mod="ask", ocr="ask", idx="allow") -> PermissionScope:
    return PermissionScope(
        id=scope_id,
        directory_path=path,
        content_scan_mode=cs,
        modification_mode=mod,
        ocr_mode=ocr,
        indexing_mode=idx,
    )


# ============================================================================
# ACTION REGISTRY
# ============================================================================


def test_packaged_registry_maps_actions(action_registry):
    assert action_registry.capability_for("move_files") == Capability.MODIFICATION
    assert action_registry.capability_for("list_directory") == Capability.CONTENT_SCAN
    assert action_registry.capability_for("start_indexing") == Capability.INDEXING
    assert action_registry.capability_for("ocr_process") == Capability.OCR
    assert action_registry.is_registered("send_chat")


def test_unknown_action_raises(action_registry):
    with pytest.raises(UnknownAction, match="launch_rockets"):
        action_registry.capability_for("launch_rockets")


def test_from_yaml_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ActionRegistry.from_yaml(str(tmp_path / "missing.yaml"))


def test_from_yaml_rejects_bad_layout(tmp_path):
    bad = tmp_path / "actions.yaml"
    bad.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        ActionRegistry.from_yaml(str(bad))


def test_from_yaml_rejects_unknown_capability(tmp_path):
    bad = tmp_path / "actions.yaml"
    bad.write_text("capabilities:\n  teleport: [beam_up]\n")
    with pytest.raises(ValueError):
        ActionRegistry.from_yaml(str(bad))


def test_register_rejects_conflicting_mapping():
    registry = ActionRegistry()
    registry.register("copy_files", Capability.MODIFICATION)
    registry.register("copy_files", Capability.MODIFICATION)
    with pytest.raises(ValueError):
        registry.register("copy_files", Capability.CONTENT_SCAN)


# ============================================================================
# EVALUATION
# ============================================================================


def test_nested_scope_wins_over_parent_regardless_of_insertion_order():
    scopes = order_scopes([_scope(1, "/Users/test/docs", cs="allow"), _scope(2, "/Users/test", cs="deny")])
    reversed_scopes = order_scopes(list(reversed(scopes)))

    for ordered in (scopes, reversed_scopes):
        item = evaluate_with_scopes(
            ordered, "/Users/test/docs/a.txt", Capability.CONTENT_SCAN, PermissionMode.ASK
        )
        assert item.mode == "allow"
        assert item.scope_path == "/Users/test/docs"


def test_protected_path_denied_even_with_allow_scope():
    scopes = [_scope(1, "/usr", cs="allow", mod="allow", ocr="allow")]

    item = evaluate_with_scopes(scopes, "/usr/local/bin", Capability.INDEXING, PermissionMode.ALLOW)

    assert item.mode == "deny"
    assert item.scope_path is None


def test_indexing_is_always_allowed_outside_protected_paths():
    scopes = [_scope(1, "/Users/test", idx="deny")]

    result = check_request(Capability.INDEXING, ["/Users/test/photos"], scopes, PermissionDefaults())

    assert result.decision == "allow"
    assert result.blocked == []


def test_defaults_apply_when_no_scope_matches():
    defaults = PermissionDefaults(content_scan_default="allow")

    assert check_request(Capability.CONTENT_SCAN, ["/tmp/x"], [], defaults).decision == "allow"
    assert check_request(Capability.OCR, ["/tmp/x"], [], defaults).decision == "ask"


def test_any_deny_wins_then_ask():
    scopes = [_scope(1, "/a", mod="deny"), _scope(2, "/b", mod="ask"), _scope(3, "/c", mod="allow")]

    mixed = check_request(Capability.MODIFICATION, ["/a/1", "/b/1", "/c/1"], scopes, PermissionDefaults())
    ask_only = check_request(Capability.MODIFICATION, ["/b/1", "/c/1"], scopes, PermissionDefaults())

    assert mixed.decision == "deny"
    assert [(item.path, item.mode) for item in mixed.blocked] == [("/a/1", "deny"), ("/b/1", "ask")]
    assert ask_only.decision == "ask"
    assert [item.path for item in ask_only.blocked] == ["/b/1"]


# ============================================================================
# GRANT TARGETS
# ============================================================================


def test_grant_target_with_matched_scope_is_not_ambiguous():
    [target] = resolve_grant_targets(
        [GrantTargetRequest(path="/Users/test/docs/file.txt", scope_path="/Users/test/")]
    )

    assert target.folder_target == "/Users/test"
    assert target.exact_target == "/Users/test/docs/file.txt"
    assert target.ambiguous is False


def test_grant_target_for_file_like_path_is_ambiguous():
    [target] = resolve_grant_targets([GrantTargetRequest(path="/Users/test/docs/file.txt")])

    assert target.folder_target == "/Users/test/docs"
    assert target.exact_target == "/Users/test/docs/file.txt"
    assert target.ambiguous is True


def test_grant_target_for_folder_like_path():
    [target] = resolve_grant_targets([GrantTargetRequest(path="/nonexistent/projects/")])

    assert target.folder_target == target.exact_target == "/nonexistent/projects"
    assert target.ambiguous is False


# ============================================================================
# NORMALIZATION PLAN
# ============================================================================


def test_normalization_plan_merges_drops_and_counts():
    scopes = [
        _scope(1, "/Users/test/", cs="allow"),
        _scope(2, "/Users/test", mod="allow"),
        _scope(3, "/Users/test/docs", cs="allow", mod="allow"),
        _scope(4, ""),
        _scope(5, "/Users/test/pics", cs="deny"),
    ]

    plan = plan_scope_normalization(scopes)

    merged = ScopeModes(
        content_scan_mode="allow", modification_mode="allow", ocr_mode="ask", indexing_mode="allow"
    )
    assert plan.updates == {1: ("/Users/test", merged)}
    assert sorted(plan.deletes) == [2, 3, 4]
    assert plan.report.to_dict() == {"scanned": 5, "normalized": 1, "merged": 1, "skipped": 2}


def test_normalization_plan_keeps_clean_scopes_untouched():
    scopes = [_scope(1, "/a", cs="allow"), _scope(2, "/a/b", cs="deny")]

    plan = plan_scope_normalization(scopes)

    assert plan.updates == {}
    assert plan.deletes == []
    assert plan.report.to_dict() == {"scanned": 2, "normalized": 0, "merged": 0, "skipped": 0}
