"""Pytest fixtures and test utilities for the ScopeGate test suite."""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis import asyncio as aioredis

from scope_gate.backend.base import PermissionBackend
from scope_gate.backend.local import LocalPermissionBackend
from scope_gate.backend.policy import ActionRegistry
from scope_gate.backend.store import InMemoryScopeStore
from scope_gate.config import Config
from scope_gate.gate import PermissionDecisionClient, reset_permission_client
from scope_gate.models import (
    BlockedItem,
    PermissionCheckResult,
    PermissionDefaults,
    ScopeNormalizationReport,
)
from scope_gate.prompts.queue import PromptQueue, set_prompt_queue


# ============================================================================
# REDIS FIXTURES
# ============================================================================


@pytest.fixture
async def redis_client():
    """
    Provide clean Redis connection with flush before and after test.

    Yields:
        Redis client instance with clean database
    """
    client = aioredis.from_url(
        "redis://localhost:6379",
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )

    try:
        await client.flushdb()
        yield client
    finally:
        await client.flushdb()
        await client.aclose()


# ============================================================================
# SHARED STATE ISOLATION
# ============================================================================


@pytest.fixture(autouse=True)
def _isolate_shared_instances():
    """Drop the process-wide queue and client between tests."""
    set_prompt_queue(None)
    reset_permission_client()
    yield
    set_prompt_queue(None)
    reset_permission_client()


# ============================================================================
# QUEUE / GATE FIXTURES
# ============================================================================


@pytest.fixture
async def prompt_queue():
    """
    Provide an isolated prompt queue with a long timeout.

    Cleanup:
        Denies anything still pending so no timer outlives the test loop
    """
    queue = PromptQueue(timeout_ms=60_000)
    yield queue
    queue.cancel_all()


@pytest.fixture
def mock_backend():
    """
    Mock PermissionBackend.

    Returns:
        MagicMock whose collaborator methods are AsyncMocks; the decision
        engine answers "allow" until a test overrides it
    """
    backend = MagicMock(spec=PermissionBackend)
    backend.check_permission_request = AsyncMock(
        return_value=PermissionCheckResult(decision="allow")
    )
    backend.resolve_grant_targets = AsyncMock(return_value=[])
    backend.get_scopes = AsyncMock(return_value=[])
    backend.get_defaults = AsyncMock(return_value=PermissionDefaults())
    backend.set_defaults = AsyncMock()
    backend.upsert_scope = AsyncMock(return_value=1)
    backend.delete_scope = AsyncMock(return_value=1)
    backend.normalize_scopes = AsyncMock(return_value=ScopeNormalizationReport())
    backend.close = AsyncMock()
    return backend


@pytest.fixture
def gate(mock_backend, prompt_queue):
    """Permission client wired to the mock backend and the isolated queue."""
    return PermissionDecisionClient(mock_backend, queue=prompt_queue)


@pytest.fixture
def action_registry():
    """Action registry loaded from the packaged YAML."""
    return ActionRegistry.from_yaml(Config.ACTIONS_YAML_PATH)


@pytest.fixture
def scope_store():
    return InMemoryScopeStore()


@pytest.fixture
def local_backend(scope_store, action_registry):
    """Reference backend over an empty in-memory store."""
    return LocalPermissionBackend(scope_store, action_registry)


# ============================================================================
# AUDIT LOG FIXTURES
# ============================================================================


@pytest.fixture
def audit_log_path(tmp_path):
    """
    Provide temporary audit log file for test isolation.

    Returns:
        Path to temporary audit.jsonl file
    """
    return tmp_path / "audit.jsonl"


# ============================================================================
# HELPER UTILITIES
# ============================================================================


def ask_item(path: str, capability: str = "content_scan", scope_path=None) -> BlockedItem:
    """Blocked item in "ask" mode."""
    return BlockedItem(path=path, capability=capability, mode="ask", scope_path=scope_path)


async def wait_for_prompt(queue: PromptQueue, count: int = 1) -> None:
    """
    Yield to the event loop until ``count`` prompts are queued.

    Raises:
        AssertionError: If the prompts never show up
    """
    for _ in range(200):
        if len(queue) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} queued prompt(s), found {len(queue)}")


def read_audit_log(log_path: Path) -> List[Dict[str, Any]]:
    """
    Read and parse audit log file.

    Args:
        log_path: Path to audit.jsonl file

    Returns:
        List of audit log entries (parsed JSON objects)
    """
    if not log_path.exists():
        return []
    entries = []
    with open(log_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                entries.append(json.loads(line))
    return entries
