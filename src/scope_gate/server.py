"""FastMCP server exposing the permission gate and prompt queue to a presentation client."""

import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from loguru import logger

from .audit import get_audit_logger
from .backend.local import create_local_backend
from .config import Config
from .errors import BackendUnavailable, InvalidPermissionMode, PermissionGateError, UnknownAction
from .gate import configure_permission_client, get_permission_client, reset_permission_client
from .models import GrantTargetRequest, PermissionDefaults, ScopeModes
from .prompts.queue import PromptDecision, PromptQueue, get_prompt_queue, set_prompt_queue
from .redis_client import check_redis_health, close_redis_client

# Constants
SERVER_NAME = "ScopeGate"
HOST = Config.HOST
PORT = Config.PORT


# ============================================================================
# LIFECYCLE
# ============================================================================


@asynccontextmanager
async def lifespan(app):
    """
    Server lifecycle manager (startup/shutdown).

    Startup:
    1. Configuration validation
    2. Scope store + backend creation (Redis health check when configured)
    3. Shared prompt queue and permission client

    Shutdown:
    - Every pending prompt is denied so no caller waits forever
    - Backend and Redis connections are closed
    """
    logger.info(f"Starting {SERVER_NAME} server...")
    Config.validate()

    if Config.SCOPE_STORE == "redis":
        healthy, message = await check_redis_health()
        if healthy:
            logger.info(message)
        else:
            logger.warning(f"{message}. Permission checks will fail until Redis is reachable.")

    audit = get_audit_logger()
    backend = create_local_backend()
    queue = PromptQueue(audit=audit)
    set_prompt_queue(queue)
    configure_permission_client(backend, queue=queue, audit=audit)

    logger.info(f"{SERVER_NAME} startup complete")
    logger.info(f"Listening on {HOST}:{PORT}")
    logger.info(f"Scope store: {Config.SCOPE_STORE}")
    logger.info(f"Audit logging: {audit.log_path}")

    try:
        yield
    finally:
        logger.info(f"{SERVER_NAME} shutting down...")
        cancelled = queue.cancel_all()
        if cancelled:
            logger.info(f"Denied {cancelled} pending prompt(s) on shutdown")
        await backend.close()
        await close_redis_client()
        reset_permission_client()
        set_prompt_queue(None)


mcp = FastMCP(name=SERVER_NAME, lifespan=lifespan)


def _parse_modes(
    content_scan_mode: str, modification_mode: str, ocr_mode: str, indexing_mode: str
) -> ScopeModes:
    try:
        return ScopeModes(
            content_scan_mode=content_scan_mode,
            modification_mode=modification_mode,
            ocr_mode=ocr_mode,
            indexing_mode=indexing_mode,
        )
    except InvalidPermissionMode as e:
        raise ToolError(str(e))


# ============================================================================
# GATE TOOLS
# ============================================================================


@mcp.tool()
async def preflight_permission(action: str, paths: List[str], prompt_title: str) -> bool:
    """
    Gate an action over a set of paths before running it.

    Blocks while the user answers a prompt, if one is needed.

    Args:
        action: Action identifier (e.g. "move_files")
        paths: Paths the action will touch
        prompt_title: Header shown to the user if asked

    Returns:
        True when the action was explicitly allowed (pass as allow_once)

    Raises:
        ToolError: If the action is denied or the check fails
    """
    try:
        return await get_permission_client().preflight_permission(action, paths, prompt_title)
    except (PermissionGateError, UnknownAction, InvalidPermissionMode) as e:
        raise ToolError(str(e))


@mcp.tool()
async def retry_permission_after_failure(
    action: str, paths: List[str], prompt_title: str
) -> bool:
    """
    Offer one allow-once retry after an approved action failed.

    Returns:
        True only if the user chose allow once
    """
    return await get_permission_client().retry_permission_after_failure(
        action, paths, prompt_title
    )


# ============================================================================
# PROMPT QUEUE TOOLS (presentation client)
# ============================================================================


@mcp.tool()
def list_pending_prompts() -> List[Dict[str, Any]]:
    """List queued prompts in presentation order; only the first is shown."""
    return [request.to_dict() for request in get_prompt_queue().pending]


@mcp.tool()
def resolve_current_prompt(decision: str) -> Optional[Dict[str, Any]]:
    """
    Answer the prompt currently shown to the user.

    Args:
        decision: deny, allow_once, always_allow_folder or always_allow_exact

    Returns:
        The resolved prompt, or None if nothing was pending
    """
    try:
        parsed = PromptDecision(decision)
    except ValueError:
        valid = ", ".join(d.value for d in PromptDecision)
        raise ToolError(f"Invalid decision '{decision}'. Valid decisions: {valid}")
    resolved = get_prompt_queue().resolve_current(parsed)
    return resolved.to_dict() if resolved is not None else None


@mcp.tool()
def cancel_all_prompts() -> int:
    """Deny every pending prompt (e.g. when the presentation surface is hidden)."""
    return get_prompt_queue().cancel_all()


# ============================================================================
# SCOPE STORE TOOLS
# ============================================================================


async def _backend_call(operation: str, coro):
    try:
        return await coro
    except (BackendUnavailable, ValueError) as e:
        logger.error(f"{operation} failed: {e}")
        raise ToolError(f"{operation} failed: {e}")


@mcp.tool()
async def get_permission_scopes() -> List[Dict[str, Any]]:
    """Return every persisted permission scope."""
    backend = get_permission_client().backend
    scopes = await _backend_call("get_permission_scopes", backend.get_scopes())
    return [scope.to_dict() for scope in scopes]


@mcp.tool()
async def get_permission_defaults() -> Dict[str, str]:
    """Return the global fallback modes."""
    backend = get_permission_client().backend
    defaults = await _backend_call("get_permission_defaults", backend.get_defaults())
    return defaults.to_dict()


@mcp.tool()
async def set_permission_defaults(
    content_scan_default: str,
    modification_default: str,
    ocr_default: str,
    indexing_default: str,
) -> Dict[str, str]:
    """Replace the global fallback modes (each deny, ask or allow)."""
    try:
        defaults = PermissionDefaults(
            content_scan_default=content_scan_default,
            modification_default=modification_default,
            ocr_default=ocr_default,
            indexing_default=indexing_default,
        )
    except InvalidPermissionMode as e:
        raise ToolError(str(e))
    backend = get_permission_client().backend
    await _backend_call("set_permission_defaults", backend.set_defaults(defaults))
    return defaults.to_dict()


@mcp.tool()
async def upsert_permission_scope(
    directory_path: str,
    content_scan_mode: str,
    modification_mode: str,
    ocr_mode: str,
    indexing_mode: str,
) -> int:
    """Create or overwrite the scope rooted at directory_path; returns its id."""
    modes = _parse_modes(content_scan_mode, modification_mode, ocr_mode, indexing_mode)
    backend = get_permission_client().backend
    return await _backend_call(
        "upsert_permission_scope", backend.upsert_scope(directory_path, modes)
    )


@mcp.tool()
async def delete_permission_scope(scope_id: int) -> int:
    """Delete a scope by id; returns the number of rows removed."""
    backend = get_permission_client().backend
    return await _backend_call("delete_permission_scope", backend.delete_scope(scope_id))


@mcp.tool()
async def normalize_permission_scopes() -> Dict[str, int]:
    """Merge duplicate and redundant scopes; returns scanned/normalized/merged/skipped."""
    backend = get_permission_client().backend
    report = await _backend_call("normalize_permission_scopes", backend.normalize_scopes())
    return report.to_dict()


@mcp.tool()
async def resolve_permission_grant_targets(
    items: List[Dict[str, Optional[str]]],
) -> List[Dict[str, Any]]:
    """
    Resolve folder and exact-path grant targets.

    Args:
        items: Objects with "path" and optional "scope_path"
    """
    requests = []
    for item in items:
        path = item.get("path")
        if not path:
            raise ToolError("Each item needs a non-empty 'path'")
        requests.append(GrantTargetRequest(path=path, scope_path=item.get("scope_path")))
    backend = get_permission_client().backend
    targets = await _backend_call(
        "resolve_permission_grant_targets", backend.resolve_grant_targets(requests)
    )
    return [target.to_dict() for target in targets]


def main():
    """
    Main entry point for the ScopeGate server.

    Configures:
    - Loguru for structured logging
    - HTTP/SSE transport
    """
    logger.remove()  # Remove default handler

    # Add console handler with structured format
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> | <level>{message}</level>",
        level=Config.LOG_LEVEL,
    )

    # Add file handler for server logs
    logger.add(
        "scope_gate.log",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        level="DEBUG",
    )

    logger.info(f"Starting {SERVER_NAME}...")

    try:
        mcp.run(transport="sse", host=HOST, port=PORT)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
