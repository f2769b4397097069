"""Structured JSON audit trail for permission decisions."""

import json
import os
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

# Constants
AUDIT_RETENTION_DAYS = int(os.getenv("AUDIT_RETENTION_DAYS", "30"))
AUDIT_ROTATION_BYTES = int(os.getenv("AUDIT_ROTATION_BYTES", str(10 * 1024 * 1024)))
MAX_CONTENT_LENGTH = 1000  # Truncate large content to prevent log bloat


class AuditEvent(str, Enum):
    """Audit event types for permission decisions."""

    PERMISSION_CHECKED = "permission_checked"
    PERMISSION_DENIED = "permission_denied"
    PROMPT_REQUESTED = "prompt_requested"
    PROMPT_RESOLVED = "prompt_resolved"
    PROMPT_TIMEOUT = "prompt_timeout"
    PROMPTS_CANCELLED = "prompts_cancelled"
    GRANT_PERSISTED = "grant_persisted"
    GRANT_PERSIST_FAILED = "grant_persist_failed"


class AuditLogger:
    """
    Structured JSON audit logger for permission decisions.

    Features:
    - JSON Lines format (one JSON object per line)
    - ISO 8601 UTC timestamps
    - Automatic content truncation
    - Append-only file mode
    - Size-based rotation with timestamped backups
    - Retention cleanup based on AUDIT_RETENTION_DAYS
    """

    def __init__(self, log_path: Optional[str] = None):
        """
        Initialize audit logger with JSON Lines configuration.

        Args:
            log_path: Path to audit log file (defaults to AUDIT_LOG_PATH env var)
        """
        if log_path is None:
            log_path = os.getenv("AUDIT_LOG_PATH", "./permission_audit.jsonl")
        self.log_path = Path(log_path)
        self.retention_days = AUDIT_RETENTION_DAYS
        self.rotation_bytes = AUDIT_ROTATION_BYTES
        self._last_cleanup: Optional[datetime] = None
        # Ensure parent directory exists
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._cleanup_old_logs()

    def _rotate_if_needed(self) -> None:
        """Rotate the audit log if it exceeds the configured size."""
        if not self.log_path.exists():
            return
        if self.log_path.stat().st_size < self.rotation_bytes:
            return

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        rotated_path = self.log_path.with_name(f"{self.log_path.name}.{timestamp}")
        counter = 1
        while rotated_path.exists():
            rotated_path = self.log_path.with_name(
                f"{self.log_path.name}.{timestamp}.{counter}"
            )
            counter += 1
        self.log_path.replace(rotated_path)

    def _cleanup_old_logs(self) -> None:
        """Remove audit log files older than the retention window."""
        if self.retention_days <= 0:
            return
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)
        for path in self.log_path.parent.glob(f"{self.log_path.name}*"):
            if not path.is_file():
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
            if modified < cutoff:
                path.unlink()
        self._last_cleanup = datetime.now(timezone.utc)

    def _maybe_cleanup(self) -> None:
        """Run cleanup once per day to enforce retention."""
        if self.retention_days <= 0:
            return
        now = datetime.now(timezone.utc)
        if self._last_cleanup is None or now - self._last_cleanup >= timedelta(days=1):
            self._cleanup_old_logs()

    @staticmethod
    def _truncate_content(value: Any, max_length: int = MAX_CONTENT_LENGTH) -> Any:
        """Truncate large string values (recursively) to prevent log bloat."""
        if isinstance(value, str) and len(value) > max_length:
            return value[:max_length] + f"... [truncated, {len(value)} total chars]"
        elif isinstance(value, dict):
            return {k: AuditLogger._truncate_content(v, max_length) for k, v in value.items()}
        elif isinstance(value, list):
            return [AuditLogger._truncate_content(item, max_length) for item in value]
        return value

    def log(self, event: AuditEvent, **kwargs):
        """
        Write structured audit log entry in JSON Lines format.

        Args:
            event: Audit event type
            **kwargs: Additional fields to include in the audit record
        """
        audit_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event.value,
            **self._truncate_content(kwargs),
        }

        json_line = json.dumps(audit_record, ensure_ascii=False)

        self._maybe_cleanup()
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json_line + "\n")

    def log_check(self, action: str, paths: List[str], decision: str, blocked: int):
        """Log the decision engine verdict for a preflight."""
        self.log(
            AuditEvent.PERMISSION_CHECKED,
            action=action,
            paths=paths,
            decision=decision,
            blocked=blocked,
        )

    def log_denied(self, action: str, paths: List[str], reason: str):
        """
        Log a denied action.

        Args:
            action: Action identifier
            paths: Normalized target paths
            reason: "backend" for engine denials, "user" for declined prompts
        """
        self.log(AuditEvent.PERMISSION_DENIED, action=action, paths=paths, reason=reason)

    def log_prompt(
        self,
        event: AuditEvent,
        prompt_id: int,
        action: str,
        decision: Optional[str] = None,
        **extra: Any,
    ):
        """Log a prompt queue transition (requested, resolved, timed out)."""
        log_data: Dict[str, Any] = {"prompt_id": prompt_id, "action": action}
        if decision is not None:
            log_data["decision"] = decision
        log_data.update(extra)
        self.log(event, **log_data)

    def log_grant(
        self,
        targets: Dict[str, Dict[str, str]],
        scope_choice: str,
        error: Optional[str] = None,
    ):
        """Log a persisted (or failed) "always allow" grant."""
        if error is None:
            self.log(AuditEvent.GRANT_PERSISTED, targets=targets, scope_choice=scope_choice)
        else:
            self.log(
                AuditEvent.GRANT_PERSIST_FAILED,
                targets=targets,
                scope_choice=scope_choice,
                error=error,
            )


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get or create the process-wide audit logger."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
