"""Centralized configuration for ScopeGate."""

import os
from pathlib import Path


class Config:
    """
    ScopeGate configuration with environment variable overrides.

    All configuration values are centralized here with sensible defaults.
    Values can be overridden via environment variables.
    """

    @staticmethod
    def _parse_port(port_str: str) -> int:
        """Parse and validate port number from string."""
        try:
            port = int(port_str)
            if not (1 <= port <= 65535):
                raise ValueError(f"Port must be 1-65535, got {port}")
            return port
        except ValueError as e:
            raise ValueError(f"Invalid PORT environment variable: {e}")

    # ========================================================================
    # Server Configuration
    # ========================================================================
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = _parse_port.__func__(os.getenv("PORT", "8011"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    AUDIT_LOG_PATH: str = os.getenv("AUDIT_LOG_PATH", "./permission_audit.jsonl")

    # ========================================================================
    # Prompt Queue Configuration
    # ========================================================================
    PERMISSION_PROMPT_TIMEOUT_MS: int = int(
        os.getenv("PERMISSION_PROMPT_TIMEOUT_MS", "120000")
    )  # 2 minutes
    MAX_PROMPT_QUEUE: int = int(os.getenv("MAX_PROMPT_QUEUE", "32"))
    BLOCKED_SUMMARY_LIMIT: int = int(os.getenv("BLOCKED_SUMMARY_LIMIT", "4"))

    # ========================================================================
    # Scope Store Configuration
    # ========================================================================
    SCOPE_STORE: str = os.getenv("SCOPE_STORE", "memory")
    SCOPE_KEY_PREFIX: str = os.getenv("SCOPE_KEY_PREFIX", "permission")
    ACTIONS_YAML_PATH: str = os.getenv("ACTIONS_YAML_PATH") or str(
        Path(__file__).parent / "data" / "actions.yaml"
    )

    # ========================================================================
    # Redis Configuration
    # ========================================================================
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    REDIS_MAX_CONNECTIONS: int = int(os.getenv("REDIS_MAX_CONNECTIONS", "20"))
    REDIS_SOCKET_CONNECT_TIMEOUT: float = float(
        os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "2")
    )
    REDIS_SOCKET_TIMEOUT: float = float(os.getenv("REDIS_SOCKET_TIMEOUT", "2"))
    REDIS_CONNECT_RETRIES: int = int(os.getenv("REDIS_CONNECT_RETRIES", "3"))
    REDIS_CONNECT_RETRY_DELAY: float = float(
        os.getenv("REDIS_CONNECT_RETRY_DELAY", "0.2")
    )
    REDIS_CONNECT_RETRY_MAX_DELAY: float = float(
        os.getenv("REDIS_CONNECT_RETRY_MAX_DELAY", "2")
    )

    @classmethod
    def validate(cls) -> bool:
        """
        Validate configuration consistency.

        Checks:
        - Prompt timeout, queue size and summary limit are > 0
        - SCOPE_STORE names a known store
        - Redis settings are positive

        Returns:
            True if validation passes

        Raises:
            ValueError: If validation fails
        """
        errors = []

        if cls.PERMISSION_PROMPT_TIMEOUT_MS <= 0:
            errors.append(
                f"PERMISSION_PROMPT_TIMEOUT_MS must be > 0, got {cls.PERMISSION_PROMPT_TIMEOUT_MS}"
            )
        if cls.MAX_PROMPT_QUEUE <= 0:
            errors.append(f"MAX_PROMPT_QUEUE must be > 0, got {cls.MAX_PROMPT_QUEUE}")
        if cls.BLOCKED_SUMMARY_LIMIT <= 0:
            errors.append(
                f"BLOCKED_SUMMARY_LIMIT must be > 0, got {cls.BLOCKED_SUMMARY_LIMIT}"
            )

        if cls.SCOPE_STORE not in {"memory", "redis"}:
            errors.append(
                f"SCOPE_STORE must be 'memory' or 'redis', got '{cls.SCOPE_STORE}'"
            )

        # Validate Redis settings
        if cls.REDIS_MAX_CONNECTIONS <= 0:
            errors.append(
                f"REDIS_MAX_CONNECTIONS must be > 0, got {cls.REDIS_MAX_CONNECTIONS}"
            )
        if cls.REDIS_SOCKET_CONNECT_TIMEOUT <= 0:
            errors.append(
                "REDIS_SOCKET_CONNECT_TIMEOUT must be > 0, "
                f"got {cls.REDIS_SOCKET_CONNECT_TIMEOUT}"
            )
        if cls.REDIS_SOCKET_TIMEOUT <= 0:
            errors.append(
                f"REDIS_SOCKET_TIMEOUT must be > 0, got {cls.REDIS_SOCKET_TIMEOUT}"
            )
        if cls.REDIS_CONNECT_RETRIES <= 0:
            errors.append(
                f"REDIS_CONNECT_RETRIES must be > 0, got {cls.REDIS_CONNECT_RETRIES}"
            )

        if errors:
            raise ValueError(f"Config validation failed: {'; '.join(errors)}")

        return True
