"""Default configuration values."""

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    # LLM
    "provider": "claude",
    "model": "claude-sonnet-4-20250514",
    "max_tokens": 16384,
    "temperature": None,
    "top_p": None,
    "request_timeout": 600.0,

    # Agent loop
    "max_steps": 20,
    "call_timeout": None,  # seconds per model call attempt, None = no deadline
    "max_output_length": 10_000,
    "max_tool_concurrency": 1,

    # Retry
    "retry_max_attempts": 3,
    "retry_base_delay": 1.0,
    "retry_max_delay": 30.0,
    "retryable_errors": ["network", "timeout", "rate_limit", "server"],

    # Permissions
    "permissions_enabled": True,
    "permission_rules": [],  # PermissionRule.from_dict format

    "debug": False,
}
