"""Permission prompt queue."""

from .queue import (
    PromptDecision,
    PromptInput,
    PromptKind,
    PromptQueue,
    PromptRequest,
    get_prompt_queue,
    prompt_key,
    request_permission_prompt,
    reset_prompt_queue,
    set_prompt_queue,
)

__all__ = [
    "PromptDecision",
    "PromptInput",
    "PromptKind",
    "PromptQueue",
    "PromptRequest",
    "get_prompt_queue",
    "prompt_key",
    "request_permission_prompt",
    "reset_prompt_queue",
    "set_prompt_queue",
]
