"""Process-wide queue of pending permission prompts.

Every "ask" outcome in the process funnels through one PromptQueue:

- Only the head entry is presented; order is FIFO.
- Identical concurrent requests share one entry and all of their callers
  observe the same decision.
- Each entry expires on its own timer, wherever it sits in the queue.
- Overflow, expiry and cancel_all() all resolve to DENY (fail-safe).
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from loguru import logger

from ..audit import AuditEvent, AuditLogger
from ..config import Config
from ..models import BlockedItem
from ..paths import normalize_path


class PromptDecision(str, Enum):
    """User decision for a permission prompt."""

    DENY = "deny"
    ALLOW_ONCE = "allow_once"
    ALWAYS_ALLOW_FOLDER = "always_allow_folder"
    ALWAYS_ALLOW_EXACT = "always_allow_exact"


class PromptKind(str, Enum):
    """Why the prompt is shown: first preflight, or after a failed approved call."""

    INITIAL = "initial"
    RETRY = "retry"


@dataclass(frozen=True)
class PromptInput:
    """
    Caller-supplied description of a prompt.

    Attributes:
        title: Human-readable prompt header
        action: Action identifier that triggered the prompt
        prompt_kind: INITIAL for preflight prompts, RETRY for the fallback flow
        blocked: Unmet requirements to show the user
        allow_always: Offer "Always allow this folder"
        allow_exact_path: Offer "Always allow this exact path"
    """

    title: str
    action: str
    prompt_kind: PromptKind = PromptKind.INITIAL
    blocked: Tuple[BlockedItem, ...] = ()
    allow_always: bool = False
    allow_exact_path: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "prompt_kind", PromptKind(self.prompt_kind))
        object.__setattr__(self, "blocked", tuple(self.blocked))


@dataclass
class PromptRequest:
    """A queued prompt. Mutated only by the owning PromptQueue."""

    id: int
    key: str
    title: str
    action: str
    prompt_kind: PromptKind
    blocked: List[BlockedItem]
    allow_always: bool
    allow_exact_path: bool
    created_at: float = field(default_factory=time.time)
    waiters: List["asyncio.Future[PromptDecision]"] = field(default_factory=list, repr=False)
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    def summary(self, limit: Optional[int] = None) -> Tuple[List[BlockedItem], int]:
        """Return the first ``limit`` blocked items and how many are hidden."""
        if limit is None:
            limit = Config.BLOCKED_SUMMARY_LIMIT
        shown = self.blocked[:limit]
        return list(shown), len(self.blocked) - len(shown)

    def options(self) -> List[PromptDecision]:
        """Decisions a presentation layer should offer for this prompt."""
        choices = [PromptDecision.DENY, PromptDecision.ALLOW_ONCE]
        if self.allow_always:
            choices.append(PromptDecision.ALWAYS_ALLOW_FOLDER)
        if self.allow_exact_path:
            choices.append(PromptDecision.ALWAYS_ALLOW_EXACT)
        return choices

    def to_dict(self, limit: Optional[int] = None) -> Dict[str, Any]:
        shown, hidden = self.summary(limit)
        return {
            "id": self.id,
            "title": self.title,
            "action": self.action,
            "prompt_kind": self.prompt_kind.value,
            "blocked": [item.to_dict() for item in shown],
            "more": hidden,
            "allow_always": self.allow_always,
            "allow_exact_path": self.allow_exact_path,
            "options": [option.value for option in self.options()],
            "created_at": self.created_at,
            "waiters": len(self.waiters),
        }


QueueListener = Callable[[Tuple[PromptRequest, ...]], None]


def _blocked_identity(item: BlockedItem) -> str:
    scope_path = normalize_path(item.scope_path) if item.scope_path else ""
    return f"{item.capability}:{normalize_path(item.path)}:{scope_path}"


def prompt_key(prompt: PromptInput) -> str:
    """
    Compute the dedup key for a prompt.

    Blocked items are fingerprinted on normalized paths and sorted, so the key
    does not depend on the order the decision engine returned them in.
    """
    fingerprint = "|".join(sorted(_blocked_identity(item) for item in prompt.blocked))
    return "::".join(
        [
            prompt.action,
            prompt.title,
            prompt.prompt_kind.value,
            "allow-always" if prompt.allow_always else "no-always",
            "allow-exact" if prompt.allow_exact_path else "no-exact",
            fingerprint,
        ]
    )


def _merge_blocked(
    existing: Sequence[BlockedItem], incoming: Sequence[BlockedItem]
) -> List[BlockedItem]:
    seen = set()
    merged = []
    for item in [*existing, *incoming]:
        identity = _blocked_identity(item)
        if identity in seen:
            continue
        seen.add(identity)
        merged.append(item)
    return merged


class PromptQueue:
    """
    Ordered queue of pending permission prompts.

    Presentation layers render ``current`` only and answer it with
    ``resolve_current``. They can ``subscribe`` to be told about every change.
    """

    def __init__(
        self,
        timeout_ms: Optional[int] = None,
        max_queue: Optional[int] = None,
        audit: Optional[AuditLogger] = None,
    ):
        """
        Initialize an empty queue.

        Args:
            timeout_ms: Per-entry expiry (defaults to Config.PERMISSION_PROMPT_TIMEOUT_MS)
            max_queue: Admission limit (defaults to Config.MAX_PROMPT_QUEUE)
            audit: Optional audit logger for prompt transitions
        """
        self.timeout_ms = (
            timeout_ms if timeout_ms is not None else Config.PERMISSION_PROMPT_TIMEOUT_MS
        )
        self.max_queue = max_queue if max_queue is not None else Config.MAX_PROMPT_QUEUE
        self._audit = audit
        self._queue: List[PromptRequest] = []
        self._index_by_key: Dict[str, int] = {}
        self._listeners: List[QueueListener] = []
        self._next_id = 1

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def pending(self) -> Tuple[PromptRequest, ...]:
        """Snapshot of the queue in presentation order."""
        return tuple(self._queue)

    @property
    def current(self) -> Optional[PromptRequest]:
        """The only entry that may be presented, or None when idle."""
        return self._queue[0] if self._queue else None

    def __len__(self) -> int:
        return len(self._queue)

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """
        Register a listener called with the queue snapshot after every change.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def request_prompt(self, prompt: PromptInput) -> "asyncio.Future[PromptDecision]":
        """
        Queue a prompt, or join an identical one already waiting.

        Admission and deduplication happen synchronously; the returned future
        is already resolved to DENY when the queue is full.

        Args:
            prompt: Prompt description

        Returns:
            Future resolved with the decision for this prompt
        """
        loop = asyncio.get_running_loop()
        waiter: "asyncio.Future[PromptDecision]" = loop.create_future()
        key = prompt_key(prompt)
        logger.debug(
            f"requestPrompt: action={prompt.action}, title={prompt.title!r}, "
            f"queue_len={len(self._queue)}"
        )

        existing_id = self._index_by_key.get(key)
        if existing_id is not None:
            existing = self._find(existing_id)
            if existing is not None:
                existing.allow_always = existing.allow_always or prompt.allow_always
                existing.allow_exact_path = existing.allow_exact_path or prompt.allow_exact_path
                existing.blocked = _merge_blocked(existing.blocked, prompt.blocked)
                existing.waiters.append(waiter)
                logger.debug(
                    f"Prompt {existing.id} deduplicated ({len(existing.waiters)} waiters)"
                )
                self._notify()
                return waiter

        if len(self._queue) >= self.max_queue:
            logger.warning(
                f"Prompt queue full ({self.max_queue}); denying action={prompt.action}"
            )
            waiter.set_result(PromptDecision.DENY)
            return waiter

        request = PromptRequest(
            id=self._next_id,
            key=key,
            title=prompt.title,
            action=prompt.action,
            prompt_kind=prompt.prompt_kind,
            blocked=list(prompt.blocked),
            allow_always=prompt.allow_always,
            allow_exact_path=prompt.allow_exact_path,
            waiters=[waiter],
        )
        self._next_id += 1
        request.timer = loop.call_later(self.timeout_ms / 1000.0, self._expire, request.id)

        self._queue.append(request)
        self._index_by_key[key] = request.id

        self._audit_event(
            AuditEvent.PROMPT_REQUESTED,
            prompt_id=request.id,
            action=request.action,
            prompt_kind=request.prompt_kind.value,
            blocked=len(request.blocked),
        )
        self._notify()
        return waiter

    def resolve_current(
        self, decision: Union[PromptDecision, str]
    ) -> Optional[PromptRequest]:
        """
        Resolve the head entry for every waiter and expose the next one.

        Args:
            decision: Decision chosen by the user

        Returns:
            The resolved entry, or None if the queue was empty
        """
        decision = PromptDecision(decision)
        current = self.current
        if current is None:
            logger.debug("resolveCurrent: no current request")
            return None

        logger.debug(f"resolveCurrent: decision={decision.value}, action={current.action}")
        self._remove(current.id)
        self._settle(current, decision)
        self._audit_event(
            AuditEvent.PROMPT_RESOLVED,
            prompt_id=current.id,
            action=current.action,
            decision=decision.value,
        )
        self._notify()
        return current

    def cancel_all(self) -> int:
        """
        Deny every queued entry, not only the head, and empty the queue.

        Used when the presentation surface goes away so no prompt stays open.

        Returns:
            Number of entries cancelled
        """
        cancelled = list(self._queue)
        self._queue.clear()
        self._index_by_key.clear()
        for request in cancelled:
            self._settle(request, PromptDecision.DENY)

        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} pending permission prompt(s)")
            self._audit_event(
                AuditEvent.PROMPTS_CANCELLED,
                prompt_ids=[request.id for request in cancelled],
            )
            self._notify()
        return len(cancelled)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find(self, request_id: int) -> Optional[PromptRequest]:
        for request in self._queue:
            if request.id == request_id:
                return request
        return None

    def _remove(self, request_id: int) -> Optional[PromptRequest]:
        request = self._find(request_id)
        if request is None:
            return None
        self._queue.remove(request)
        if self._index_by_key.get(request.key) == request_id:
            del self._index_by_key[request.key]
        return request

    @staticmethod
    def _settle(request: PromptRequest, decision: PromptDecision) -> None:
        if request.timer is not None:
            request.timer.cancel()
            request.timer = None
        for waiter in request.waiters:
            # A caller may have been cancelled while waiting.
            if not waiter.done():
                waiter.set_result(decision)

    def _expire(self, request_id: int) -> None:
        request = self._remove(request_id)
        if request is None:
            return
        logger.warning(
            f"Permission prompt {request.id} for action={request.action} timed out "
            f"after {self.timeout_ms}ms; denying"
        )
        self._settle(request, PromptDecision.DENY)
        self._audit_event(
            AuditEvent.PROMPT_TIMEOUT,
            prompt_id=request.id,
            action=request.action,
            decision=PromptDecision.DENY.value,
            timeout_ms=self.timeout_ms,
        )
        self._notify()

    def _audit_event(self, event: AuditEvent, **fields: Any) -> None:
        # Runs after the queue has changed; a failed write must not undo that.
        if self._audit is None:
            return
        try:
            if "prompt_id" in fields:
                self._audit.log_prompt(event, **fields)
            else:
                self._audit.log(event, **fields)
        except Exception as e:
            logger.error(f"Failed to audit {event.value}: {e}")

    def _notify(self) -> None:
        snapshot = self.pending
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Prompt queue listener failed: {e}")


# ============================================================================
# Process-wide instance
# ============================================================================

_prompt_queue: Optional[PromptQueue] = None


def get_prompt_queue() -> PromptQueue:
    """Get or create the shared prompt queue."""
    global _prompt_queue
    if _prompt_queue is None:
        _prompt_queue = PromptQueue()
    return _prompt_queue


def set_prompt_queue(queue: Optional[PromptQueue]) -> None:
    """Install a specific queue as the shared instance (server startup, tests)."""
    global _prompt_queue
    _prompt_queue = queue


def reset_prompt_queue() -> None:
    """Deny everything still pending and drop the shared instance."""
    global _prompt_queue
    if _prompt_queue is not None:
        _prompt_queue.cancel_all()
    _prompt_queue = None


def request_permission_prompt(prompt: PromptInput) -> "asyncio.Future[PromptDecision]":
    """Queue a prompt on the shared instance."""
    return get_prompt_queue().request_prompt(prompt)
