"""Post-commit hooks for estimate lifecycle events.

Hooks run after the transaction that produced the event has committed. Each
hook is isolated: a failing hook is logged and reported as a warning, and
never affects the transition or sibling hooks.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from tourquote.events.bus import SessionBus
from tourquote.notifications.email import EmailTransport
from tourquote.notifications.slack import SlackTransport

logger = structlog.get_logger(__name__)

# Hook returns False (or raises) to report a failed side effect
Hook = Callable[[dict[str, Any]], Awaitable[bool | None]]

ESTIMATE_GENERATED = "estimateGenerated"
ESTIMATE_SUBMITTED = "estimateSubmitted"
ESTIMATE_SENT = "estimateSent"
ESTIMATE_RESPONDED = "estimateResponded"
ESTIMATE_COMPLETED = "estimateCompleted"
ESTIMATE_UPDATED = "estimateUpdated"

ALL_EVENTS = (
    ESTIMATE_GENERATED,
    ESTIMATE_SUBMITTED,
    ESTIMATE_SENT,
    ESTIMATE_RESPONDED,
    ESTIMATE_COMPLETED,
    ESTIMATE_UPDATED,
)


class PostCommitHooks:
    """Explicit, ordered list of async hooks per lifecycle event."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[tuple[str, Hook]]] = defaultdict(list)

    def register(self, event: str, hook: Hook, name: str | None = None) -> None:
        self._hooks[event].append((name or getattr(hook, "__name__", "hook"), hook))

    def registered(self, event: str) -> list[str]:
        return [name for name, _ in self._hooks.get(event, [])]

    async def run(self, event: str, payload: dict[str, Any]) -> list[str]:
        """Invoke every hook for ``event`` in registration order.

        Returns:
            Warnings for hooks that failed or reported failure
        """
        warnings: list[str] = []
        for name, hook in self._hooks.get(event, []):
            try:
                ok = await hook(payload)
            except Exception as e:
                logger.warning("post_commit_hook_failed", hook=name, hook_event=event, error=str(e))
                warnings.append(f"{name} failed: {e}")
                continue
            if ok is False:
                logger.warning("post_commit_hook_reported_failure", hook=name, hook_event=event)
                warnings.append(f"{name} failed")
        return warnings


def bus_publisher(bus: SessionBus, event: str) -> Hook:
    """Hook that forwards the event to the estimate's session channel."""

    async def publish(payload: dict[str, Any]) -> bool | None:
        session_id = payload.get("session_id")
        if not session_id:
            return None
        await bus.publish(session_id, event, payload)
        return True

    publish.__name__ = f"bus:{event}"
    return publish


def build_default_hooks(
    bus: SessionBus | None = None,
    email: EmailTransport | None = None,
    slack: SlackTransport | None = None,
) -> PostCommitHooks:
    """Standard wiring: bus fan-out for every event, notifications on submission."""
    hooks = PostCommitHooks()
    if bus is not None:
        for event in ALL_EVENTS:
            hooks.register(event, bus_publisher(bus, event))
    if email is not None:
        hooks.register(ESTIMATE_SUBMITTED, email.send_expert_submission, "email:expert")
        hooks.register(ESTIMATE_SUBMITTED, email.send_customer_submission, "email:customer")
    if slack is not None:
        hooks.register(ESTIMATE_SUBMITTED, slack.send_expert_submission, "slack:expert")
    return hooks
