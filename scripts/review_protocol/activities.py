"""Temporal activities and in-memory collaborators for persistence and notification.

Provides module-level PullRequestStore and NotificationEmitter singletons that
are injected before the Temporal worker starts, and two @activity.defn
functions that delegate to them.

Design decisions:
- Module-level singletons (NOT class-based) so activities are module-level
  functions, compatible with workflow.execute_activity.
- ApplicationError with non_retryable=True on uninitialized state, and for
  protocol errors such as ConcurrentModification.
- InMemoryPullRequestStore / InMemoryNotificationEmitter are the test/dev
  implementations; production deployments inject durable ones.

Usage:
    from review_protocol.activities import (
        InMemoryNotificationEmitter, InMemoryPullRequestStore,
        init_notification_emitter, init_pull_request_store,
    )

    # Before starting the Temporal worker:
    init_pull_request_store(InMemoryPullRequestStore())
    init_notification_emitter(InMemoryNotificationEmitter())
"""

from __future__ import annotations

import logging

from temporalio import activity
from temporalio.exceptions import ApplicationError

from review_protocol.errors import (
    ConcurrentModification,
    ProtocolError,
    PullRequestNotFound,
)
from review_protocol.interfaces import NotificationEmitter, PullRequestStore
from review_protocol.state_machine import PullRequestState
from review_protocol.types import EventName, NotificationEvent

logger = logging.getLogger(__name__)


# ─── Module-Level Singletons ──────────────────────────────────────────────────

_STORE: PullRequestStore | None = None
_EMITTER: NotificationEmitter | None = None

_UNINITIALIZED_STORE_MSG = (
    "PullRequestStore not initialized: call init_pull_request_store() before "
    "starting the worker."
)
_UNINITIALIZED_EMITTER_MSG = (
    "NotificationEmitter not initialized: call init_notification_emitter() before "
    "starting the worker."
)


def init_pull_request_store(store: PullRequestStore) -> None:
    """Inject the PullRequestStore for this worker process.

    Replaces any previously injected store (safe to call multiple times in tests).
    """
    global _STORE
    _STORE = store


def init_notification_emitter(emitter: NotificationEmitter) -> None:
    """Inject the NotificationEmitter for this worker process.

    Replaces any previously injected emitter (safe to call multiple times in tests).
    """
    global _EMITTER
    _EMITTER = emitter


def to_application_error(error: ProtocolError) -> ApplicationError:
    """Wrap a protocol error so Temporal reports its kind and never retries it."""
    return ApplicationError(str(error), type=type(error).__name__, non_retryable=True)


# ─── Temporal Activities ──────────────────────────────────────────────────────


@activity.defn
async def persist_pull_request(state: PullRequestState, expected_version: int) -> None:
    """Persist a committed pull request snapshot.

    Raises:
        ApplicationError: (non_retryable=True) if no store was injected, or
            if the store rejected the write as a concurrent modification.
    """
    if _STORE is None:
        raise ApplicationError(_UNINITIALIZED_STORE_MSG, non_retryable=True)
    try:
        await _STORE.save(state, expected_version=expected_version)
    except ConcurrentModification as e:
        raise to_application_error(e) from e
    logger.info(
        "Persisted pull request %s at version %d (state=%s)",
        state.id,
        state.version,
        state.current_state.value,
    )


@activity.defn
async def emit_notification(event: NotificationEvent) -> None:
    """Hand a committed event to the NotificationEmitter.

    Raises:
        ApplicationError: (non_retryable=True) if no emitter was injected.
    """
    if _EMITTER is None:
        raise ApplicationError(_UNINITIALIZED_EMITTER_MSG, non_retryable=True)
    await _EMITTER.emit(event)
    logger.info(
        "Emitted %s for pull request %s (version=%d, actor=%s)",
        event.name.value,
        event.pull_request_id,
        event.version,
        event.actor,
    )


# ─── In-Memory Implementations ────────────────────────────────────────────────


class InMemoryPullRequestStore:
    """PullRequestStore backed by a dict of snapshots.

    Intended for testing and local development. Does NOT persist across
    process restarts. Satisfies PullRequestStore (structural subtyping).
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, PullRequestState] = {}

    async def load(self, pull_request_id: str) -> PullRequestState:
        try:
            return self._snapshots[pull_request_id].clone()
        except KeyError:
            raise PullRequestNotFound(pull_request_id) from None

    async def save(self, state: PullRequestState, *, expected_version: int) -> None:
        stored = self._snapshots.get(state.id)
        if stored is not None and stored == state:
            # Replay of a write that already landed.
            return
        actual = stored.version if stored is not None else 0
        if actual != expected_version:
            raise ConcurrentModification(state.id, expected_version, actual)
        self._snapshots[state.id] = state.clone()

    async def list_ids(self) -> list[str]:
        return list(self._snapshots)


class InMemoryNotificationEmitter:
    """NotificationEmitter that records events in a list.

    Intended for testing and local development. Satisfies both
    NotificationEmitter and EventLog.
    """

    def __init__(self) -> None:
        self._events: list[NotificationEvent] = []

    async def emit(self, event: NotificationEvent) -> None:
        self._events.append(event)

    async def query_events(
        self,
        *,
        pull_request_id: str | None = None,
        name: EventName | None = None,
    ) -> list[NotificationEvent]:
        result = self._events
        if pull_request_id is not None:
            result = [e for e in result if e.pull_request_id == pull_request_id]
        if name is not None:
            result = [e for e in result if e.name == name]
        return list(result)
