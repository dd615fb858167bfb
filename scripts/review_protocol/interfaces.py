"""Collaborator interfaces for the review protocol engine.

The engine itself performs no I/O. Its hosts (service.py and workflow.py)
talk to storage and notification delivery through these Protocols, which
external projects satisfy by structural subtyping without inheritance.

## Runtime checks

The Protocol classes are @runtime_checkable, so isinstance() only verifies
that the checked object has methods with the right *names*. Full signature
compatibility is enforced by the static type checker, not at runtime.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from review_protocol.state_machine import PullRequestState
from review_protocol.types import EventName, NotificationEvent


@runtime_checkable
class PullRequestStore(Protocol):
    """Persistence for pull request aggregates, with optimistic versioning.

    Implementations must isolate stored snapshots from callers: the object
    passed to save() and the objects returned by load() must not share
    mutable lists with the stored copy.
    """

    async def load(self, pull_request_id: str) -> PullRequestState:
        """Return the latest committed snapshot.

        Raises:
            PullRequestNotFound: If no aggregate with this id exists.
        """
        ...

    async def save(self, state: PullRequestState, *, expected_version: int) -> None:
        """Persist state if the stored version still equals expected_version.

        expected_version is 0 for a pull request that has never been saved.
        Saving a snapshot identical to the stored one succeeds without a
        version check, so a retried write that already landed is not a
        conflict.

        Raises:
            ConcurrentModification: If the stored version differs.
        """
        ...

    async def list_ids(self) -> list[str]:
        """Ids of every stored pull request, in insertion order."""
        ...


@runtime_checkable
class NotificationEmitter(Protocol):
    """Receives one event description per committed mutating operation.

    Delivery (email, chat, webhooks) is the implementor's concern; the engine
    only decides what happened.
    """

    async def emit(self, event: NotificationEvent) -> None:
        """Deliver or enqueue event for delivery."""
        ...


@runtime_checkable
class EventLog(Protocol):
    """Optional read side of a NotificationEmitter, used by tests and tooling."""

    async def query_events(
        self,
        *,
        pull_request_id: str | None = None,
        name: EventName | None = None,
    ) -> list[NotificationEvent]:
        """Return recorded events matching the filters, in emission order."""
        ...
