"""In-process host for many pull request aggregates.

PullRequestService loads an aggregate from its PullRequestStore, runs one
engine operation, persists the result with an optimistic version check and
then hands the event to the NotificationEmitter.

Single-writer discipline:
- Within one process, a per-aggregate asyncio.Lock serializes operations on
  the same pull request. Different pull requests never share a lock, and a
  lock is discarded as soon as no operation holds or awaits it.
- Across processes, PullRequestStore.save(expected_version=...) rejects a
  write whose base version is stale with ConcurrentModification.

The engine is rebuilt from the stored snapshot for every operation, so a
failed persist leaves nothing behind: the store still holds the previous
version and the staged engine is discarded.

Events whose delivery fails stay in an outbox (undelivered_events) and can
be retried with redeliver(); delivery failure never un-commits an operation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from review_protocol.config import ProtocolConfig
from review_protocol.engine import (
    Clock,
    CreatePullRequest,
    IdFactory,
    OperationRequest,
    OperationResult,
    PullRequestEngine,
    PullRequestSummary,
)
from review_protocol.errors import (
    ConcurrentModification,
    PersistenceFailed,
    ProtocolError,
)
from review_protocol.interfaces import NotificationEmitter, PullRequestStore
from review_protocol.state_machine import PullRequestState
from review_protocol.types import NotificationEvent, Operation, Review

logger = logging.getLogger(__name__)


class PullRequestService:
    """Runs engine operations against stored aggregates.

    Usage:
        service = PullRequestService(InMemoryPullRequestStore(), InMemoryNotificationEmitter())
        created = await service.create(CreatePullRequest(caller="alice", ...))
        await service.execute(created.pull_request_id, MarkReadyForReview(caller="alice"))
        summary = await service.summary(created.pull_request_id, "alice")
    """

    def __init__(
        self,
        store: PullRequestStore,
        emitter: NotificationEmitter,
        *,
        clock: Clock | None = None,
        id_factory: IdFactory | None = None,
        config: ProtocolConfig | None = None,
    ) -> None:
        self._store = store
        self._emitter = emitter
        self._clock = clock
        self._id_factory = id_factory
        self._config = config
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._undelivered: list[NotificationEvent] = []

    # ── Mutations ─────────────────────────────────────────────────────────────

    async def create(self, request: CreatePullRequest) -> OperationResult:
        """Validate, persist and announce a new pull request.

        Raises:
            ValidationFailed: If any creation rule is violated.
            PersistenceFailed: If the store rejected the new aggregate.
        """
        try:
            engine, outcome = PullRequestEngine.create(
                request,
                clock=self._clock,
                id_factory=self._id_factory,
                config=self._config,
            )
        except ProtocolError as e:
            logger.warning(
                "Rejected %s by %r: %s: %s",
                Operation.CREATE.value,
                request.caller,
                type(e).__name__,
                e,
            )
            raise

        async with self._serialized(engine.pull_request_id):
            await self._persist(engine, expected_version=0)
        logger.info(
            "Created pull request %s (%s -> %s) by %r",
            engine.pull_request_id,
            request.source_branch,
            request.target_branch,
            request.caller,
        )
        await self._deliver(outcome.event)
        return outcome.result

    async def execute(
        self, pull_request_id: str, request: OperationRequest
    ) -> OperationResult:
        """Run one mutating operation as a single atomic unit.

        Raises:
            PullRequestNotFound: Unknown pull_request_id.
            AuthorizationDenied / StateGuardViolation / ValidationFailed /
            MergeNotEligible: The engine rejected the operation.
            ConcurrentModification: Another writer committed first.
            PersistenceFailed: The store failed; nothing was committed.
        """
        async with self._serialized(pull_request_id):
            state = await self._store.load(pull_request_id)
            engine = self._engine(state)
            try:
                outcome = engine.execute(request)
            except ProtocolError as e:
                logger.warning(
                    "Rejected %s on %s by %r in state %s: %s: %s",
                    type(request).__name__,
                    pull_request_id,
                    request.caller,
                    state.current_state.value,
                    type(e).__name__,
                    e,
                )
                raise
            await self._persist(engine, expected_version=state.version)

        result = outcome.result
        logger.info(
            "Committed %s on %s by %r: %s -> %s (version %d)",
            result.operation.value,
            pull_request_id,
            request.caller,
            state.current_state.value,
            result.state.value,
            result.version,
        )
        await self._deliver(outcome.event)
        return result

    async def redeliver(self) -> int:
        """Retry every undelivered event in order. Returns how many were delivered."""
        pending, self._undelivered = self._undelivered, []
        delivered = 0
        for event in pending:
            if await self._deliver(event):
                delivered += 1
        return delivered

    def undelivered_events(self) -> list[NotificationEvent]:
        return list(self._undelivered)

    # ── Queries ───────────────────────────────────────────────────────────────

    async def summary(self, pull_request_id: str, caller: str) -> PullRequestSummary:
        return self._engine(await self._store.load(pull_request_id)).summary(caller)

    async def review_count(self, pull_request_id: str, caller: str) -> int:
        return self._engine(await self._store.load(pull_request_id)).review_count(caller)

    async def approval_count(self, pull_request_id: str, caller: str) -> int:
        return self._engine(await self._store.load(pull_request_id)).approval_count(caller)

    async def can_merge(self, pull_request_id: str, caller: str) -> bool:
        return self._engine(await self._store.load(pull_request_id)).can_merge(caller)

    async def reviews(self, pull_request_id: str, caller: str) -> tuple[Review, ...]:
        return self._engine(await self._store.load(pull_request_id)).reviews(caller)

    async def available_operations(
        self, pull_request_id: str, caller: str
    ) -> list[Operation]:
        engine = self._engine(await self._store.load(pull_request_id))
        return engine.available_operations(caller)

    # ── Private Helpers ───────────────────────────────────────────────────────

    def _engine(self, state: PullRequestState) -> PullRequestEngine:
        return PullRequestEngine(
            state, clock=self._clock, id_factory=self._id_factory, config=self._config
        )

    @asynccontextmanager
    async def _serialized(self, pull_request_id: str) -> AsyncIterator[None]:
        """Hold the aggregate's lock; drop it once no task holds or awaits it."""
        lock = self._locks.setdefault(pull_request_id, asyncio.Lock())
        self._lock_users[pull_request_id] = self._lock_users.get(pull_request_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[pull_request_id] -= 1
            if self._lock_users[pull_request_id] == 0:
                del self._lock_users[pull_request_id]
                del self._locks[pull_request_id]

    async def _persist(self, engine: PullRequestEngine, *, expected_version: int) -> None:
        state = engine.state
        try:
            await self._store.save(state, expected_version=expected_version)
        except ConcurrentModification:
            logger.warning(
                "Concurrent modification of %s at version %d",
                state.id,
                expected_version,
            )
            raise
        except Exception as e:
            logger.error("Persisting %s failed: %s", state.id, e)
            raise PersistenceFailed(state.id, str(e)) from e

    async def _deliver(self, event: NotificationEvent) -> bool:
        try:
            await self._emitter.emit(event)
        except Exception:
            logger.exception(
                "Delivery of %s for %s failed; kept in outbox",
                event.name.value,
                event.pull_request_id,
            )
            self._undelivered.append(event)
            return False
        return True
