"""Temporal workflow host for one pull request.

One PullRequestWorkflow per pull request. The workflow is the single writer
for its aggregate: updates (one per mutating operation) are serialized with
an asyncio.Lock, queries are pure reads, and persistence and notification
delivery run as activities after the in-memory transition is final.

Design rules:
- Workflow code MUST be deterministic: no I/O, no random, no datetime.now().
  The engine receives workflow.now and workflow.uuid4 as its clock and id factory.
- Activities handle non-deterministic operations (persistence, notification).
- A failed persist restores the previous state before the update is rejected,
  so partial persistence is never observable.
- Protocol errors reject the update with a non-retryable ApplicationError whose
  type is the error class name; the workflow itself keeps running.

Key types (all frozen dataclasses):
    PullRequestInput   — workflow run() input
    PullRequestResult  — workflow run() return value (on merge)

Search attribute keys:
    SA_PULL_REQUEST_ID — text key for pull request id lookup
    SA_STATE           — keyword key for current lifecycle state
    SA_AUTHOR          — keyword key for the author identity
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TypeVar

from temporalio import workflow
from temporalio.common import RetryPolicy, SearchAttributeKey
from temporalio.exceptions import ActivityError

from review_protocol.activities import (
    emit_notification,
    persist_pull_request,
    to_application_error,
)
from review_protocol.config import ProtocolConfig
from review_protocol.engine import (
    AddComment,
    AddFiles,
    Close,
    ConvertToDraft,
    CreatePullRequest,
    MarkReadyForReview,
    Merge,
    OperationOutcome,
    OperationRequest,
    OperationResult,
    PullRequestEngine,
    PullRequestSummary,
    Reopen,
    RequestReview,
    RespondToReview,
    SetRequiredApprovals,
    SubmitReview,
    UpdateDetails,
)
from review_protocol.errors import PersistenceFailed, ProtocolError
from review_protocol.state_machine import PullRequestState, TransitionRecord
from review_protocol.types import Operation, PrState, Review

# ─── Search Attribute Keys ────────────────────────────────────────────────────

SA_PULL_REQUEST_ID: SearchAttributeKey = SearchAttributeKey.for_text("ReviewPullRequestId")
SA_STATE: SearchAttributeKey = SearchAttributeKey.for_keyword("ReviewState")
SA_AUTHOR: SearchAttributeKey = SearchAttributeKey.for_keyword("ReviewAuthor")

_ACTIVITY_TIMEOUT = timedelta(seconds=10)
_ACTIVITY_RETRY = RetryPolicy(maximum_attempts=3)

T = TypeVar("T")


# ─── Workflow I/O Types ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class PullRequestInput:
    """Input for PullRequestWorkflow.run().

    pull_request_id: aggregate id; conventionally also the workflow id.
    create: the creation request; its caller becomes the Author.
    config: engine limits; starters typically pass ProtocolConfig.from_env()
        so the default approval threshold follows the deployment.
    """

    pull_request_id: str
    create: CreatePullRequest
    config: ProtocolConfig = field(default_factory=ProtocolConfig)


@dataclass(frozen=True)
class PullRequestResult:
    """Return value of PullRequestWorkflow.run() once the pull request is merged.

    rejected_operations counts updates the engine refused during the run.
    undelivered_events counts events whose notification activity failed.
    """

    pull_request_id: str
    final_state: PrState
    merge_commit_id: str | None
    version: int
    transition_count: int
    review_count: int
    rejected_operations: int
    undelivered_events: int


# ─── Workflow ─────────────────────────────────────────────────────────────────


@workflow.defn
class PullRequestWorkflow:
    """Durable single-writer host for one PullRequestEngine.

    Lifecycle:
        1. run() creates the engine (failing the workflow on invalid input),
           persists the draft, emits Created and sets search attributes.
        2. Updates run one at a time under self._lock: engine operation →
           persist activity → search attributes → notification activity.
        3. run() returns PullRequestResult once the pull request is merged
           and every in-flight handler has finished. Closed pull requests
           stay running because they can be reopened.
    """

    def __init__(self) -> None:
        self._engine: PullRequestEngine | None = None
        self._lock = asyncio.Lock()
        self._rejected: int = 0
        self._undelivered: int = 0

    # ── Run ───────────────────────────────────────────────────────────────────

    @workflow.run
    async def run(self, input: PullRequestInput) -> PullRequestResult:
        async with self._lock:
            try:
                engine, outcome = PullRequestEngine.create(
                    input.create,
                    pull_request_id=input.pull_request_id,
                    clock=workflow.now,
                    id_factory=lambda: workflow.uuid4().hex,
                    config=input.config,
                )
            except ProtocolError as e:
                raise to_application_error(e) from e
            self._engine = engine
            await self._persist(previous=None, expected_version=0)
            workflow.upsert_search_attributes(
                [
                    SA_PULL_REQUEST_ID.value_set(input.pull_request_id),
                    SA_STATE.value_set(engine.state.current_state.value),
                    SA_AUTHOR.value_set(engine.state.parties.author),
                ]
            )
            await self._notify(outcome)

        await workflow.wait_condition(
            lambda: self._require_engine().state.current_state == PrState.MERGED
            and workflow.all_handlers_finished()
        )

        state = self._require_engine().state
        return PullRequestResult(
            pull_request_id=state.id,
            final_state=state.current_state,
            merge_commit_id=state.merge_commit_id,
            version=state.version,
            transition_count=len(state.transition_history),
            review_count=len(state.reviews),
            rejected_operations=self._rejected,
            undelivered_events=self._undelivered,
        )

    # ── Updates ───────────────────────────────────────────────────────────────

    @workflow.update
    async def update_details(self, request: UpdateDetails) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def add_files(self, request: AddFiles) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def mark_ready_for_review(self, request: MarkReadyForReview) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def convert_to_draft(self, request: ConvertToDraft) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def request_review(self, request: RequestReview) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def submit_review(self, request: SubmitReview) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def add_comment(self, request: AddComment) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def set_required_approvals(self, request: SetRequiredApprovals) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def merge(self, request: Merge) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def close(self, request: Close) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def reopen(self, request: Reopen) -> OperationResult:
        return await self._apply(request)

    @workflow.update
    async def respond_to_review(self, request: RespondToReview) -> OperationResult:
        return await self._apply(request)

    # ── Queries ───────────────────────────────────────────────────────────────

    @workflow.query
    def summary(self, caller: str) -> PullRequestSummary:
        return self._query(lambda engine: engine.summary(caller))

    @workflow.query
    def review_count(self, caller: str) -> int:
        return self._query(lambda engine: engine.review_count(caller))

    @workflow.query
    def approval_count(self, caller: str) -> int:
        return self._query(lambda engine: engine.approval_count(caller))

    @workflow.query
    def can_merge(self, caller: str) -> bool:
        return self._query(lambda engine: engine.can_merge(caller))

    @workflow.query
    def reviews(self, caller: str) -> list[Review]:
        return list(self._query(lambda engine: engine.reviews(caller)))

    @workflow.query
    def available_operations(self, caller: str) -> list[Operation]:
        return self._query(lambda engine: engine.available_operations(caller))

    @workflow.query
    def transition_history(self, caller: str) -> list[TransitionRecord]:
        return self._query(lambda engine: engine.transition_history(caller))

    # ── Private Helpers ───────────────────────────────────────────────────────

    def _require_engine(self) -> PullRequestEngine:
        if self._engine is None:
            raise RuntimeError("Workflow not yet initialized: run() has not started.")
        return self._engine

    def _query(self, read: Callable[[PullRequestEngine], T]) -> T:
        try:
            return read(self._require_engine())
        except ProtocolError as e:
            raise to_application_error(e) from e

    async def _apply(self, request: OperationRequest) -> OperationResult:
        await workflow.wait_condition(lambda: self._engine is not None)
        async with self._lock:
            engine = self._require_engine()
            previous = engine.state
            try:
                outcome = engine.execute(request)
            except ProtocolError as e:
                self._rejected += 1
                workflow.logger.warning(
                    "Rejected %s by %r in state %s: %s",
                    type(request).__name__,
                    request.caller,
                    previous.current_state.value,
                    e,
                )
                raise to_application_error(e) from e

            await self._persist(previous=previous, expected_version=previous.version)
            workflow.upsert_search_attributes(
                [SA_STATE.value_set(engine.state.current_state.value)]
            )
            workflow.logger.info(
                "Committed %s by %r: %s -> %s (version %d)",
                outcome.result.operation.value,
                request.caller,
                previous.current_state.value,
                outcome.result.state.value,
                outcome.result.version,
            )
            await self._notify(outcome)
            return outcome.result

    async def _persist(
        self, *, previous: PullRequestState | None, expected_version: int
    ) -> None:
        """Persist the engine's state; on failure restore previous and reject."""
        engine = self._require_engine()
        try:
            await workflow.execute_activity(
                persist_pull_request,
                args=[engine.state, expected_version],
                start_to_close_timeout=_ACTIVITY_TIMEOUT,
                retry_policy=_ACTIVITY_RETRY,
            )
        except ActivityError as e:
            failed = PersistenceFailed(engine.pull_request_id, str(e.cause or e))
            if previous is None:
                raise to_application_error(failed) from e
            engine.restore(previous)
            self._rejected += 1
            raise to_application_error(failed) from e

    async def _notify(self, outcome: OperationOutcome) -> None:
        try:
            await workflow.execute_activity(
                emit_notification,
                outcome.event,
                start_to_close_timeout=_ACTIVITY_TIMEOUT,
                retry_policy=_ACTIVITY_RETRY,
            )
        except ActivityError as e:
            self._undelivered += 1
            workflow.logger.error(
                "Notification %s for %s was not delivered: %s",
                outcome.event.name.value,
                outcome.event.pull_request_id,
                e.cause or e,
            )
