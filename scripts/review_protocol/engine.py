"""Pull request engine: the aggregate root of the review protocol.

PullRequestEngine owns one PullRequestState and implements every operation
by composing the authorization guard, the state machine and the review
aggregator. It performs no I/O: persistence and notification delivery belong
to the hosts (service.py, workflow.py), which receive an OperationOutcome
carrying the result and the single event to emit.

Every mutating operation runs the same sequence:
    authorize → state guard → validate → mutate a staged clone → transition
    → bump version → swap the clone in → build the event.
Any exception before the swap leaves the engine's state untouched, and the
previous state object is never modified, so hosts can roll back by handing
it to restore().

Key types:
    CommentDraft, CreatePullRequest, UpdateDetails, ..., RespondToReview
        — frozen request dataclasses, one per mutating operation
    OperationResult     — frozen result returned to the caller
    OperationOutcome    — result + NotificationEvent
    PullRequestSummary  — frozen read model returned by summary()
    PullRequestEngine   — the aggregate root
"""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from review_protocol.aggregator import MergeValidator, ReviewAggregator
from review_protocol.config import DEFAULT_CONFIG, ProtocolConfig
from review_protocol.errors import (
    AuthorizationDenied,
    MergeNotEligible,
    StateGuardViolation,
    ValidationFailed,
)
from review_protocol.guard import AuthorizationGuard, Denied, DenialKind
from review_protocol.state_machine import (
    PullRequestState,
    PullRequestStateMachine,
    OPERATION_SPECS,
    TransitionRecord,
)
from review_protocol.types import (
    ChangeType,
    EventName,
    FileChange,
    NotificationEvent,
    Operation,
    Parties,
    PrState,
    Review,
    ReviewComment,
    Verdict,
)

Clock = Callable[[], datetime]
IdFactory = Callable[[], str]


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ─── Request Types (frozen dataclasses) ───────────────────────────────────────
# One payload per mutating operation. caller is the already-resolved identity.


@dataclass(frozen=True)
class CommentDraft:
    """A line comment as submitted; the engine assigns id and created_at."""

    file_path: str
    line_number: int
    text: str


@dataclass(frozen=True)
class CreatePullRequest:
    """create: caller becomes the Author. required_approvals=None uses the config default."""

    caller: str
    title: str
    description: str
    source_branch: str
    target_branch: str
    file_changes: tuple[FileChange, ...]
    reviewers: tuple[str, ...]
    maintainer: str
    required_approvals: int | None = None


@dataclass(frozen=True)
class UpdateDetails:
    caller: str
    title: str
    description: str


@dataclass(frozen=True)
class AddFiles:
    caller: str
    file_changes: tuple[FileChange, ...]


@dataclass(frozen=True)
class MarkReadyForReview:
    caller: str


@dataclass(frozen=True)
class ConvertToDraft:
    caller: str


@dataclass(frozen=True)
class RequestReview:
    caller: str


@dataclass(frozen=True)
class SubmitReview:
    caller: str
    verdict: Verdict
    summary: str
    comments: tuple[CommentDraft, ...] = ()


@dataclass(frozen=True)
class AddComment:
    caller: str
    file_path: str
    line_number: int
    text: str


@dataclass(frozen=True)
class SetRequiredApprovals:
    caller: str
    count: int


@dataclass(frozen=True)
class Merge:
    caller: str
    commit_message: str


@dataclass(frozen=True)
class Close:
    caller: str
    reason: str = ""


@dataclass(frozen=True)
class Reopen:
    caller: str


@dataclass(frozen=True)
class RespondToReview:
    caller: str
    message: str


OperationRequest = (
    UpdateDetails
    | AddFiles
    | MarkReadyForReview
    | ConvertToDraft
    | RequestReview
    | SubmitReview
    | AddComment
    | SetRequiredApprovals
    | Merge
    | Close
    | Reopen
    | RespondToReview
)


# ─── Result Types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OperationResult:
    """Result of a successful mutating operation.

    Always carries the pull request id, the resulting state and version.
    The optional fields are filled by the operations that produce them:
    review_id/approval_count (submitReview), comment_id (addComment),
    file_count (create/addFiles), required_approvals (setRequiredApprovals),
    merge_commit_id (merge).
    """

    operation: Operation
    pull_request_id: str
    state: PrState
    version: int
    updated_at: datetime
    review_id: str | None = None
    approval_count: int | None = None
    comment_id: str | None = None
    file_count: int | None = None
    required_approvals: int | None = None
    merge_commit_id: str | None = None


@dataclass(frozen=True)
class OperationOutcome:
    """What a host needs after a commit: the caller's result and the event to emit."""

    result: OperationResult
    event: NotificationEvent


@dataclass(frozen=True)
class PullRequestSummary:
    """Read model of one pull request, including every derived value."""

    id: str
    title: str
    description: str
    source_branch: str
    target_branch: str
    state: PrState
    author: str
    reviewers: tuple[str, ...]
    maintainer: str
    file_count: int
    lines_added: int
    lines_deleted: int
    required_approvals: int
    review_count: int
    approval_count: int
    changes_requested_count: int
    comment_count: int
    discussion_count: int
    has_unresolved_change_requests: bool
    can_merge: bool
    version: int
    created_at: datetime
    updated_at: datetime
    approvers: tuple[str, ...]
    latest_verdicts: dict[str, Verdict]
    merge_commit_id: str | None = None
    merged_at: datetime | None = None
    merged_by: str | None = None
    closed_at: datetime | None = None


# ─── Validation Helpers ───────────────────────────────────────────────────────
# Each returns a list of (rule, message) pairs; empty means valid.


def _check_title(title: str, config: ProtocolConfig) -> list[tuple[str, str]]:
    if not title or not title.strip():
        return [("title-empty", "Title must not be empty.")]
    if len(title) > config.title_max_length:
        return [
            (
                "title-too-long",
                f"Title is {len(title)} characters; maximum is {config.title_max_length}.",
            )
        ]
    return []


def _check_required_approvals(count: Any, config: ProtocolConfig) -> list[tuple[str, str]]:
    if (
        isinstance(count, bool)
        or not isinstance(count, int)
        or not config.min_required_approvals <= count <= config.max_required_approvals
    ):
        return [
            (
                "required-approvals-range",
                f"Required approvals must be an integer in "
                f"{config.min_required_approvals}-{config.max_required_approvals}, got {count!r}.",
            )
        ]
    return []


def _check_file_change(change: FileChange) -> list[tuple[str, str]]:
    violations: list[tuple[str, str]] = []
    if not change.path or not change.path.strip():
        violations.append(("file-path-empty", "File change path must not be empty."))
    if change.lines_added < 0 or change.lines_deleted < 0:
        violations.append(
            (
                "file-line-counts-negative",
                f"{change.path!r}: lines added/deleted must be non-negative.",
            )
        )
    if change.change_type == ChangeType.RENAMED:
        if not change.old_path:
            violations.append(
                ("file-rename-old-path", f"{change.path!r}: RENAMED requires old_path.")
            )
    elif change.old_path is not None:
        violations.append(
            (
                "file-rename-old-path",
                f"{change.path!r}: old_path is only allowed for RENAMED changes.",
            )
        )
    return violations


def _check_file_changes(changes: Sequence[FileChange]) -> list[tuple[str, str]]:
    if not changes:
        return [("file-changes-empty", "At least one file change is required.")]
    violations: list[tuple[str, str]] = []
    for change in changes:
        violations.extend(_check_file_change(change))
    return violations


def _check_comment(file_path: str, line_number: int, text: str) -> list[tuple[str, str]]:
    violations: list[tuple[str, str]] = []
    if not file_path or not file_path.strip():
        violations.append(("comment-file-path-empty", "Comment file path must not be empty."))
    if isinstance(line_number, bool) or not isinstance(line_number, int) or line_number <= 0:
        violations.append(
            ("line-number-positive", f"Line number must be a positive integer, got {line_number!r}.")
        )
    if not text or not text.strip():
        violations.append(("comment-text-empty", "Comment text must not be empty."))
    return violations


def _check_parties(
    author: str, reviewers: Sequence[str], maintainer: str
) -> list[tuple[str, str]]:
    violations: list[tuple[str, str]] = []
    if not author or not author.strip():
        violations.append(("author-empty", "Author identity must not be empty."))
    if not reviewers:
        violations.append(("reviewers-empty", "At least one reviewer is required."))
    elif any(not r or not r.strip() for r in reviewers):
        violations.append(("reviewer-identity-empty", "Reviewer identities must not be empty."))
    elif len(set(reviewers)) != len(reviewers):
        violations.append(("reviewers-duplicate", "Reviewer identities must be unique."))
    if not maintainer or not maintainer.strip():
        violations.append(("maintainer-empty", "Maintainer identity must not be empty."))
    return violations


def _raise_if(violations: list[tuple[str, str]]) -> None:
    if violations:
        raise ValidationFailed.from_violations(violations)


# ─── Engine ───────────────────────────────────────────────────────────────────


class PullRequestEngine:
    """Aggregate root for one pull request.

    The clock and id factory are injected so the engine can run unchanged
    inside deterministic Temporal workflow code (workflow.now, workflow.uuid4).

    Usage:
        engine, outcome = PullRequestEngine.create(CreatePullRequest(...))
        engine.mark_ready_for_review("alice")
        engine.request_review("bob")
        outcome = engine.submit_review("bob", Verdict.APPROVE, "LGTM")
    """

    def __init__(
        self,
        state: PullRequestState,
        *,
        clock: Clock | None = None,
        id_factory: IdFactory | None = None,
        config: ProtocolConfig | None = None,
    ) -> None:
        self._state = state
        self._clock: Clock = clock if clock is not None else _utc_now
        self._new_id: IdFactory = id_factory if id_factory is not None else _new_id
        self._config: ProtocolConfig = config if config is not None else DEFAULT_CONFIG
        self._dispatch: dict[type, Callable[[Any], OperationOutcome]] = {
            UpdateDetails: lambda r: self.update_details(r.caller, r.title, r.description),
            AddFiles: lambda r: self.add_files(r.caller, r.file_changes),
            MarkReadyForReview: lambda r: self.mark_ready_for_review(r.caller),
            ConvertToDraft: lambda r: self.convert_to_draft(r.caller),
            RequestReview: lambda r: self.request_review(r.caller),
            SubmitReview: lambda r: self.submit_review(
                r.caller, r.verdict, r.summary, r.comments
            ),
            AddComment: lambda r: self.add_comment(
                r.caller, r.file_path, r.line_number, r.text
            ),
            SetRequiredApprovals: lambda r: self.set_required_approvals(r.caller, r.count),
            Merge: lambda r: self.merge(r.caller, r.commit_message),
            Close: lambda r: self.close(r.caller, r.reason),
            Reopen: lambda r: self.reopen(r.caller),
            RespondToReview: lambda r: self.respond_to_review(r.caller, r.message),
        }

    # ── Construction ──────────────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        request: CreatePullRequest,
        *,
        pull_request_id: str | None = None,
        clock: Clock | None = None,
        id_factory: IdFactory | None = None,
        config: ProtocolConfig | None = None,
    ) -> tuple[PullRequestEngine, OperationOutcome]:
        """Validate and construct a new pull request in the draft state.

        All rules are checked before anything is built; a single
        ValidationFailed lists every violation. No partially constructed
        aggregate is ever returned.
        """
        config = config if config is not None else DEFAULT_CONFIG
        now = (clock if clock is not None else _utc_now)()
        new_id = id_factory if id_factory is not None else _new_id
        required = (
            request.required_approvals
            if request.required_approvals is not None
            else config.default_required_approvals
        )

        violations: list[tuple[str, str]] = []
        violations.extend(_check_title(request.title, config))
        if not request.source_branch or not request.source_branch.strip():
            violations.append(("source-branch-empty", "Source branch must not be empty."))
        if not request.target_branch or not request.target_branch.strip():
            violations.append(("target-branch-empty", "Target branch must not be empty."))
        if request.source_branch and request.source_branch == request.target_branch:
            violations.append(
                ("branches-identical", "Source and target branch must differ.")
            )
        violations.extend(_check_file_changes(request.file_changes))
        violations.extend(
            _check_parties(request.caller, request.reviewers, request.maintainer)
        )
        violations.extend(_check_required_approvals(required, config))
        _raise_if(violations)

        state = PullRequestState(
            id=pull_request_id if pull_request_id is not None else new_id(),
            title=request.title,
            description=request.description,
            source_branch=request.source_branch,
            target_branch=request.target_branch,
            parties=Parties(
                author=request.caller,
                reviewers=tuple(request.reviewers),
                maintainer=request.maintainer,
            ),
            created_at=now,
            updated_at=now,
            file_changes=list(request.file_changes),
            current_state=PrState.DRAFT,
            required_approvals=required,
            version=1,
        )
        engine = cls(state, clock=clock, id_factory=id_factory, config=config)
        result = OperationResult(
            operation=Operation.CREATE,
            pull_request_id=state.id,
            state=state.current_state,
            version=state.version,
            updated_at=now,
            file_count=len(state.file_changes),
        )
        event = NotificationEvent(
            name=EventName.CREATED,
            pull_request_id=state.id,
            actor=request.caller,
            occurred_at=now,
            version=state.version,
            payload={
                "title": state.title,
                "source_branch": state.source_branch,
                "target_branch": state.target_branch,
                "reviewers": list(state.parties.reviewers),
                "maintainer": state.parties.maintainer,
            },
        )
        return engine, OperationOutcome(result=result, event=event)

    # ── State Access ──────────────────────────────────────────────────────────

    @property
    def state(self) -> PullRequestState:
        """Current committed state (do not modify directly)."""
        return self._state

    @property
    def pull_request_id(self) -> str:
        return self._state.id

    def restore(self, state: PullRequestState) -> None:
        """Replace the committed state; used by hosts to roll back a failed persist."""
        self._state = state

    def execute(self, request: OperationRequest) -> OperationOutcome:
        """Dispatch a typed request to the matching operation method."""
        handler = self._dispatch.get(type(request))
        if handler is None:
            raise TypeError(f"Unsupported request type: {type(request).__name__}")
        return handler(request)

    # ── Mutating Operations ───────────────────────────────────────────────────

    def update_details(self, caller: str, title: str, description: str) -> OperationOutcome:
        staged = self._begin(caller, Operation.UPDATE_DETAILS)
        _raise_if(_check_title(title, self._config))
        staged.title = title
        staged.description = description
        return self._commit(staged, caller, Operation.UPDATE_DETAILS, {"title": title})

    def add_files(self, caller: str, file_changes: Sequence[FileChange]) -> OperationOutcome:
        staged = self._begin(caller, Operation.ADD_FILES)
        _raise_if(_check_file_changes(file_changes))
        staged.file_changes.extend(file_changes)
        return self._commit(
            staged,
            caller,
            Operation.ADD_FILES,
            {"paths": [c.path for c in file_changes], "file_count": len(staged.file_changes)},
            file_count=len(staged.file_changes),
        )

    def mark_ready_for_review(self, caller: str) -> OperationOutcome:
        staged = self._begin(caller, Operation.MARK_READY_FOR_REVIEW)
        now = self._clock()
        self._advance(staged, PrState.OPEN, Operation.MARK_READY_FOR_REVIEW, caller, now)
        return self._commit(staged, caller, Operation.MARK_READY_FOR_REVIEW, {}, now=now)

    def convert_to_draft(self, caller: str) -> OperationOutcome:
        staged = self._begin(caller, Operation.CONVERT_TO_DRAFT)
        now = self._clock()
        self._advance(staged, PrState.DRAFT, Operation.CONVERT_TO_DRAFT, caller, now)
        return self._commit(staged, caller, Operation.CONVERT_TO_DRAFT, {}, now=now)

    def request_review(self, caller: str) -> OperationOutcome:
        staged = self._begin(caller, Operation.REQUEST_REVIEW)
        now = self._clock()
        self._advance(staged, PrState.REVIEW_REQUESTED, Operation.REQUEST_REVIEW, caller, now)
        return self._commit(
            staged,
            caller,
            Operation.REQUEST_REVIEW,
            {"reviewers": list(staged.parties.reviewers)},
            now=now,
        )

    def submit_review(
        self,
        caller: str,
        verdict: Verdict,
        summary: str,
        comments: Sequence[CommentDraft] = (),
    ) -> OperationOutcome:
        """Append an immutable Review and select the next state.

        REQUEST_CHANGES always wins; APPROVE reaches approved once the
        approval count (including this review) meets the threshold.
        """
        staged = self._begin(caller, Operation.SUBMIT_REVIEW)
        violations: list[tuple[str, str]] = []
        if not isinstance(verdict, Verdict):
            violations.append(("verdict-invalid", f"Unknown verdict {verdict!r}."))
        if not summary or not summary.strip():
            violations.append(("review-summary-empty", "Review summary must not be empty."))
        for draft in comments:
            violations.extend(_check_comment(draft.file_path, draft.line_number, draft.text))
        _raise_if(violations)

        now = self._clock()
        review = Review(
            id=self._new_id(),
            reviewer=caller,
            verdict=verdict,
            summary=summary,
            comments=tuple(
                ReviewComment(
                    id=self._new_id(),
                    file_path=d.file_path,
                    line_number=d.line_number,
                    text=d.text,
                    created_at=now,
                )
                for d in comments
            ),
            submitted_at=now,
        )
        staged.reviews.append(review)

        aggregator = ReviewAggregator(staged.reviews)
        target = aggregator.next_state(verdict, staged.current_state, staged.required_approvals)
        self._advance(staged, target, Operation.SUBMIT_REVIEW, caller, now)
        return self._commit(
            staged,
            caller,
            Operation.SUBMIT_REVIEW,
            {
                "review_id": review.id,
                "verdict": verdict.value,
                "comment_count": len(review.comments),
                "approval_count": aggregator.approval_count,
            },
            now=now,
            review_id=review.id,
            approval_count=aggregator.approval_count,
        )

    def add_comment(
        self, caller: str, file_path: str, line_number: int, text: str
    ) -> OperationOutcome:
        staged = self._begin(caller, Operation.ADD_COMMENT)
        _raise_if(_check_comment(file_path, line_number, text))
        now = self._clock()
        comment = ReviewComment(
            id=self._new_id(),
            file_path=file_path,
            line_number=line_number,
            text=text,
            created_at=now,
            author=caller,
        )
        staged.discussion.append(comment)
        return self._commit(
            staged,
            caller,
            Operation.ADD_COMMENT,
            {"comment_id": comment.id, "file_path": file_path, "line_number": line_number},
            now=now,
            comment_id=comment.id,
        )

    def set_required_approvals(self, caller: str, count: int) -> OperationOutcome:
        staged = self._begin(caller, Operation.SET_REQUIRED_APPROVALS)
        _raise_if(_check_required_approvals(count, self._config))
        previous = staged.required_approvals
        staged.required_approvals = count
        return self._commit(
            staged,
            caller,
            Operation.SET_REQUIRED_APPROVALS,
            {"previous": previous, "required_approvals": count},
            required_approvals=count,
        )

    def merge(self, caller: str, commit_message: str) -> OperationOutcome:
        """Record merge metadata. No branch operation is performed.

        Raises:
            MergeNotEligible: approvals below threshold or any change request.
        """
        staged = self._begin(caller, Operation.MERGE)
        if not commit_message or not commit_message.strip():
            raise ValidationFailed("commit-message-empty", "Commit message must not be empty.")
        blockers = MergeValidator().check(staged)
        if blockers:
            raise MergeNotEligible([b.message for b in blockers])

        now = self._clock()
        digest = hashlib.sha1(
            f"{staged.id}:{staged.version}:{commit_message}:{now.isoformat()}".encode()
        ).hexdigest()
        staged.merge_commit_id = digest
        staged.merge_message = commit_message
        staged.merged_at = now
        staged.merged_by = caller
        self._advance(staged, PrState.MERGED, Operation.MERGE, caller, now)
        return self._commit(
            staged,
            caller,
            Operation.MERGE,
            {
                "merge_commit_id": digest,
                "source_branch": staged.source_branch,
                "target_branch": staged.target_branch,
            },
            now=now,
            merge_commit_id=digest,
        )

    def close(self, caller: str, reason: str = "") -> OperationOutcome:
        staged = self._begin(caller, Operation.CLOSE)
        now = self._clock()
        staged.closed_at = now
        staged.close_reason = reason
        self._advance(staged, PrState.CLOSED, Operation.CLOSE, caller, now)
        return self._commit(staged, caller, Operation.CLOSE, {"reason": reason}, now=now)

    def reopen(self, caller: str) -> OperationOutcome:
        staged = self._begin(caller, Operation.REOPEN)
        now = self._clock()
        staged.closed_at = None
        staged.close_reason = None
        self._advance(staged, PrState.OPEN, Operation.REOPEN, caller, now)
        return self._commit(staged, caller, Operation.REOPEN, {}, now=now)

    def respond_to_review(self, caller: str, message: str) -> OperationOutcome:
        staged = self._begin(caller, Operation.RESPOND_TO_REVIEW)
        if not message or not message.strip():
            raise ValidationFailed("response-message-empty", "Response message must not be empty.")
        return self._commit(
            staged, caller, Operation.RESPOND_TO_REVIEW, {"message": message}
        )

    # ── Queries ───────────────────────────────────────────────────────────────
    # Pure reads, available to any party member.

    def summary(self, caller: str) -> PullRequestSummary:
        self._authorize_read(caller, Operation.GET_SUMMARY)
        state = self._state
        aggregator = ReviewAggregator(state.reviews)
        return PullRequestSummary(
            id=state.id,
            title=state.title,
            description=state.description,
            source_branch=state.source_branch,
            target_branch=state.target_branch,
            state=state.current_state,
            author=state.parties.author,
            reviewers=state.parties.reviewers,
            maintainer=state.parties.maintainer,
            file_count=len(state.file_changes),
            lines_added=sum(c.lines_added for c in state.file_changes),
            lines_deleted=sum(c.lines_deleted for c in state.file_changes),
            required_approvals=state.required_approvals,
            review_count=aggregator.review_count,
            approval_count=aggregator.approval_count,
            changes_requested_count=aggregator.changes_requested_count,
            comment_count=aggregator.comment_count,
            discussion_count=len(state.discussion),
            has_unresolved_change_requests=aggregator.has_unresolved_change_requests,
            can_merge=aggregator.can_merge(state.current_state, state.required_approvals),
            version=state.version,
            created_at=state.created_at,
            updated_at=state.updated_at,
            approvers=aggregator.approvers,
            latest_verdicts=aggregator.latest_verdicts(),
            merge_commit_id=state.merge_commit_id,
            merged_at=state.merged_at,
            merged_by=state.merged_by,
            closed_at=state.closed_at,
        )

    def review_count(self, caller: str) -> int:
        self._authorize_read(caller, Operation.GET_REVIEW_COUNT)
        return len(self._state.reviews)

    def approval_count(self, caller: str) -> int:
        self._authorize_read(caller, Operation.GET_APPROVAL_COUNT)
        return ReviewAggregator(self._state.reviews).approval_count

    def can_merge(self, caller: str) -> bool:
        self._authorize_read(caller, Operation.CAN_MERGE)
        state = self._state
        return ReviewAggregator(state.reviews).can_merge(
            state.current_state, state.required_approvals
        )

    def reviews(self, caller: str) -> tuple[Review, ...]:
        self._authorize_read(caller, Operation.GET_SUMMARY)
        return tuple(self._state.reviews)

    def transition_history(self, caller: str) -> list[TransitionRecord]:
        self._authorize_read(caller, Operation.GET_SUMMARY)
        return list(self._state.transition_history)

    def available_operations(self, caller: str) -> list[Operation]:
        """Mutating operations caller may invoke right now (role and state both pass)."""
        self._authorize_read(caller, Operation.GET_SUMMARY)
        guard = AuthorizationGuard(self._state.parties)
        machine = PullRequestStateMachine(self._state)
        return [
            op
            for op in machine.available_operations()
            if OPERATION_SPECS[op].mutating
            and not isinstance(guard.authorize_operation(caller, op), Denied)
        ]

    # ── Private Helpers ───────────────────────────────────────────────────────

    def _authorize_read(self, caller: str, operation: Operation) -> None:
        decision = AuthorizationGuard(self._state.parties).authorize_operation(
            caller, operation
        )
        if isinstance(decision, Denied):
            raise AuthorizationDenied(operation, caller, OPERATION_SPECS[operation].roles)

    def _begin(self, caller: str, operation: Operation) -> PullRequestState:
        """Run the role check, then the state guard; return a staged clone."""
        spec = OPERATION_SPECS[operation]
        guard = AuthorizationGuard(self._state.parties)
        for decision in (
            guard.authorize_operation(caller, operation),
            guard.check_state(operation, self._state.current_state),
        ):
            if not isinstance(decision, Denied):
                continue
            if decision.kind == DenialKind.NOT_IN_ROLE:
                raise AuthorizationDenied(operation, caller, spec.roles)
            raise StateGuardViolation(
                operation, self._state.current_state, spec.source_states
            )
        return self._state.clone()

    def _advance(
        self,
        staged: PullRequestState,
        to_state: PrState,
        operation: Operation,
        caller: str,
        now: datetime | None = None,
    ) -> None:
        PullRequestStateMachine(staged).advance(
            to_state,
            operation=operation,
            triggered_by=caller,
            timestamp=now if now is not None else self._clock(),
        )

    def _commit(
        self,
        staged: PullRequestState,
        caller: str,
        operation: Operation,
        payload: dict[str, Any],
        *,
        now: datetime | None = None,
        **result_fields: Any,
    ) -> OperationOutcome:
        """Bump version, swap the staged clone in, and describe the commit."""
        now = now if now is not None else self._clock()
        staged.version += 1
        staged.updated_at = now
        self._state = staged

        event_name = OPERATION_SPECS[operation].event
        assert event_name is not None
        result = OperationResult(
            operation=operation,
            pull_request_id=staged.id,
            state=staged.current_state,
            version=staged.version,
            updated_at=now,
            **result_fields,
        )
        event = NotificationEvent(
            name=event_name,
            pull_request_id=staged.id,
            actor=caller,
            occurred_at=now,
            version=staged.version,
            payload={"state": staged.current_state.value, **payload},
        )
        return OperationOutcome(result=result, event=event)
