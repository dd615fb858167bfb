"""Pull request lifecycle state machine.

Pure Python, no Temporal dependency. Holds the canonical operation table
(which roles may invoke an operation, from which states, and where it may
lead) and validates every state change against it.

Key types:
    OperationSpec            — frozen table row for one operation
    OPERATION_SPECS          — dict[Operation, OperationSpec], the transition table
    PullRequestState         — mutable aggregate state for one pull request
    TransitionRecord         — frozen, immutable audit entry for one state change
    TransitionError          — exception raised when a state change is not in the table
    PullRequestStateMachine  — validates and applies state changes to a PullRequestState
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from review_protocol.types import (
    ALL_STATES,
    EventName,
    FileChange,
    Operation,
    Parties,
    PartyRole,
    PrState,
    Review,
    ReviewComment,
)


# ─── Transition Table ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OperationSpec:
    """One row of the operation table.

    roles: any member of any of these roles may invoke the operation.
    source_states: states from which the operation is legal.
    targets: states the operation may move the pull request to. Empty for
        operations that never change state. A target equal to the current
        state is a self-loop and is not recorded as a transition.
    event: event emitted after a successful invocation, or None for reads.
    deferred_states: states that pass the state guard only so that the
        operation's business rule can reject them with a specific error.
        Never a source of transitions.
    """

    operation: Operation
    roles: frozenset[PartyRole]
    source_states: frozenset[PrState]
    targets: frozenset[PrState] = frozenset()
    event: EventName | None = None
    deferred_states: frozenset[PrState] = frozenset()

    @property
    def mutating(self) -> bool:
        return self.event is not None


_ANY_ROLE: frozenset[PartyRole] = frozenset(PartyRole)
_AUTHOR: frozenset[PartyRole] = frozenset({PartyRole.AUTHOR})
_REVIEWERS: frozenset[PartyRole] = frozenset({PartyRole.REVIEWERS})
_MAINTAINER: frozenset[PartyRole] = frozenset({PartyRole.MAINTAINER})

_REVIEWABLE: frozenset[PrState] = frozenset(
    {PrState.REVIEW_REQUESTED, PrState.IN_REVIEW, PrState.CHANGES_REQUESTED}
)
_EDITABLE: frozenset[PrState] = frozenset(
    {PrState.DRAFT, PrState.OPEN, PrState.REVIEW_REQUESTED, PrState.CHANGES_REQUESTED}
)
_CLOSABLE: frozenset[PrState] = ALL_STATES - {PrState.MERGED, PrState.CLOSED}

OPERATION_SPECS: dict[Operation, OperationSpec] = {
    Operation.MARK_READY_FOR_REVIEW: OperationSpec(
        operation=Operation.MARK_READY_FOR_REVIEW,
        roles=_AUTHOR,
        source_states=frozenset({PrState.DRAFT}),
        targets=frozenset({PrState.OPEN}),
        event=EventName.READY_FOR_REVIEW,
    ),
    Operation.CONVERT_TO_DRAFT: OperationSpec(
        operation=Operation.CONVERT_TO_DRAFT,
        roles=_AUTHOR,
        source_states=frozenset({PrState.OPEN, PrState.REVIEW_REQUESTED}),
        targets=frozenset({PrState.DRAFT}),
        event=EventName.CONVERTED_TO_DRAFT,
    ),
    Operation.REQUEST_REVIEW: OperationSpec(
        operation=Operation.REQUEST_REVIEW,
        roles=_REVIEWERS,
        source_states=frozenset({PrState.OPEN}),
        targets=frozenset({PrState.REVIEW_REQUESTED}),
        event=EventName.REVIEW_REQUESTED,
    ),
    Operation.SUBMIT_REVIEW: OperationSpec(
        operation=Operation.SUBMIT_REVIEW,
        roles=_REVIEWERS,
        source_states=_REVIEWABLE,
        targets=frozenset(
            {PrState.CHANGES_REQUESTED, PrState.APPROVED, PrState.IN_REVIEW}
        ),
        event=EventName.REVIEW_SUBMITTED,
    ),
    Operation.MERGE: OperationSpec(
        operation=Operation.MERGE,
        roles=_MAINTAINER,
        source_states=frozenset({PrState.APPROVED}),
        targets=frozenset({PrState.MERGED}),
        event=EventName.MERGED,
        # Merging before approval is a merge-eligibility failure.
        deferred_states=_REVIEWABLE,
    ),
    Operation.CLOSE: OperationSpec(
        operation=Operation.CLOSE,
        roles=_MAINTAINER,
        source_states=_CLOSABLE,
        targets=frozenset({PrState.CLOSED}),
        event=EventName.CLOSED,
    ),
    Operation.REOPEN: OperationSpec(
        operation=Operation.REOPEN,
        roles=_MAINTAINER,
        source_states=frozenset({PrState.CLOSED}),
        targets=frozenset({PrState.OPEN}),
        event=EventName.REOPENED,
    ),
    Operation.UPDATE_DETAILS: OperationSpec(
        operation=Operation.UPDATE_DETAILS,
        roles=_AUTHOR,
        source_states=_EDITABLE,
        event=EventName.DETAILS_UPDATED,
    ),
    Operation.ADD_FILES: OperationSpec(
        operation=Operation.ADD_FILES,
        roles=_AUTHOR,
        source_states=_EDITABLE,
        event=EventName.FILES_ADDED,
    ),
    Operation.ADD_COMMENT: OperationSpec(
        operation=Operation.ADD_COMMENT,
        roles=frozenset({PartyRole.REVIEWERS, PartyRole.MAINTAINER}),
        source_states=frozenset(
            {
                PrState.OPEN,
                PrState.REVIEW_REQUESTED,
                PrState.IN_REVIEW,
                PrState.CHANGES_REQUESTED,
            }
        ),
        event=EventName.COMMENT_ADDED,
    ),
    Operation.SET_REQUIRED_APPROVALS: OperationSpec(
        operation=Operation.SET_REQUIRED_APPROVALS,
        roles=_MAINTAINER,
        source_states=frozenset(
            {PrState.DRAFT, PrState.OPEN, PrState.REVIEW_REQUESTED}
        ),
        event=EventName.REQUIRED_APPROVALS_CHANGED,
    ),
    Operation.RESPOND_TO_REVIEW: OperationSpec(
        operation=Operation.RESPOND_TO_REVIEW,
        roles=_AUTHOR,
        source_states=_REVIEWABLE,
        event=EventName.AUTHOR_RESPONDED,
    ),
    # Reads: any party member, any state.
    Operation.GET_SUMMARY: OperationSpec(
        operation=Operation.GET_SUMMARY, roles=_ANY_ROLE, source_states=ALL_STATES
    ),
    Operation.GET_REVIEW_COUNT: OperationSpec(
        operation=Operation.GET_REVIEW_COUNT, roles=_ANY_ROLE, source_states=ALL_STATES
    ),
    Operation.GET_APPROVAL_COUNT: OperationSpec(
        operation=Operation.GET_APPROVAL_COUNT, roles=_ANY_ROLE, source_states=ALL_STATES
    ),
    Operation.CAN_MERGE: OperationSpec(
        operation=Operation.CAN_MERGE, roles=_ANY_ROLE, source_states=ALL_STATES
    ),
}

# Every (from, to) pair that some operation may produce. Used by tests and by
# advance() as a second line of defence against table drift.
LEGAL_TRANSITIONS: frozenset[tuple[PrState, PrState]] = frozenset(
    (source, target)
    for spec in OPERATION_SPECS.values()
    for source in spec.source_states
    for target in spec.targets
    if source != target
)


# ─── State Types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TransitionRecord:
    """Immutable audit entry for a single state change.

    Only real changes are recorded; self-loops (e.g. a COMMENT review while
    already in_review) leave transition_history untouched.
    """

    from_state: PrState
    to_state: PrState
    operation: Operation
    triggered_by: str
    timestamp: datetime


@dataclass
class PullRequestState:
    """Mutable runtime state for a single pull request aggregate.

    Owned by PullRequestEngine; operations mutate a clone() and swap it in only
    after every step succeeded, so a PullRequestState that has been exposed
    to a caller is never modified afterwards.

    reviews, discussion and transition_history are append-only. The merge_*
    and merged_* fields are set iff current_state is MERGED; closed_at and
    close_reason iff current_state is CLOSED.
    """

    id: str
    title: str
    description: str
    source_branch: str
    target_branch: str
    parties: Parties
    created_at: datetime
    updated_at: datetime
    file_changes: list[FileChange] = field(default_factory=list)
    current_state: PrState = PrState.DRAFT
    required_approvals: int = 2
    reviews: list[Review] = field(default_factory=list)
    discussion: list[ReviewComment] = field(default_factory=list)
    transition_history: list[TransitionRecord] = field(default_factory=list)
    version: int = 0
    merge_commit_id: str | None = None
    merge_message: str | None = None
    merged_at: datetime | None = None
    merged_by: str | None = None
    closed_at: datetime | None = None
    close_reason: str | None = None

    def clone(self) -> PullRequestState:
        """Return an independent copy suitable for staging a mutation.

        List elements are immutable values, so copying the lists is enough.
        """
        return replace(
            self,
            file_changes=list(self.file_changes),
            reviews=list(self.reviews),
            discussion=list(self.discussion),
            transition_history=list(self.transition_history),
        )


# ─── Exception ────────────────────────────────────────────────────────────────


class TransitionError(Exception):
    """Raised when a requested state change is not in the operation table.

    The engine checks roles and source states before it ever asks for a
    transition, so this signals a programming error rather than a caller error.
    violations is always non-empty.
    """

    def __init__(self, violations: list[str]) -> None:
        self.violations: list[str] = violations
        super().__init__("; ".join(violations))


# ─── State Machine ────────────────────────────────────────────────────────────


class PullRequestStateMachine:
    """Validates and applies lifecycle state changes to one PullRequestState.

    Accepts a custom specs dict for dependency injection (testing).
    Defaults to OPERATION_SPECS.

    Usage:
        sm = PullRequestStateMachine(staged_state)
        if sm.is_permitted(Operation.MERGE):
            sm.advance(PrState.MERGED, operation=Operation.MERGE,
                       triggered_by="maintainer-1", timestamp=now)
    """

    def __init__(
        self,
        state: PullRequestState,
        specs: dict[Operation, OperationSpec] | None = None,
    ) -> None:
        self._state = state
        self._specs: dict[Operation, OperationSpec] = (
            specs if specs is not None else OPERATION_SPECS
        )

    @property
    def state(self) -> PullRequestState:
        return self._state

    def spec(self, operation: Operation) -> OperationSpec:
        return self._specs[operation]

    def is_permitted(self, operation: Operation) -> bool:
        """True if operation is legal from the current state (roles not considered)."""
        spec = self._specs.get(operation)
        return spec is not None and self._state.current_state in spec.source_states

    def available_operations(self) -> list[Operation]:
        """Operations legal from the current state, in table order."""
        return [op for op in self._specs if self.is_permitted(op)]

    def validate_advance(self, to_state: PrState, operation: Operation) -> list[str]:
        """Dry-run validation of a proposed state change.

        Returns a list of violation messages. An empty list means advance()
        would succeed.
        """
        violations: list[str] = []
        current = self._state.current_state
        spec = self._specs.get(operation)

        if spec is None:
            violations.append(f"Operation {operation.value!r} has no entry in the table.")
            return violations

        if current not in spec.source_states:
            violations.append(
                f"{operation.value} is not legal from {current.value!r}."
            )
            return violations

        if to_state == current:
            return violations

        if to_state not in spec.targets:
            violations.append(
                f"{operation.value} cannot move {current.value!r} → {to_state.value!r}. "
                f"Valid targets: {sorted(t.value for t in spec.targets)}"
            )
        elif (current, to_state) not in LEGAL_TRANSITIONS:
            violations.append(
                f"Transition {current.value!r} → {to_state.value!r} is not in the table."
            )
        return violations

    def advance(
        self,
        to_state: PrState,
        *,
        operation: Operation,
        triggered_by: str,
        timestamp: datetime,
    ) -> TransitionRecord | None:
        """Move the state to to_state on behalf of operation.

        Returns the TransitionRecord appended to transition_history, or None
        when to_state equals the current state (self-loop, nothing recorded).

        Raises:
            TransitionError: If the change is not in the operation table.
        """
        violations = self.validate_advance(to_state, operation)
        if violations:
            raise TransitionError(violations)

        current = self._state.current_state
        if to_state == current:
            return None

        record = TransitionRecord(
            from_state=current,
            to_state=to_state,
            operation=operation,
            triggered_by=triggered_by,
            timestamp=timestamp,
        )
        self._state.current_state = to_state
        self._state.transition_history.append(record)
        return record
