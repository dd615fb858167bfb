"""Review aggregation and merge validation.

Derived values are computed on demand from the review collection; nothing
here is stored on the aggregate.

Key types:
    ReviewAggregator   — counts and next-state selection for submitReview
    MergeBlocker       — frozen dataclass: blocker_id, message, context
    MergeValidator     — check(state) -> list[MergeBlocker] (empty = mergeable)

Note on has_unresolved_change_requests: it is True as soon as any
REQUEST_CHANGES review exists, even if the same reviewer later approved.
Reconciling a reviewer's later APPROVE against their earlier REQUEST_CHANGES
is an open product decision, so the literal rule is kept.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from review_protocol.state_machine import PullRequestState
from review_protocol.types import PrState, Review, Verdict


class ReviewAggregator:
    """Read-only view over an ordered sequence of reviews."""

    def __init__(self, reviews: Sequence[Review]) -> None:
        self._reviews = reviews

    @property
    def review_count(self) -> int:
        return len(self._reviews)

    @property
    def approval_count(self) -> int:
        return self._count(Verdict.APPROVE)

    @property
    def changes_requested_count(self) -> int:
        return self._count(Verdict.REQUEST_CHANGES)

    @property
    def comment_count(self) -> int:
        return sum(len(r.comments) for r in self._reviews)

    @property
    def has_unresolved_change_requests(self) -> bool:
        return self.changes_requested_count > 0

    @property
    def approvers(self) -> tuple[str, ...]:
        """Distinct reviewers who approved, in order of first approval."""
        return tuple(
            dict.fromkeys(r.reviewer for r in self._reviews if r.verdict == Verdict.APPROVE)
        )

    def latest_verdicts(self) -> dict[str, Verdict]:
        """Most recent verdict per reviewer, in order of first review.

        Informational only; gating always uses the literal counts above.
        """
        latest: dict[str, Verdict] = {}
        for review in self._reviews:
            latest[review.reviewer] = review.verdict
        return latest

    def can_merge(self, current_state: PrState, required_approvals: int) -> bool:
        return (
            current_state == PrState.APPROVED
            and self.approval_count >= required_approvals
            and not self.has_unresolved_change_requests
        )

    def next_state(
        self,
        verdict: Verdict,
        current_state: PrState,
        required_approvals: int,
    ) -> PrState:
        """Select the state after a review with verdict has been appended.

        Precedence: REQUEST_CHANGES always wins; APPROVE reaches approved only
        when the threshold is met (counting the new review); COMMENT moves to
        in_review unless already in_review or changes_requested.
        """
        if verdict == Verdict.REQUEST_CHANGES:
            return PrState.CHANGES_REQUESTED
        if verdict == Verdict.APPROVE:
            if self.approval_count >= required_approvals:
                return PrState.APPROVED
            return PrState.IN_REVIEW
        if current_state in (PrState.IN_REVIEW, PrState.CHANGES_REQUESTED):
            return current_state
        return PrState.IN_REVIEW

    def _count(self, verdict: Verdict) -> int:
        return sum(1 for r in self._reviews if r.verdict == verdict)


@dataclass(frozen=True)
class MergeBlocker:
    """A single reason a merge cannot proceed.

    blocker_id is one of "merge-not-approved", "merge-insufficient-approvals",
    "merge-unresolved-change-requests".
    """

    blocker_id: str
    message: str
    context: dict[str, str] = field(default_factory=dict)


class MergeValidator:
    """Checks merge eligibility. Never raises; returns every blocker found."""

    def check(self, state: PullRequestState) -> list[MergeBlocker]:
        """Return all merge blockers for state. Empty list means mergeable.

        Does NOT short-circuit, so callers see every reason at once.
        """
        aggregator = ReviewAggregator(state.reviews)
        blockers: list[MergeBlocker] = []

        if state.current_state != PrState.APPROVED:
            blockers.append(
                MergeBlocker(
                    blocker_id="merge-not-approved",
                    message=f"Pull request is {state.current_state.value!r}, not 'approved'.",
                    context={"state": state.current_state.value},
                )
            )

        approvals = aggregator.approval_count
        if approvals < state.required_approvals:
            blockers.append(
                MergeBlocker(
                    blocker_id="merge-insufficient-approvals",
                    message=(
                        f"{approvals} approval(s), {state.required_approvals} required."
                    ),
                    context={
                        "approvals": str(approvals),
                        "required": str(state.required_approvals),
                    },
                )
            )

        if aggregator.has_unresolved_change_requests:
            blockers.append(
                MergeBlocker(
                    blocker_id="merge-unresolved-change-requests",
                    message=(
                        f"{aggregator.changes_requested_count} change request(s) unresolved."
                    ),
                    context={"changes_requested": str(aggregator.changes_requested_count)},
                )
            )

        return blockers
