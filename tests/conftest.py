"""Shared pytest fixtures and helpers for the review_protocol test suite.

Provides:
- Module-level helper functions (_make_engine, _advance_to, _create_request)
  importable directly by any test module that needs them without going
  through pytest fixture injection.
- Deterministic clock and id factory so timestamps and ids are predictable.
- Module-level _PROTOCOL_FIXTURE singleton for YAML-driven combinatorial tests.

Canonical parties:
    AUTHOR = "alice", REVIEWERS = ("bob", "carol"), MAINTAINER = "dave",
    OUTSIDER = "mallory" (member of no role).

Module-level helpers (import directly):
    _create_request(**overrides) — a valid CreatePullRequest.
    _make_engine(**overrides)    — PullRequestEngine in draft, deterministic.
    _advance_to(engine, target)  — drive an engine to target via real operations.
    _caller_for(role)            — canonical identity holding role.

pytest fixtures:
    clock, ids       — fresh StepClock / SequentialIds.
    engine           — fresh engine in draft.
    approved_engine  — engine driven to approved (2 of 2 approvals).
    protocol_fixture — ProtocolFixture singleton (YAML-driven test data).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from review_protocol.config import ProtocolConfig
from review_protocol.engine import CreatePullRequest, PullRequestEngine
from review_protocol.types import ChangeType, FileChange, PartyRole, PrState, Verdict

# Import after production imports so pythonpath=scripts:tests resolves fixtures/
from fixtures.fixture_loader import ProtocolFixture


# ─── Protocol Fixture Singleton ───────────────────────────────────────────────
# Loaded once at module import time; shared across all test modules.

_PROTOCOL_FIXTURE = ProtocolFixture()


# ─── Canonical Parties ────────────────────────────────────────────────────────

AUTHOR = "alice"
REVIEWERS = ("bob", "carol")
MAINTAINER = "dave"
OUTSIDER = "mallory"
PR_ID = "pr-1"

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def _caller_for(role: PartyRole) -> str:
    return {
        PartyRole.AUTHOR: AUTHOR,
        PartyRole.REVIEWERS: REVIEWERS[0],
        PartyRole.MAINTAINER: MAINTAINER,
    }[role]


# ─── Deterministic Collaborators ──────────────────────────────────────────────


class StepClock:
    """Clock that advances one second per call, starting at T0."""

    def __init__(self, start: datetime = T0) -> None:
        self._next = start
        self.calls = 0

    def __call__(self) -> datetime:
        now = self._next
        self._next = now + timedelta(seconds=1)
        self.calls += 1
        return now


class SequentialIds:
    """Id factory returning id-0001, id-0002, ..."""

    def __init__(self) -> None:
        self._n = 0

    def __call__(self) -> str:
        self._n += 1
        return f"id-{self._n:04d}"


# ─── Module-Level Helpers ─────────────────────────────────────────────────────


def _create_request(**overrides) -> CreatePullRequest:
    """Return a valid CreatePullRequest; keyword overrides replace fields."""
    fields = dict(
        caller=AUTHOR,
        title="Add retry budget to fetcher",
        description="Bounds retries per request.",
        source_branch="feature/retry-budget",
        target_branch="main",
        file_changes=(
            FileChange("src/fetcher.py", ChangeType.MODIFIED, lines_added=40, lines_deleted=6),
            FileChange("tests/test_fetcher.py", ChangeType.ADDED, lines_added=55),
        ),
        reviewers=REVIEWERS,
        maintainer=MAINTAINER,
        required_approvals=2,
    )
    fields.update(overrides)
    return CreatePullRequest(**fields)


def _make_engine(
    *,
    clock: StepClock | None = None,
    ids: SequentialIds | None = None,
    config: ProtocolConfig | None = None,
    **overrides,
) -> PullRequestEngine:
    """Return a PullRequestEngine in draft with deterministic clock and ids."""
    engine, _ = PullRequestEngine.create(
        _create_request(**overrides),
        pull_request_id=PR_ID,
        clock=clock if clock is not None else StepClock(),
        id_factory=ids if ids is not None else SequentialIds(),
        config=config,
    )
    return engine


def _advance_to(engine: PullRequestEngine, target: PrState) -> None:
    """Drive a draft engine to target using only public operations.

    Paths (required_approvals must be len(REVIEWERS) or less for APPROVED):
        open              — markReadyForReview
        review_requested  — + requestReview
        in_review         — + COMMENT review
        changes_requested — + REQUEST_CHANGES review
        approved          — + APPROVE from reviewers until the threshold is met
        merged            — approved + merge
        closed            — open + close
    """
    assert engine.state.current_state == PrState.DRAFT, "start from draft"
    if target == PrState.DRAFT:
        return
    engine.mark_ready_for_review(AUTHOR)
    if target == PrState.OPEN:
        return
    if target == PrState.CLOSED:
        engine.close(MAINTAINER, "superseded")
        return
    engine.request_review(REVIEWERS[0])
    if target == PrState.REVIEW_REQUESTED:
        return
    if target == PrState.IN_REVIEW:
        engine.submit_review(REVIEWERS[0], Verdict.COMMENT, "Looking")
        return
    if target == PrState.CHANGES_REQUESTED:
        engine.submit_review(REVIEWERS[0], Verdict.REQUEST_CHANGES, "Needs tests")
        return
    for reviewer in REVIEWERS[: engine.state.required_approvals]:
        engine.submit_review(reviewer, Verdict.APPROVE, "LGTM")
    assert engine.state.current_state == PrState.APPROVED
    if target == PrState.APPROVED:
        return
    engine.merge(MAINTAINER, "Merge retry budget")


# ─── pytest Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def engine(clock: StepClock, ids: SequentialIds) -> PullRequestEngine:
    return _make_engine(clock=clock, ids=ids)


@pytest.fixture
def approved_engine(engine: PullRequestEngine) -> PullRequestEngine:
    """Engine driven to approved with both reviewers approving."""
    _advance_to(engine, PrState.APPROVED)
    return engine


@pytest.fixture
def protocol_fixture() -> ProtocolFixture:
    """Return the module-level ProtocolFixture singleton."""
    return _PROTOCOL_FIXTURE
