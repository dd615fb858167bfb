"""Tests for review_protocol.config and review_protocol.errors.

BDD Acceptance Criteria:
    AC1: ProtocolConfig defaults match the protocol limits; an out-of-range
         default threshold is rejected at construction.
    AC2: ProtocolConfig.from_env() reads REVIEW_DEFAULT_REQUIRED_APPROVALS and
         rejects non-integers.
    AC3: Every error is a ProtocolError and carries its structured fields.
"""

from __future__ import annotations

import pytest

from review_protocol.config import (
    DEFAULT_CONFIG,
    ENV_DEFAULT_REQUIRED_APPROVALS,
    ProtocolConfig,
)
from review_protocol.errors import (
    AuthorizationDenied,
    ConcurrentModification,
    MergeNotEligible,
    PersistenceFailed,
    ProtocolError,
    PullRequestNotFound,
    StateGuardViolation,
    ValidationFailed,
)
from review_protocol.types import Operation, PartyRole, PrState


class TestAC1ConfigDefaults:
    def test_defaults(self) -> None:
        assert DEFAULT_CONFIG.title_max_length == 200
        assert DEFAULT_CONFIG.min_required_approvals == 1
        assert DEFAULT_CONFIG.max_required_approvals == 10
        assert DEFAULT_CONFIG.default_required_approvals == 2

    @pytest.mark.parametrize("value", [0, 11])
    def test_default_outside_range_rejected(self, value: int) -> None:
        with pytest.raises(ValueError):
            ProtocolConfig(default_required_approvals=value)


class TestAC2ConfigFromEnv:
    def test_unset_uses_defaults(self) -> None:
        assert ProtocolConfig.from_env({}) == ProtocolConfig()

    def test_blank_uses_defaults(self) -> None:
        assert ProtocolConfig.from_env({ENV_DEFAULT_REQUIRED_APPROVALS: "  "}) == ProtocolConfig()

    def test_reads_threshold(self) -> None:
        config = ProtocolConfig.from_env({ENV_DEFAULT_REQUIRED_APPROVALS: "3"})
        assert config.default_required_approvals == 3

    def test_non_integer_rejected(self) -> None:
        with pytest.raises(ValueError, match=ENV_DEFAULT_REQUIRED_APPROVALS):
            ProtocolConfig.from_env({ENV_DEFAULT_REQUIRED_APPROVALS: "two"})

    def test_out_of_range_rejected(self) -> None:
        with pytest.raises(ValueError):
            ProtocolConfig.from_env({ENV_DEFAULT_REQUIRED_APPROVALS: "42"})

    def test_reads_os_environ_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_DEFAULT_REQUIRED_APPROVALS, "4")
        assert ProtocolConfig.from_env().default_required_approvals == 4


class TestAC3Errors:
    @pytest.mark.parametrize(
        "error",
        [
            AuthorizationDenied(Operation.MERGE, "alice", {PartyRole.MAINTAINER}),
            StateGuardViolation(Operation.MERGE, PrState.DRAFT, {PrState.APPROVED}),
            ValidationFailed("title-empty", "Title must not be empty."),
            MergeNotEligible(["not approved"]),
            ConcurrentModification("pr-1", 2, 3),
            PersistenceFailed("pr-1", "disk full"),
            PullRequestNotFound("pr-1"),
        ],
        ids=lambda e: type(e).__name__,
    )
    def test_all_are_protocol_errors(self, error: ProtocolError) -> None:
        assert isinstance(error, ProtocolError)
        assert str(error)

    def test_authorization_denied_fields(self) -> None:
        error = AuthorizationDenied(
            Operation.ADD_COMMENT, "alice", {PartyRole.REVIEWERS, PartyRole.MAINTAINER}
        )
        assert error.caller == "alice"
        assert error.required_roles == (PartyRole.MAINTAINER, PartyRole.REVIEWERS)
        assert "addComment" in str(error)

    def test_state_guard_violation_fields(self) -> None:
        error = StateGuardViolation(Operation.MERGE, PrState.DRAFT, {PrState.APPROVED})
        assert error.current_state == PrState.DRAFT
        assert error.allowed_states == (PrState.APPROVED,)

    def test_validation_failed_single(self) -> None:
        error = ValidationFailed("line-number-positive", "bad line")
        assert error.rule == "line-number-positive"
        assert error.violations == [("line-number-positive", "bad line")]

    def test_validation_failed_from_violations(self) -> None:
        error = ValidationFailed.from_violations(
            [("title-empty", "no title"), ("branches-identical", "same branch")]
        )
        assert error.rule == "title-empty"
        assert [rule for rule, _ in error.violations] == ["title-empty", "branches-identical"]
        assert "branches-identical" in str(error)

    def test_merge_not_eligible_lists_blockers(self) -> None:
        error = MergeNotEligible(["a", "b"])
        assert error.blockers == ["a", "b"]
        assert str(error) == "a; b"

    def test_concurrent_modification_fields(self) -> None:
        error = ConcurrentModification("pr-1", expected=2, actual=3)
        assert (error.expected, error.actual) == (2, 3)
