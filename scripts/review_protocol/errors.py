"""Typed failure taxonomy for the review protocol engine.

Every failure aborts the operation with zero observable state change. The
kinds are kept distinct so callers never confuse an authorization problem
with a state problem or a validation problem, even if a transport layer maps
several of them onto the same status code.
"""

from __future__ import annotations

from collections.abc import Iterable

from review_protocol.types import Operation, PartyRole, PrState


class ProtocolError(Exception):
    """Base class for every failure raised by the engine and its hosts."""


class AuthorizationDenied(ProtocolError):
    """The caller is not a member of any role permitted for the operation."""

    def __init__(
        self,
        operation: Operation,
        caller: str,
        required_roles: Iterable[PartyRole],
    ) -> None:
        self.operation = operation
        self.caller = caller
        self.required_roles: tuple[PartyRole, ...] = tuple(
            sorted(required_roles, key=lambda r: r.value)
        )
        roles = ", ".join(r.value for r in self.required_roles)
        super().__init__(
            f"{caller!r} is not authorized for {operation.value}: requires one of [{roles}]"
        )


class StateGuardViolation(ProtocolError):
    """The operation is not legal from the aggregate's current state."""

    def __init__(
        self,
        operation: Operation,
        current_state: PrState,
        allowed_states: Iterable[PrState],
    ) -> None:
        self.operation = operation
        self.current_state = current_state
        self.allowed_states: tuple[PrState, ...] = tuple(
            sorted(allowed_states, key=lambda s: s.value)
        )
        allowed = ", ".join(s.value for s in self.allowed_states)
        super().__init__(
            f"{operation.value} is not permitted in state {current_state.value!r}; "
            f"allowed states: [{allowed}]"
        )


class ValidationFailed(ProtocolError):
    """A structural or business rule was violated.

    rule names the first rule that failed (e.g. "title-empty"). violations
    lists every (rule, message) pair found; it has more than one entry only
    when several fields were validated together, as in create().
    """

    def __init__(self, rule: str, message: str) -> None:
        self.rule = rule
        self.violations: list[tuple[str, str]] = [(rule, message)]
        super().__init__(f"[{rule}] {message}")

    @classmethod
    def from_violations(cls, violations: list[tuple[str, str]]) -> ValidationFailed:
        """Build one exception carrying every violation. violations must be non-empty."""
        rule, message = violations[0]
        error = cls(rule, message)
        error.violations = list(violations)
        if len(violations) > 1:
            error.args = ("; ".join(f"[{r}] {m}" for r, m in violations),)
        return error


class MergeNotEligible(ProtocolError):
    """Merge attempted without enough approvals or with unresolved change requests.

    blockers is the non-empty list of human-readable reasons.
    """

    def __init__(self, blockers: list[str]) -> None:
        self.blockers: list[str] = blockers
        super().__init__("; ".join(blockers))


class ConcurrentModification(ProtocolError):
    """The aggregate's version changed between load and commit."""

    def __init__(self, pull_request_id: str, expected: int, actual: int) -> None:
        self.pull_request_id = pull_request_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Pull request {pull_request_id!r} changed concurrently: "
            f"expected version {expected}, found {actual}"
        )


class PersistenceFailed(ProtocolError):
    """Persisting a committed transition failed; the transition was rolled back."""

    def __init__(self, pull_request_id: str, reason: str) -> None:
        self.pull_request_id = pull_request_id
        self.reason = reason
        super().__init__(f"Failed to persist pull request {pull_request_id!r}: {reason}")


class PullRequestNotFound(ProtocolError):
    """No aggregate exists with the given id."""

    def __init__(self, pull_request_id: str) -> None:
        self.pull_request_id = pull_request_id
        super().__init__(f"Pull request {pull_request_id!r} not found")
