"""Authorization guard: who may invoke an operation, and from which state.

Authorization is a pure function of (caller identity, frozen role
assignments, operation). Parties are plain identity sets; there is no
wildcard, inheritance or delegation between roles.

Key types:
    DenialKind           — NOT_IN_ROLE or STATE_NOT_PERMITTED
    Allowed / Denied     — frozen decision values
    Decision             — Allowed | Denied
    AuthorizationGuard   — authorize(), check_state(), roles_of()
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from review_protocol.state_machine import OPERATION_SPECS, OperationSpec
from review_protocol.types import Operation, Parties, PartyRole, PrState


class DenialKind(str, Enum):
    NOT_IN_ROLE = "not_in_role"
    STATE_NOT_PERMITTED = "state_not_permitted"


@dataclass(frozen=True)
class Allowed:
    """The caller may proceed. roles lists the matching roles the caller holds."""

    operation: Operation
    roles: frozenset[PartyRole]


@dataclass(frozen=True)
class Denied:
    """The caller may not proceed. Denial never mutates state."""

    operation: Operation
    kind: DenialKind
    reason: str


Decision = Allowed | Denied


class AuthorizationGuard:
    """Decides whether a caller may invoke an operation on one pull request.

    Accepts a custom specs dict for dependency injection (testing).
    Defaults to OPERATION_SPECS from state_machine.py.
    """

    def __init__(
        self,
        parties: Parties,
        specs: dict[Operation, OperationSpec] | None = None,
    ) -> None:
        self._parties = parties
        self._specs: dict[Operation, OperationSpec] = (
            specs if specs is not None else OPERATION_SPECS
        )

    def roles_of(self, caller: str) -> frozenset[PartyRole]:
        """Every role caller is a member of (possibly empty)."""
        return frozenset(
            role for role in PartyRole if caller in self._parties.members(role)
        )

    def authorize(
        self,
        caller: str,
        required_roles: frozenset[PartyRole],
        operation: Operation,
    ) -> Decision:
        """Set-membership test of caller against the union of required_roles."""
        matched = self.roles_of(caller) & required_roles
        if matched:
            return Allowed(operation=operation, roles=matched)
        wanted = ", ".join(sorted(r.value for r in required_roles))
        return Denied(
            operation=operation,
            kind=DenialKind.NOT_IN_ROLE,
            reason=f"{caller!r} is not a member of [{wanted}]",
        )

    def authorize_operation(self, caller: str, operation: Operation) -> Decision:
        """authorize() against the roles the operation table requires."""
        return self.authorize(caller, self._specs[operation].roles, operation)

    def check_state(self, operation: Operation, current_state: PrState) -> Decision:
        """State guard, reported through the same decision type as authorize().

        Deferred states pass here; the operation's own business rule rejects them.
        """
        spec = self._specs[operation]
        if current_state in spec.source_states or current_state in spec.deferred_states:
            return Allowed(operation=operation, roles=frozenset())
        return Denied(
            operation=operation,
            kind=DenialKind.STATE_NOT_PERMITTED,
            reason=f"{operation.value} is not permitted in state {current_state.value!r}",
        )
