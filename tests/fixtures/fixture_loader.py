"""Combinatorial protocol test fixture loader and test case generator.

Loads protocol.yaml and provides structured access to its axes:
- states: the eight lifecycle state values
- operation_matrix: per mutating operation, invoking role and outcome per state
- review_sequences: ordered reviews with the expected state after each one

Generators produce TestCase objects suitable for pytest.param()
parametrization with readable IDs.

Usage:
    from fixtures.fixture_loader import ProtocolFixture

    fixture = ProtocolFixture()

    @pytest.mark.parametrize(
        "tc",
        [pytest.param(tc, id=tc.id) for tc in fixture.generate_operation_cases()],
    )
    def test_operation(tc):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import yaml

from review_protocol.types import Operation, PartyRole, PrState, Verdict

_STATE_GUARD_VIOLATION = "StateGuardViolation"


# ─── TestCase Dataclasses ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class OperationTestCase:
    """Generated test case for one (operation, starting state) pair.

    Fields:
        operation: The mutating operation under test.
        role: Role whose canonical member invokes the operation.
        source_state: State the pull request is driven to first.
        expected_state: Resulting state on success, or None if an error is expected.
        expected_error: Error class name on failure, or None on success.
        id: Pytest-friendly identifier (used in pytest.param(id=...)).
    """

    operation: Operation
    role: PartyRole
    source_state: PrState
    expected_state: PrState | None
    expected_error: str | None
    id: str

    @property
    def expected_success(self) -> bool:
        return self.expected_error is None


@dataclass(frozen=True)
class ReviewSequenceTestCase:
    """Generated test case for an ordered sequence of reviews.

    Fields:
        name: Fixture key (e.g. "two_approvals").
        required_approvals: Threshold set at creation.
        reviews: (reviewer, verdict) pairs, submitted in order.
        expected_states: State after each review; same length as reviews.
        approval_count / changes_requested_count / can_merge: final derived values.
        description: Human-readable description.
        id: Pytest-friendly identifier.
    """

    name: str
    required_approvals: int
    reviews: tuple[tuple[str, Verdict], ...]
    expected_states: tuple[PrState, ...]
    approval_count: int
    changes_requested_count: int
    can_merge: bool
    description: str
    id: str


# ─── ProtocolFixture ──────────────────────────────────────────────────────────


class ProtocolFixture:
    """Load and generate combinatorial test cases from protocol.yaml."""

    def __init__(self, fixture_path: str | Path | None = None) -> None:
        """Initialize from protocol.yaml.

        Args:
            fixture_path: Path to protocol.yaml. If None, uses the default
                location (same directory as this module).
        """
        if fixture_path is None:
            fixture_path = Path(__file__).parent / "protocol.yaml"
        self._path = Path(fixture_path)

        with open(self._path) as f:
            self._data: dict = yaml.safe_load(f)

    # ─── Axis Properties ──────────────────────────────────────────────────────

    @property
    def states(self) -> list[str]:
        """Lifecycle state values, in declaration order."""
        return self._data.get("states", [])

    @property
    def operation_matrix(self) -> dict:
        """Raw operation_matrix axis from YAML (keyed by operation value)."""
        return self._data.get("operation_matrix", {})

    @property
    def review_sequences(self) -> dict:
        """Raw review_sequences axis from YAML (keyed by sequence name)."""
        return self._data.get("review_sequences", {})

    # ─── Generators ───────────────────────────────────────────────────────────

    def generate_operation_cases(self) -> Iterator[OperationTestCase]:
        """Cross every operation in the matrix with every state.

        States missing from an operation's outcomes expect StateGuardViolation.

        Yields:
            OperationTestCase: One case per (operation, state) pair.
        """
        for op_value, entry in self.operation_matrix.items():
            operation = Operation(op_value)
            role = PartyRole(entry["role"])
            outcomes: dict[str, str] = entry.get("outcomes", {})
            for state_value in self.states:
                outcome = outcomes.get(state_value, _STATE_GUARD_VIOLATION)
                if outcome in self.states:
                    expected_state, expected_error = PrState(outcome), None
                else:
                    expected_state, expected_error = None, outcome
                yield OperationTestCase(
                    operation=operation,
                    role=role,
                    source_state=PrState(state_value),
                    expected_state=expected_state,
                    expected_error=expected_error,
                    id=f"{op_value}@{state_value}",
                )

    def generate_review_sequence_cases(self) -> Iterator[ReviewSequenceTestCase]:
        """Yield one case per review_sequences entry."""
        for name, entry in self.review_sequences.items():
            reviews = tuple(
                (reviewer, Verdict(verdict)) for reviewer, verdict in entry["reviews"]
            )
            expected = tuple(PrState(s) for s in entry["expected_states"])
            yield ReviewSequenceTestCase(
                name=name,
                required_approvals=entry["required_approvals"],
                reviews=reviews,
                expected_states=expected,
                approval_count=entry["approval_count"],
                changes_requested_count=entry["changes_requested_count"],
                can_merge=entry["can_merge"],
                description=entry.get("description", name),
                id=f"reviews:{name}",
            )
