"""Pull Request Review Protocol Engine — public API.

This package implements the lifecycle of a single pull request: who may do
what, in which state, and what happens to the aggregate as a result. It
performs no branch operations; merge only records metadata.

Public API (re-exported from submodules):

Enums:
    PrState       — 8 values: draft, open, review_requested, in_review,
                    changes_requested, approved, merged, closed
    Verdict       — APPROVE, REQUEST_CHANGES, COMMENT
    ChangeType    — ADDED, MODIFIED, DELETED, RENAMED
    PartyRole     — author, reviewers, maintainer
    Operation     — every mutating and read-only operation
    EventName     — one notification event name per mutating operation
    DenialKind    — not_in_role, state_not_permitted

Value Types (frozen dataclasses):
    FileChange, ReviewComment, Review, Parties, NotificationEvent

State Machine (from state_machine.py):
    OperationSpec            — frozen operation table row
    OPERATION_SPECS          — dict[Operation, OperationSpec]
    LEGAL_TRANSITIONS        — every (from, to) pair the table allows
    PullRequestState         — mutable aggregate state
    TransitionRecord         — frozen audit entry for one state change
    TransitionError          — raised for a transition outside the table
    PullRequestStateMachine  — validates and applies state changes

Authorization (from guard.py):
    Allowed, Denied, AuthorizationGuard

Review Aggregation (from aggregator.py):
    ReviewAggregator, MergeBlocker, MergeValidator

Engine (from engine.py):
    PullRequestEngine   — aggregate root; one method per operation
    CreatePullRequest ... RespondToReview — frozen request types
    OperationResult, OperationOutcome, PullRequestSummary

Errors (from errors.py):
    ProtocolError and its subclasses AuthorizationDenied, StateGuardViolation,
    ValidationFailed, MergeNotEligible, ConcurrentModification,
    PersistenceFailed, PullRequestNotFound

Configuration (from config.py):
    ProtocolConfig, DEFAULT_CONFIG

Collaborator Interfaces (runtime_checkable, from interfaces.py):
    PullRequestStore, NotificationEmitter, EventLog

Hosts:
    PullRequestService   — in-process host (service.py)
    PullRequestWorkflow  — Temporal host, imported from review_protocol.workflow
"""

from review_protocol.aggregator import (
    MergeBlocker,
    MergeValidator,
    ReviewAggregator,
)
from review_protocol.config import (
    DEFAULT_CONFIG,
    ProtocolConfig,
)
from review_protocol.engine import (
    AddComment,
    AddFiles,
    Close,
    CommentDraft,
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
from review_protocol.guard import (
    Allowed,
    AuthorizationGuard,
    Denied,
    DenialKind,
)
from review_protocol.interfaces import (
    EventLog,
    NotificationEmitter,
    PullRequestStore,
)
from review_protocol.service import PullRequestService
from review_protocol.state_machine import (
    LEGAL_TRANSITIONS,
    OPERATION_SPECS,
    OperationSpec,
    PullRequestState,
    PullRequestStateMachine,
    TransitionError,
    TransitionRecord,
)
from review_protocol.types import (
    ALL_STATES,
    FINAL_STATES,
    ChangeType,
    EventName,
    FileChange,
    NotificationEvent,
    Operation,
    Parties,
    PartyRole,
    PrState,
    Review,
    ReviewComment,
    Verdict,
)

__all__ = [
    # Enums
    "PrState",
    "Verdict",
    "ChangeType",
    "PartyRole",
    "Operation",
    "EventName",
    "DenialKind",
    # Value types
    "FileChange",
    "ReviewComment",
    "Review",
    "Parties",
    "NotificationEvent",
    "ALL_STATES",
    "FINAL_STATES",
    # State machine
    "OperationSpec",
    "OPERATION_SPECS",
    "LEGAL_TRANSITIONS",
    "PullRequestState",
    "TransitionRecord",
    "TransitionError",
    "PullRequestStateMachine",
    # Authorization
    "Allowed",
    "Denied",
    "AuthorizationGuard",
    # Review aggregation
    "ReviewAggregator",
    "MergeBlocker",
    "MergeValidator",
    # Engine
    "PullRequestEngine",
    "CommentDraft",
    "CreatePullRequest",
    "UpdateDetails",
    "AddFiles",
    "MarkReadyForReview",
    "ConvertToDraft",
    "RequestReview",
    "SubmitReview",
    "AddComment",
    "SetRequiredApprovals",
    "Merge",
    "Close",
    "Reopen",
    "RespondToReview",
    "OperationRequest",
    "OperationResult",
    "OperationOutcome",
    "PullRequestSummary",
    # Errors
    "ProtocolError",
    "AuthorizationDenied",
    "StateGuardViolation",
    "ValidationFailed",
    "MergeNotEligible",
    "ConcurrentModification",
    "PersistenceFailed",
    "PullRequestNotFound",
    # Configuration
    "ProtocolConfig",
    "DEFAULT_CONFIG",
    # Interfaces
    "PullRequestStore",
    "NotificationEmitter",
    "EventLog",
    # Hosts
    "PullRequestService",
]
