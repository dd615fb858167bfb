"""Type definitions for the pull request review protocol.

All enums are str Enums for JSON/Temporal serialization compatibility.
All value dataclasses are frozen (immutable) and use tuples rather than lists
or sets so they can be shared between staged copies and serialized by the
Temporal data converter without loss.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ─── Enums ────────────────────────────────────────────────────────────────────


class PrState(str, Enum):
    """Pull request lifecycle states.

    MERGED is the only final state. CLOSED can be reopened.
    """

    DRAFT = "draft"
    OPEN = "open"
    REVIEW_REQUESTED = "review_requested"
    IN_REVIEW = "in_review"
    CHANGES_REQUESTED = "changes_requested"
    APPROVED = "approved"
    MERGED = "merged"
    CLOSED = "closed"


class Verdict(str, Enum):
    """Classification of a submitted review."""

    APPROVE = "APPROVE"
    REQUEST_CHANGES = "REQUEST_CHANGES"
    COMMENT = "COMMENT"


class ChangeType(str, Enum):
    """Kind of change recorded for a single file."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    RENAMED = "RENAMED"


class PartyRole(str, Enum):
    """Party roles. Membership is fixed when the pull request is created."""

    AUTHOR = "author"
    REVIEWERS = "reviewers"
    MAINTAINER = "maintainer"


class Operation(str, Enum):
    """Every named operation of the engine, mutating and read-only."""

    CREATE = "create"
    UPDATE_DETAILS = "updateDetails"
    ADD_FILES = "addFiles"
    MARK_READY_FOR_REVIEW = "markReadyForReview"
    CONVERT_TO_DRAFT = "convertToDraft"
    REQUEST_REVIEW = "requestReview"
    SUBMIT_REVIEW = "submitReview"
    ADD_COMMENT = "addComment"
    SET_REQUIRED_APPROVALS = "setRequiredApprovals"
    MERGE = "merge"
    CLOSE = "close"
    REOPEN = "reopen"
    RESPOND_TO_REVIEW = "respondToReview"
    GET_SUMMARY = "getSummary"
    GET_REVIEW_COUNT = "getReviewCount"
    GET_APPROVAL_COUNT = "getApprovalCount"
    CAN_MERGE = "canMerge"


class EventName(str, Enum):
    """Notification event names, one per mutating operation."""

    CREATED = "Created"
    READY_FOR_REVIEW = "ReadyForReview"
    CONVERTED_TO_DRAFT = "ConvertedToDraft"
    DETAILS_UPDATED = "DetailsUpdated"
    FILES_ADDED = "FilesAdded"
    REVIEW_REQUESTED = "ReviewRequested"
    REVIEW_SUBMITTED = "ReviewSubmitted"
    COMMENT_ADDED = "CommentAdded"
    REQUIRED_APPROVALS_CHANGED = "RequiredApprovalsChanged"
    MERGED = "Merged"
    CLOSED = "Closed"
    REOPENED = "Reopened"
    AUTHOR_RESPONDED = "AuthorResponded"


# All eight lifecycle states.
ALL_STATES: frozenset[PrState] = frozenset(PrState)

# States from which no operation can move the pull request.
FINAL_STATES: frozenset[PrState] = frozenset({PrState.MERGED})


# ─── Value Types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FileChange:
    """A single file touched by the pull request.

    old_path is present only for RENAMED changes.
    """

    path: str
    change_type: ChangeType
    lines_added: int = 0
    lines_deleted: int = 0
    old_path: str | None = None


@dataclass(frozen=True)
class ReviewComment:
    """A line comment attached to a review, or a standalone discussion comment.

    author is only set for standalone comments created by addComment; comments
    inside a Review belong to the review's reviewer.
    """

    id: str
    file_path: str
    line_number: int
    text: str
    created_at: datetime
    author: str | None = None


@dataclass(frozen=True)
class Review:
    """Immutable verdict submitted by one reviewer.

    Created only by the engine in response to submitReview. Never updated or
    deleted; an amended opinion is a new Review.
    """

    id: str
    reviewer: str
    verdict: Verdict
    summary: str
    comments: tuple[ReviewComment, ...]
    submitted_at: datetime


@dataclass(frozen=True)
class Parties:
    """Frozen role assignments for one pull request.

    Identities are opaque references (stable string keys); full identity
    details are resolved outside the engine.
    """

    author: str
    reviewers: tuple[str, ...]
    maintainer: str

    def members(self, role: PartyRole) -> frozenset[str]:
        """Return the identities holding role."""
        if role == PartyRole.AUTHOR:
            return frozenset({self.author})
        if role == PartyRole.REVIEWERS:
            return frozenset(self.reviewers)
        return frozenset({self.maintainer})


@dataclass(frozen=True)
class NotificationEvent:
    """Event description handed to the NotificationEmitter after a commit.

    version is the aggregate version the event was committed at, so consumers
    can order and de-duplicate deliveries.
    """

    name: EventName
    pull_request_id: str
    actor: str
    occurred_at: datetime
    version: int
    payload: dict[str, Any] = field(default_factory=dict)
