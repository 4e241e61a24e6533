"""Core data models for gitstamp.

A commit is never modified: its timestamp proof lives beside it in a git
notes ref. These models describe the commit as read from the repository,
whether a proof is attached, and what each lifecycle operation reported.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Action(str, Enum):
    """Top-level commands."""

    CREATE = "create"
    VERIFY = "verify"
    EXAMINE = "examine"
    REMOVE = "remove"
    PUSH = "push"
    FETCH = "fetch"

    @property
    def per_revision(self) -> bool:
        """True for actions that run once per revision."""
        return self not in (Action.PUSH, Action.FETCH)


class ProofState(str, Enum):
    """Whether the notes ref holds a proof for a commit."""

    NO_PROOF = "no_proof"
    HAS_PROOF = "has_proof"


class ResultStatus(str, Enum):
    """Outcome of one lifecycle operation on one revision."""

    STAMPED = "stamped"
    VERIFIED = "verified"
    NO_TIMESTAMP = "no_timestamp"
    REMOVED = "removed"
    SKIPPED = "skipped"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Revision
# ---------------------------------------------------------------------------


class Revision(BaseModel):
    """A resolved commit.

    Attributes:
        id: Full hex object id.
        short_id: Abbreviated id as git would print it.
        subject: First line of the commit message.
        commit_time: Committer time recorded in the commit itself.
    """

    id: str
    short_id: str
    subject: str = ""
    commit_time: Optional[datetime] = None

    @property
    def digest(self) -> bytes:
        """The object id as raw bytes, submitted to the TSA as the digest."""
        return bytes.fromhex(self.id)

    model_config = {"frozen": True}


class PreparedRevision(BaseModel):
    """A revision plus the proof state found for it by ``prepare``."""

    spec: str
    revision: Revision
    state: ProofState

    @property
    def has_proof(self) -> bool:
        return self.state == ProofState.HAS_PROOF

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class OperationResult(BaseModel):
    """What one operation did to one revision.

    Attributes:
        action: The action that ran.
        spec: The revision spec as the user gave it.
        revision: The resolved revision (None if resolution failed).
        status: Outcome.
        signed_time: TSA-certified time, when a proof was verified.
        text: Full decoded reply (``examine`` only).
        error: Failure message when ``status`` is FAILED.
    """

    action: Action
    spec: str
    revision: Optional[Revision] = None
    status: ResultStatus
    signed_time: Optional[datetime] = None
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != ResultStatus.FAILED


class BatchResult(BaseModel):
    """Aggregate of one action applied to a sequence of revisions."""

    action: Action
    results: list[OperationResult] = Field(default_factory=list)

    @property
    def failures(self) -> list[OperationResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        """True when no item failed. An empty batch succeeds."""
        return not self.failures
