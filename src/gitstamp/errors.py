"""Error types for gitstamp.

Every failure a single revision can hit has its own class so the batch
runner and the CLI can report it precisely. Absence of a timestamp is not
an error and has no class here.
"""

from typing import Optional, Sequence


class GitStampError(Exception):
    """Base exception for all gitstamp errors."""


class ResolutionError(GitStampError):
    """Raised when a revision spec does not name a known commit."""

    def __init__(self, spec: str, reason: str = "unknown revision") -> None:
        self.spec = spec
        self.reason = reason
        super().__init__(f"Cannot resolve {spec!r}: {reason}")


class ProofInvalid(GitStampError):
    """Raised when a timestamp reply fails verification.

    Covers a bad signature, a trust anchor that does not match or has
    expired, a digest that belongs to another commit, a rejected reply,
    and a stored blob that no longer decodes.
    """

    def __init__(self, revision_id: str, reason: str) -> None:
        self.revision_id = revision_id
        self.reason = reason
        super().__init__(f"Invalid timestamp for {revision_id[:12]}: {reason}")


class StoreCorruption(GitStampError):
    """Raised when a proof verified before writing but not after re-reading."""

    def __init__(self, revision_id: str, reason: str) -> None:
        self.revision_id = revision_id
        self.reason = reason
        super().__init__(
            f"Stored timestamp for {revision_id[:12]} is corrupt: {reason}"
        )


class AlreadyExists(GitStampError):
    """Raised when a note already exists for the revision being written."""

    def __init__(self, revision_id: str) -> None:
        self.revision_id = revision_id
        super().__init__(f"A timestamp already exists for {revision_id[:12]}")


class InvalidAction(GitStampError):
    """Raised for an unrecognized top-level command."""

    def __init__(self, action: str, choices: Sequence[str] = ()) -> None:
        self.action = action
        self.choices = tuple(choices)
        msg = f"Invalid action: {action!r}"
        if self.choices:
            msg += f" (choose from {', '.join(self.choices)})"
        super().__init__(msg)


class SubmissionError(GitStampError):
    """Raised when the TSA cannot be reached or answers with an HTTP error."""

    def __init__(self, url: str, cause: Optional[Exception] = None) -> None:
        self.url = url
        self.cause = cause
        msg = f"TSA request to {url} failed"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)


class GitCommandError(GitStampError):
    """Raised when a git subprocess exits non-zero."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        stderr: str = "",
    ) -> None:
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        msg = f"git {' '.join(self.command)} failed (rc={returncode})"
        if self.stderr:
            msg += f": {self.stderr}"
        super().__init__(msg)


class ConfigurationError(GitStampError):
    """Raised for an unusable configuration value or trust anchor."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Configuration error: {reason}")
