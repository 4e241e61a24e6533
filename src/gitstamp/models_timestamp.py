"""Pydantic models for RFC 3161 timestamping of git commits.

These models represent the run configuration (TSA endpoint, trust anchor,
notes ref, throttling) and the decoded TimeStampResp a Time Stamping
Authority sends back. The reply is what gets stored in git notes; this
model is only its parsed view.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class HashAlgorithm(str, Enum):
    """Hash algorithms a commit id can be submitted as.

    git object ids are SHA-1 (20 bytes) in classic repositories and
    SHA-256 (32 bytes) in ``objectFormat=sha256`` repositories. The id
    itself is the digest, so the algorithm follows from its length.
    """

    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @classmethod
    def for_digest(cls, digest: bytes) -> "HashAlgorithm":
        """Return the algorithm whose output size matches ``digest``.

        Raises:
            ValueError: If no supported algorithm has that size.
        """
        try:
            return _BY_SIZE[len(digest)]
        except KeyError:
            raise ValueError(
                f"No hash algorithm produces {len(digest)}-byte digests"
            ) from None


_BY_SIZE: dict[int, HashAlgorithm] = {
    20: HashAlgorithm.SHA1,
    32: HashAlgorithm.SHA256,
    48: HashAlgorithm.SHA384,
    64: HashAlgorithm.SHA512,
}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def _default_cert_path() -> str:
    return str(Path.home() / ".config" / "gitstamp" / "tsa.crt")


class StampConfig(BaseModel):
    """Immutable configuration for one gitstamp run.

    Attributes:
        tsa_url: URL of the Time Stamping Authority endpoint.
        cert_path: PEM or DER file holding the TSA certificate(s) used as
            trust anchor.
        delay_seconds: Pause before every create submission after the
            first one in a run.
        notes_ref: git notes ref holding the proofs.
        remote: Remote used by push and fetch.
        timeout_seconds: HTTP request timeout in seconds.
        nonce: Whether to include a random nonce in requests (prevents replay).
        request_cert: Whether to request the TSA certificate in the response.
        verbose: Print full commit ids instead of abbreviated ones.
        include_local_time: Also print each commit's own committer time.
    """

    tsa_url: str = "https://freetsa.org/tsr"
    cert_path: str = Field(default_factory=_default_cert_path)
    delay_seconds: float = Field(default=1.0, ge=0)
    notes_ref: str = "refs/notes/timestamps"
    remote: str = "origin"
    timeout_seconds: int = Field(default=30, gt=0)
    nonce: bool = True
    request_cert: bool = True
    verbose: bool = False
    include_local_time: bool = False

    model_config = {"frozen": True}

    @field_validator("notes_ref")
    @classmethod
    def _qualify_ref(cls, value: str) -> str:
        # git notes --ref expands short names the same way
        value = value.strip()
        if not value:
            raise ValueError("notes ref must not be empty")
        if value.startswith("refs/"):
            return value
        if value.startswith("notes/"):
            return f"refs/{value}"
        return f"refs/notes/{value}"


# ---------------------------------------------------------------------------
# TSA reply
# ---------------------------------------------------------------------------


class TimestampReply(BaseModel):
    """A decoded RFC 3161 TimeStampResp.

    Attributes:
        status: PKI status code (0 = granted, 1 = granted with mods).
        status_string: Free text the TSA attached to the status.
        signed_time: The time certified by the TSA (genTime).
        version: TSTInfo version (1 for every RFC 3161 token).
        serial_number: Serial assigned by the TSA to this timestamp.
        policy_id: TSA policy OID under which the timestamp was issued.
        hash_algorithm: Algorithm named in the message imprint.
        message_imprint: Hex-encoded digest that was timestamped.
        nonce: Nonce echoed back by the TSA (if one was sent).
        accuracy_seconds: Time accuracy claimed by the TSA in seconds.
        ordering: The TSA's ordering flag.
        tsa_name: Name the TSA put in the token, if any.
        token_der: DER-encoded TimeStampToken (ContentInfo).
    """

    status: int
    status_string: Optional[str] = None
    signed_time: Optional[datetime] = None
    version: Optional[int] = None
    serial_number: Optional[int] = None
    policy_id: Optional[str] = None
    hash_algorithm: Optional[str] = None
    message_imprint: Optional[str] = None
    nonce: Optional[int] = None
    accuracy_seconds: Optional[float] = None
    ordering: bool = False
    tsa_name: Optional[str] = None
    token_der: Optional[bytes] = None

    @property
    def is_granted(self) -> bool:
        """Return True if the TSA granted the timestamp request."""
        return self.status in (0, 1)
