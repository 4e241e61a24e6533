"""Timestamp lifecycle for a single commit.

A commit either has a proof in the notes ref or it does not. ``prepare``
finds out which; ``create``, ``verify``, ``examine`` and ``remove`` then
run the matching transition:

    NO_PROOF  --create-->  HAS_PROOF  --remove-->  NO_PROOF

``create`` on HAS_PROOF only re-verifies, so a stored proof is never
overwritten. A reply is verified before it is written and again after it
is read back. Nothing that failed the first check reaches the store, and
a note that fails the second check is removed again.
"""

import base64
import binascii
import logging
from typing import Optional

from .errors import (
    AlreadyExists,
    GitStampError,
    InvalidAction,
    ProofInvalid,
    ResolutionError,
    StoreCorruption,
)
from .gate import RequestGate
from .models import (
    Action,
    OperationResult,
    PreparedRevision,
    ProofState,
    ResultStatus,
)
from .models_timestamp import HashAlgorithm, StampConfig, TimestampReply

logger = logging.getLogger("gitstamp.manager")


class TimestampManager:
    """Decides and executes lifecycle transitions.

    Args:
        repo: Revision resolver (:class:`gitstamp.repo.GitRepository`).
        store: Proof store (:class:`gitstamp.store.NotesStore`).
        tsa: TSA client (:class:`gitstamp.timestamp.TimestampAuthority`).
        config: Run configuration.
        gate: Throttle shared by every ``create`` of the run. Built from
            ``config.delay_seconds`` when omitted.
    """

    def __init__(
        self,
        repo,
        store,
        tsa,
        config: StampConfig,
        gate: Optional[RequestGate] = None,
    ) -> None:
        self.repo = repo
        self.store = store
        self.tsa = tsa
        self.config = config
        self.gate = gate or RequestGate(config.delay_seconds)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def prepare(self, spec: str) -> PreparedRevision:
        """Resolve a revision spec and look up its proof.

        Raises:
            ResolutionError: If the spec does not name a commit, or the
                commit id is not a digest any TSA accepts.
        """
        commit_id = self.repo.resolve(spec)
        revision = self.repo.revision(commit_id)
        try:
            HashAlgorithm.for_digest(revision.digest)
        except ValueError as exc:
            raise ResolutionError(spec, str(exc)) from exc

        blob = self.store.get(commit_id)
        state = ProofState.HAS_PROOF if blob else ProofState.NO_PROOF
        logger.debug("%s resolved to %s (%s)", spec, commit_id, state.value)
        return PreparedRevision(spec=spec, revision=revision, state=state)

    def run(self, action: Action, prepared: PreparedRevision) -> OperationResult:
        """Dispatch a per-revision action."""
        handlers = {
            Action.CREATE: self.create,
            Action.VERIFY: self.verify,
            Action.EXAMINE: self.examine,
            Action.REMOVE: self.remove,
        }
        try:
            handler = handlers[action]
        except KeyError:
            raise InvalidAction(action.value, [a.value for a in handlers]) from None
        return handler(prepared)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create(self, prepared: PreparedRevision) -> OperationResult:
        """Timestamp a commit, or re-verify the proof it already has.

        Raises:
            ProofInvalid: The TSA reply did not verify; nothing was written.
            StoreCorruption: The reply verified but the stored copy does not.
            SubmissionError: The TSA could not be reached.
            ConfigurationError: The trust anchor cannot be loaded.
        """
        if prepared.has_proof:
            logger.info("%s already has a timestamp, verifying", prepared.revision.short_id)
            return self._as_create(self.verify(prepared))

        revision = prepared.revision
        digest = revision.digest
        anchor = self.tsa.trust_anchor()

        self.gate.wait()
        nonce = self.tsa.new_nonce() if self.config.nonce else None
        query = self.tsa.build_query(digest, nonce=nonce)
        logger.info("Requesting timestamp for %s from %s", revision.short_id, self.config.tsa_url)
        reply = self.tsa.submit(query)
        self.gate.mark()

        if not self.tsa.verify(reply, digest, anchor, nonce=nonce):
            raise ProofInvalid(revision.id, self._rejection_reason(reply))

        try:
            self.store.put(revision.id, base64.b64encode(reply).decode("ascii"))
        except AlreadyExists:
            logger.warning(
                "%s was timestamped concurrently, verifying the stored proof",
                revision.short_id,
            )
            raced = prepared.model_copy(update={"state": ProofState.HAS_PROOF})
            return self._as_create(self.verify(raced))

        stored = self.store.get(revision.id)
        if stored is None:
            raise StoreCorruption(revision.id, "note missing after write")
        try:
            stored_reply = _decode_blob(stored)
        except ValueError as exc:
            raise self._discard(revision, f"stored note does not decode: {exc}") from exc
        if not self.tsa.verify(stored_reply, digest, anchor):
            raise self._discard(revision, "stored proof does not verify")

        parsed = self.tsa.parse_reply(stored_reply)
        return OperationResult(
            action=Action.CREATE,
            spec=prepared.spec,
            revision=revision,
            status=ResultStatus.STAMPED,
            signed_time=parsed.signed_time,
        )

    def verify(self, prepared: PreparedRevision) -> OperationResult:
        """Verify the stored proof. No proof is a valid, non-failing result.

        Raises:
            ProofInvalid: The stored proof does not verify.
        """
        parsed = self._load_verified(prepared)
        if parsed is None:
            return self._no_timestamp(prepared, Action.VERIFY)
        return OperationResult(
            action=Action.VERIFY,
            spec=prepared.spec,
            revision=prepared.revision,
            status=ResultStatus.VERIFIED,
            signed_time=parsed.signed_time,
        )

    def examine(self, prepared: PreparedRevision) -> OperationResult:
        """Like :meth:`verify`, but include the full decoded reply."""
        parsed = self._load_verified(prepared)
        if parsed is None:
            return self._no_timestamp(prepared, Action.EXAMINE)
        return OperationResult(
            action=Action.EXAMINE,
            spec=prepared.spec,
            revision=prepared.revision,
            status=ResultStatus.VERIFIED,
            signed_time=parsed.signed_time,
            text=self.tsa.render_text(parsed),
        )

    def remove(self, prepared: PreparedRevision) -> OperationResult:
        """Delete the stored proof, if any."""
        removed = prepared.has_proof and self.store.delete(prepared.revision.id)
        return OperationResult(
            action=Action.REMOVE,
            spec=prepared.spec,
            revision=prepared.revision,
            status=ResultStatus.REMOVED if removed else ResultStatus.SKIPPED,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_verified(self, prepared: PreparedRevision) -> Optional[TimestampReply]:
        """Read and verify the stored proof; None if there is none."""
        if not prepared.has_proof:
            return None

        revision = prepared.revision
        blob = self.store.get(revision.id)
        if blob is None:
            logger.info("Proof for %s disappeared since prepare", revision.short_id)
            return None

        try:
            reply = _decode_blob(blob)
        except ValueError as exc:
            raise ProofInvalid(revision.id, f"stored note is not base64: {exc}") from exc

        if not self.tsa.verify(reply, revision.digest, self.tsa.trust_anchor()):
            raise ProofInvalid(revision.id, "stored proof does not verify")
        return self.tsa.parse_reply(reply)

    def _rejection_reason(self, reply: bytes) -> str:
        try:
            parsed = self.tsa.parse_reply(reply)
        except ValueError as exc:
            return f"TSA reply does not decode: {exc}"
        if not parsed.is_granted:
            detail = f": {parsed.status_string}" if parsed.status_string else ""
            return f"TSA rejected the request (status {parsed.status}{detail})"
        return "TSA reply does not verify against the trust anchor"

    def _discard(self, revision, reason: str) -> StoreCorruption:
        """Remove a note that failed re-verification and describe why."""
        try:
            removed = self.store.delete(revision.id)
        except GitStampError as exc:
            logger.error("Could not remove corrupt note for %s: %s", revision.short_id, exc)
            removed = False
        if removed:
            reason += "; the note was removed"
        else:
            reason += "; run remove before retrying"
        return StoreCorruption(revision.id, reason)

    @staticmethod
    def _no_timestamp(prepared: PreparedRevision, action: Action) -> OperationResult:
        return OperationResult(
            action=action,
            spec=prepared.spec,
            revision=prepared.revision,
            status=ResultStatus.NO_TIMESTAMP,
        )

    @staticmethod
    def _as_create(result: OperationResult) -> OperationResult:
        return result.model_copy(update={"action": Action.CREATE})


def _decode_blob(blob: str) -> bytes:
    """Decode a base64 note body; ValueError if it is not base64."""
    try:
        return base64.b64decode("".join(blob.split()), validate=True)
    except binascii.Error as exc:
        raise ValueError(str(exc)) from exc
