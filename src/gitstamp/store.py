"""git-notes-backed proof store for gitstamp.

Each timestamped commit has exactly one note under the configured notes
ref; the note body is the base64 TSA reply. Notes live on their own ref,
so adding or removing a proof never rewrites the commits it annotates::

    refs/notes/timestamps
    └── <commit-id>  ->  base64(TimeStampResp DER)

The ref travels between clones with :meth:`NotesStore.push` and
:meth:`NotesStore.fetch`.
"""

import logging
from typing import Optional

from .errors import AlreadyExists, GitCommandError
from .repo import GitRepository

logger = logging.getLogger("gitstamp.store")

DEFAULT_NOTES_REF = "refs/notes/timestamps"


class NotesStore:
    """Keyed blob store over one git notes ref.

    Args:
        repo: Repository the notes live in.
        ref: Notes ref holding the proofs.
        remote: Remote used by push and fetch.
    """

    def __init__(
        self,
        repo: GitRepository,
        ref: str = DEFAULT_NOTES_REF,
        remote: str = "origin",
    ) -> None:
        self.repo = repo
        self.ref = ref
        self.remote = remote

    def get(self, revision_id: str) -> Optional[str]:
        """Read the note attached to a commit.

        Args:
            revision_id: Full commit id.

        Returns:
            The note body, or None if the commit has no note.
        """
        proc = self.repo.run("notes", "--ref", self.ref, "show", revision_id, check=False)
        if proc.returncode == 0:
            return proc.stdout.strip()
        if "no note found" in proc.stderr.lower():
            return None
        raise GitCommandError(
            ("notes", "--ref", self.ref, "show", revision_id),
            proc.returncode,
            proc.stderr,
        )

    def put(self, revision_id: str, blob: str) -> None:
        """Attach a note to a commit. Never overwrites.

        Args:
            revision_id: Full commit id.
            blob: Note body.

        Raises:
            AlreadyExists: If the commit already has a note under this ref.
        """
        args = ("notes", "--ref", self.ref, "add", "-F", "-", revision_id)
        proc = self.repo.run(*args, input=blob + "\n", check=False)
        if proc.returncode == 0:
            logger.info("Stored timestamp note for %s in %s", revision_id[:12], self.ref)
            return
        if "existing notes" in proc.stderr.lower():
            raise AlreadyExists(revision_id)
        raise GitCommandError(args, proc.returncode, proc.stderr)

    def delete(self, revision_id: str) -> bool:
        """Remove the note attached to a commit.

        Args:
            revision_id: Full commit id.

        Returns:
            True if a note was removed, False if there was none.
        """
        args = ("notes", "--ref", self.ref, "remove", revision_id)
        proc = self.repo.run(*args, check=False)
        if proc.returncode == 0:
            logger.info("Removed timestamp note for %s from %s", revision_id[:12], self.ref)
            return True
        if "has no note" in proc.stderr.lower():
            return False
        raise GitCommandError(args, proc.returncode, proc.stderr)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def push(self) -> None:
        """Push the notes ref to the remote."""
        self.repo.run("push", self.remote, self.ref)
        logger.info("Pushed %s to %s", self.ref, self.remote)

    def fetch(self) -> None:
        """Fetch the notes ref from the remote into the local ref."""
        self.repo.run("fetch", self.remote, f"{self.ref}:{self.ref}")
        logger.info("Fetched %s from %s", self.ref, self.remote)
