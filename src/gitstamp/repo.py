"""Read-only access to a git repository through the ``git`` binary.

Resolves revision specs to full commit ids and reads the bits of commit
metadata gitstamp prints. Nothing here writes to the repository; proofs
go through :class:`gitstamp.store.NotesStore`.
"""

import logging
import os
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import GitCommandError, ResolutionError
from .models import Revision

logger = logging.getLogger("gitstamp.repo")


def _untranslated_env() -> dict[str, str]:
    # stderr is matched against git's English messages
    env = dict(os.environ)
    env.pop("LANGUAGE", None)
    env["LC_ALL"] = "C"
    return env


class GitRepository:
    """Thin wrapper over ``git -C <path>``.

    Args:
        path: Repository working directory (default: current directory).
        git: git executable to run.
    """

    def __init__(self, path: Optional[Path] = None, git: str = "git") -> None:
        self.path = Path(path) if path else Path.cwd()
        self.git = git

    def run(
        self,
        *args: str,
        input: Optional[str] = None,
        check: bool = True,
    ) -> "subprocess.CompletedProcess[str]":
        """Run a git subcommand and capture its output.

        Args:
            *args: Arguments after ``git -C <path>``.
            input: Text fed to git's stdin.
            check: Raise on a non-zero exit status.

        Returns:
            The completed process.

        Raises:
            GitCommandError: If git cannot be started, or exits non-zero
                while ``check`` is set.
        """
        cmd = [self.git, "-C", str(self.path), *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                stdin=None if input is not None else subprocess.DEVNULL,
                env=_untranslated_env(),
            )
        except OSError as exc:
            raise GitCommandError(args, -1, str(exc)) from exc

        if check and proc.returncode != 0:
            raise GitCommandError(args, proc.returncode, proc.stderr)
        return proc

    # ------------------------------------------------------------------
    # Revisions
    # ------------------------------------------------------------------

    def resolve(self, spec: str) -> str:
        """Resolve a revision spec to a full commit id.

        Args:
            spec: Anything ``git rev-parse`` understands (branch, tag,
                abbreviated id, ``HEAD~2``...).

        Returns:
            The full lowercase hex commit id.

        Raises:
            ResolutionError: If the spec does not name a commit.
        """
        if not spec or spec.startswith("-"):
            raise ResolutionError(spec, "not a revision")

        proc = self.run(
            "rev-parse", "--verify", "--quiet", f"{spec}^{{commit}}", check=False
        )
        commit_id = proc.stdout.strip()
        if proc.returncode != 0 or not commit_id:
            raise ResolutionError(spec)
        return commit_id

    def revision(self, commit_id: str) -> Revision:
        """Read short id, committer time and subject of a commit."""
        proc = self.run("show", "-s", "--format=%h%n%cI%n%s", commit_id)
        lines = proc.stdout.splitlines()
        short_id = lines[0] if lines else commit_id[:7]
        commit_time = None
        if len(lines) > 1 and lines[1]:
            try:
                commit_time = datetime.fromisoformat(lines[1])
            except ValueError:
                logger.warning("Unparseable commit time %r for %s", lines[1], short_id)
        subject = lines[2] if len(lines) > 2 else ""
        return Revision(
            id=commit_id,
            short_id=short_id,
            subject=subject,
            commit_time=commit_time,
        )

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def config_get(self, key: str) -> Optional[str]:
        """Return a git config value, or None if it is unset."""
        proc = self.run("config", "--get", key, check=False)
        if proc.returncode == 1:
            return None
        if proc.returncode != 0:
            raise GitCommandError(("config", "--get", key), proc.returncode, proc.stderr)
        return proc.stdout.strip()
