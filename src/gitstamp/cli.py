"""gitstamp CLI: trusted timestamps for git commits.

Usage:
    git stamp create [REVISION]
    git stamp verify [REVISION]
    git stamp examine [REVISION]
    git stamp remove [REVISION]
    git stamp push | fetch
    git rev-list main | git stamp verify -
"""

import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .batch import BatchRunner, iter_specs
from .config import load_config
from .errors import GitStampError, InvalidAction
from .manager import TimestampManager
from .models import Action
from .report import console, print_result, print_summary
from .repo import GitRepository
from .store import NotesStore
from .timestamp import DEFAULT_TSA_URL, TimestampAuthority

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{escape(message)}[/]")
    sys.exit(1)


@click.command(context_settings=CONTEXT_SETTINGS)
@click.argument("action")
@click.argument("revision", default="HEAD")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Print full commit ids")
@click.option(
    "-l",
    "--local-time",
    is_flag=True,
    default=False,
    help="Also print each commit's own committer time",
)
@click.option("--tsa", "tsa_url", default=None, help=f"TSA endpoint URL (default: {DEFAULT_TSA_URL})")
@click.option(
    "--cert",
    "cert_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="TSA certificate(s) to verify against (PEM or DER)",
)
@click.option("--delay", "delay_seconds", default=None, type=float, help="Seconds between TSA requests")
@click.option("--ref", "notes_ref", default=None, help="Notes ref holding the timestamps")
@click.option("--remote", default=None, help="Remote for push and fetch")
@click.option(
    "-C",
    "repo_dir",
    default=None,
    type=click.Path(exists=True, file_okay=False),
    help="Run as if started in this directory",
)
@click.option("--debug", is_flag=True, default=False, help="Log to stderr")
def main(
    action: str,
    revision: str,
    verbose: bool,
    local_time: bool,
    tsa_url: Optional[str],
    cert_path: Optional[str],
    delay_seconds: Optional[float],
    notes_ref: Optional[str],
    remote: Optional[str],
    repo_dir: Optional[str],
    debug: bool,
) -> None:
    """Attach RFC 3161 trusted timestamps to git commits.

    ACTION is one of create, verify, examine, remove, push or fetch.
    REVISION defaults to HEAD; "-" reads one revision per line from stdin.
    Timestamps are kept in a git notes ref, so history is never rewritten.
    """
    _setup_logging(debug)

    try:
        act = Action(action)
    except ValueError:
        _fail(str(InvalidAction(action, [a.value for a in Action])))

    repo = GitRepository(Path(repo_dir) if repo_dir else None)
    try:
        config = load_config(
            repo,
            tsa_url=tsa_url,
            cert_path=cert_path,
            delay_seconds=delay_seconds,
            notes_ref=notes_ref,
            remote=remote,
            verbose=verbose,
            include_local_time=local_time,
        )
    except GitStampError as exc:
        _fail(str(exc))

    store = NotesStore(repo, ref=config.notes_ref, remote=config.remote)

    if not act.per_revision:
        try:
            if act == Action.PUSH:
                store.push()
            else:
                store.fetch()
        except GitStampError as exc:
            _fail(str(exc))
        verb = "Pushed" if act == Action.PUSH else "Fetched"
        console.print(f"[green]{verb} {escape(config.notes_ref)} ({escape(config.remote)})[/]")
        return

    manager = TimestampManager(repo, store, TimestampAuthority(config), config)
    runner = BatchRunner(manager)

    def on_result(result):
        print_result(result, config)

    from_stdin = revision == "-"
    if from_stdin:
        with click.open_file("-") as stream:
            batch = runner.run(act, iter_specs(stream), on_result=on_result)
    else:
        batch = runner.run(act, [revision], on_result=on_result)

    if from_stdin and len(batch.results) > 1:
        print_summary(batch)
    if not batch.ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
