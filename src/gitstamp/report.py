"""Console rendering of lifecycle results."""

from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .models import BatchResult, OperationResult, ResultStatus
from .models_timestamp import StampConfig

console = Console()

_STATUS_DISPLAY: dict[ResultStatus, tuple[str, str]] = {
    ResultStatus.STAMPED: ("green", "timestamped"),
    ResultStatus.VERIFIED: ("green", "trusted timestamp"),
    ResultStatus.NO_TIMESTAMP: ("yellow", "no trusted timestamp"),
    ResultStatus.REMOVED: ("green", "removed"),
    ResultStatus.SKIPPED: ("dim", "skipped, nothing to remove"),
    ResultStatus.FAILED: ("bold red", "FAILED"),
}


def format_time(value: Optional[datetime]) -> str:
    """Render a TSA time in UTC, as the TSA signed it."""
    if value is None:
        return "unknown"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_result(result: OperationResult, config: StampConfig) -> str:
    """One line of rich markup describing a result."""
    revision = result.revision
    if revision is None:
        ident = result.spec
    else:
        ident = revision.id if config.verbose else revision.short_id

    style, label = _STATUS_DISPLAY[result.status]
    parts = [f"[cyan]{escape(ident)}[/]", f"[{style}]{label}[/]"]

    if result.status == ResultStatus.FAILED:
        parts[-1] = f"[{style}]{label}:[/] {escape(result.error or 'unknown error')}"
        return " ".join(parts)

    if result.signed_time is not None:
        parts.append(format_time(result.signed_time))
    if config.include_local_time and revision is not None and revision.commit_time:
        parts.append(
            "[dim](committed "
            + revision.commit_time.strftime("%Y-%m-%d %H:%M:%S %z")
            + ")[/]"
        )
    if revision is not None and revision.subject:
        parts.append(escape(revision.subject))
    return " ".join(parts)


def print_result(
    result: OperationResult,
    config: StampConfig,
    out: Optional[Console] = None,
) -> None:
    """Print one result, plus the full reply text for ``examine``."""
    out = out or console
    out.print(format_result(result, config), soft_wrap=True, highlight=False)
    if result.text:
        out.print(
            Panel(
                escape(result.text),
                title="Timestamp Reply",
                border_style="green",
            )
        )


def print_summary(batch: BatchResult, out: Optional[Console] = None) -> None:
    """Print a count line after a multi-revision run."""
    out = out or console
    total = len(batch.results)
    failed = len(batch.failures)
    if failed:
        out.print(f"[bold red]{batch.action.value}: {failed} of {total} revision(s) failed[/]")
    else:
        out.print(f"[dim]{batch.action.value}: {total} revision(s) ok[/]")
