"""Apply one lifecycle action to a sequence of revision specs.

Items run one at a time in arrival order. A failure on one item, whether
resolving it or acting on it, is recorded and the run moves on; only the
aggregate :class:`gitstamp.models.BatchResult` reports it.
"""

import logging
from typing import Callable, Iterable, Iterator, Optional

from .errors import GitStampError
from .manager import TimestampManager
from .models import Action, BatchResult, OperationResult, ResultStatus

logger = logging.getLogger("gitstamp.batch")

ResultCallback = Callable[[OperationResult], None]


def iter_specs(lines: Iterable[str]) -> Iterator[str]:
    """Yield non-blank, stripped revision specs from lines of text."""
    for line in lines:
        spec = line.strip()
        if spec:
            yield spec


class BatchRunner:
    """Runs a :class:`TimestampManager` action over many revisions.

    Args:
        manager: Manager that performs each transition.
    """

    def __init__(self, manager: TimestampManager) -> None:
        self.manager = manager

    def run(
        self,
        action: Action,
        specs: Iterable[str],
        on_result: Optional[ResultCallback] = None,
    ) -> BatchResult:
        """Apply ``action`` to every spec.

        Args:
            action: A per-revision action.
            specs: Revision specs, consumed lazily.
            on_result: Called with each result as soon as it is known.

        Returns:
            Every item's result; ``ok`` is False if any item failed.
        """
        batch = BatchResult(action=action)
        any_failed = False

        for spec in specs:
            result = self.run_one(action, spec)
            if not result.ok:
                any_failed = True
            batch.results.append(result)
            if on_result is not None:
                on_result(result)

        logger.info(
            "%s: %d revision(s), %d failed",
            action.value,
            len(batch.results),
            len(batch.failures),
        )
        if any_failed:
            logger.warning("%s finished with failures", action.value)
        return batch

    def run_one(self, action: Action, spec: str) -> OperationResult:
        """Prepare and act on one spec, turning any failure into a result."""
        prepared = None
        try:
            prepared = self.manager.prepare(spec)
            return self.manager.run(action, prepared)
        except GitStampError as exc:
            logger.error("%s %s failed: %s", action.value, spec, exc)
            error = str(exc)
        except Exception as exc:
            logger.exception("Unexpected error during %s %s", action.value, spec)
            error = f"unexpected error: {exc}"

        return OperationResult(
            action=action,
            spec=spec,
            revision=prepared.revision if prepared is not None else None,
            status=ResultStatus.FAILED,
            error=error,
        )
