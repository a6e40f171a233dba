from __future__ import annotations

import logging
from typing import Callable, TypeVar

from intervention_engine.errors import StaleState


T = TypeVar("T")

_logger = logging.getLogger("intervention_engine")


def run_with_stale_retry(
    operation: Callable[[str], T],
    *,
    expected_status: str,
    refetch_status: Callable[[], str | None],
    still_permitted: Callable[[str], bool],
    attempts: int = 1,
) -> T:
    """Run ``operation(expected_status)``, retrying on StaleState.

    A retry happens only when the refetched status still allows the action;
    otherwise the original StaleState is raised to the caller.
    """
    current_expected = expected_status
    remaining = max(0, int(attempts))
    while True:
        try:
            return operation(current_expected)
        except StaleState as exc:
            if exc.entity != "intervention" or remaining <= 0:
                raise
            current = refetch_status()
            if not current or not still_permitted(current):
                raise
            _logger.info(
                "stale_state_retry",
                extra={"expected_status": current_expected, "current_status": current},
            )
            remaining -= 1
            current_expected = current
