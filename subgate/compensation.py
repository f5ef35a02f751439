"""Compensation log for multi-step submissions.

The Registry submission and the Analysis Service registrations are separate
systems with no shared transaction. Each completed side effect records its
undo action here; on failure the log is replayed newest first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List

LOGGER = logging.getLogger("subgate.compensation")


@dataclass
class CompensationStep:
    """Undo action for one completed side effect."""
    description: str
    action: Callable[[], None]


@dataclass
class CompensationFailure:
    """A compensation step that raised."""
    description: str
    error: str


class CompensationLog:
    """Ordered record of undo actions."""

    def __init__(self):
        self._steps: List[CompensationStep] = []

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def descriptions(self) -> List[str]:
        return [step.description for step in self._steps]

    def record(self, description: str, action: Callable[[], None]) -> None:
        """Register the undo of a side effect that just succeeded."""
        self._steps.append(CompensationStep(description=description, action=action))
        LOGGER.debug("Recorded compensation step: %s", description)

    def clear(self) -> None:
        self._steps.clear()

    def rollback(self) -> List[CompensationFailure]:
        """Run every undo action, newest first.

        A failing step is logged and collected; the remaining steps still run.
        The log is empty afterwards.

        Returns:
            Failed steps, in the order they were attempted
        """
        failures: List[CompensationFailure] = []
        steps, self._steps = self._steps, []
        for step in reversed(steps):
            LOGGER.warning("Compensating: %s", step.description)
            try:
                step.action()
            except Exception as e:
                LOGGER.error("Compensation step '%s' failed: %s", step.description, str(e))
                failures.append(CompensationFailure(description=step.description, error=str(e)))
        return failures
