"""
Ordered multi-step mutations with compensation.

Each step has a forward action and an optional undo. Steps run in order,
each in its own database transaction. When a step fails, the steps that
already succeeded are undone in reverse order and ``OperationFailed`` is
raised. Nothing is retried.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from django.db import transaction

from .exceptions import OperationFailed

logger = logging.getLogger(__name__)


@dataclass
class Step:
    name: str
    action: Callable[[], Any]
    undo: Optional[Callable[[Any], None]] = None


class Saga:
    def __init__(self, name):
        self.name = name
        self.steps = []

    def step(self, name, action, undo=None):
        self.steps.append(Step(name, action, undo))
        return self

    def run(self):
        """Run every step and return their results keyed by step name."""
        results = {}
        done = []
        for step in self.steps:
            try:
                with transaction.atomic():
                    results[step.name] = step.action()
            except Exception as exc:
                logger.warning("%s: step %s failed (%s), undoing %d step(s)",
                               self.name, step.name, exc, len(done))
                compensated, inconsistent = self._compensate(done, results)
                raise OperationFailed(self.name, step.name, compensated, inconsistent, cause=exc) from exc
            done.append(step)
        return results

    def _compensate(self, done, results):
        compensated, inconsistent = [], []
        for step in reversed(done):
            if step.undo is None:
                inconsistent.append(step.name)
                continue
            try:
                with transaction.atomic():
                    step.undo(results.get(step.name))
            except Exception:
                logger.exception("%s: could not undo step %s", self.name, step.name)
                inconsistent.append(step.name)
            else:
                compensated.append(step.name)
        if inconsistent:
            logger.error("%s left inconsistent state in: %s", self.name, ", ".join(inconsistent))
        return compensated, inconsistent
