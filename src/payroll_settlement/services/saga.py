"""Ordered multi-store steps with compensations.

The relational and time-series stores share no transaction. An operation
that writes to both runs as a saga: each step commits on its own store,
and when a later step fails the earlier steps are undone in reverse order
before the original error propagates.

Pattern:
    saga = Saga("create_payment_request")
    saga.step("insert_request", insert_request, compensation=delete_request)
    saga.step("link_applications", link_applications, compensation=unlink)
    saga.step("append_logs", append_logs)
    results = await saga.run()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SagaStep:
    """One committed unit of work and how to undo it.

    The compensation receives the action's return value.
    """

    name: str
    action: Callable[[], Awaitable[Any]]
    compensation: Callable[[Any], Awaitable[None]] | None = None


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[SagaStep] = []

    def step(
        self,
        name: str,
        action: Callable[[], Awaitable[Any]],
        compensation: Callable[[Any], Awaitable[None]] | None = None,
    ) -> Saga:
        self._steps.append(SagaStep(name=name, action=action, compensation=compensation))
        return self

    async def run(self) -> list[Any]:
        """Run all steps; on failure compensate completed steps and re-raise."""
        completed: list[tuple[SagaStep, Any]] = []
        for step in self._steps:
            try:
                result = await step.action()
            except Exception:
                logger.warning(
                    "Saga %s failed at step %s, compensating %d step(s)",
                    self.name,
                    step.name,
                    len(completed),
                )
                await self._compensate(completed)
                raise
            completed.append((step, result))
        return [result for _, result in completed]

    async def _compensate(self, completed: list[tuple[SagaStep, Any]]) -> None:
        failures: list[str] = []
        for step, result in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await step.compensation(result)
            except Exception:
                logger.exception("Compensation of %s in saga %s failed", step.name, self.name)
                failures.append(step.name)
        if failures:
            logger.error(
                "Saga %s left partial writes after failed compensations: %s",
                self.name,
                ", ".join(failures),
            )
