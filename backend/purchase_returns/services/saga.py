# Overview: Runs multi-step store mutations with explicit compensating actions.

"""
Saga runner

WHY: A return mutation touches several rows that the store commits
separately (the return, the supplier balance, one or two purchase orders).
There is no surrounding transaction, so each step is paired with an action
that undoes it. If a step fails, every step that already completed is
undone in reverse order.

OUTCOMES:
- all steps succeed: run() returns the step results by name
- a step fails, all compensations succeed: the step's exception is re-raised
- a step fails and some compensation fails too: CompensationFailure is
  raised (chained to the step's exception) listing what could not be undone,
  so the caller never reports success over a partially-applied change
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from flask import current_app, has_app_context

from .concurrency import StoreError


class CompensationFailure(StoreError):
    """A mutation failed and at least one of its compensating actions failed as well."""

    def __init__(self, saga_name: str, original: BaseException, failures: list[tuple[str, BaseException]]):
        self.saga_name = saga_name
        self.original = original
        self.failures = failures
        failed = ", ".join(name for name, _ in failures)
        super().__init__(
            f"{saga_name} failed ({original}) and could not be fully rolled back; "
            f"compensation failed for: {failed}"
        )


@dataclass
class SagaStep:
    name: str
    action: Callable[[], Any]
    compensation: Optional[Callable[[], Any]] = None


def _logger():
    return current_app.logger if has_app_context() else None


class Saga:
    def __init__(self, name: str):
        self.name = name
        self.steps: list[SagaStep] = []

    def add_step(self, name: str, action: Callable[[], Any], compensation: Optional[Callable[[], Any]] = None) -> "Saga":
        self.steps.append(SagaStep(name=name, action=action, compensation=compensation))
        return self

    def run(self) -> dict[str, Any]:
        completed: list[SagaStep] = []
        results: dict[str, Any] = {}
        for step in self.steps:
            try:
                results[step.name] = step.action()
            except Exception as exc:
                failures = self._compensate(completed, exc)
                if failures:
                    raise CompensationFailure(self.name, exc, failures) from exc
                raise
            completed.append(step)
        return results

    def _compensate(self, completed: list[SagaStep], cause: BaseException) -> list[tuple[str, BaseException]]:
        logger = _logger()
        failures: list[tuple[str, BaseException]] = []
        for step in reversed(completed):
            if step.compensation is None:
                continue
            if logger:
                logger.warning("%s: compensating step %r after failure: %s", self.name, step.name, cause)
            try:
                step.compensation()
            except Exception as exc:
                if logger:
                    logger.exception("%s: compensation for step %r failed", self.name, step.name)
                failures.append((step.name, exc))
        return failures
