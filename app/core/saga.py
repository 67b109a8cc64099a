"""
Saga engine: an ordered list of (action, compensation) steps.

Steps run strictly in order. When a step fails, the compensations of every step that already
completed run in reverse order (one attempt each; a failing compensation is logged and skipped)
and the triggering failure is raised to the caller. Nothing is retried.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from app.core.exceptions import DirectoryError, ServiceError

logger = logging.getLogger(__name__)

SagaContext = Dict[str, Any]
Action = Callable[[SagaContext], Awaitable[Any]]
Compensation = Callable[[SagaContext], Awaitable[None]]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensation: Optional[Compensation]
    error_class: Type[ServiceError]
    error_message: str


class Saga:
    """
    Build with .step(...), execute with await .run(context).

    Each action receives the shared context dict; its return value is stored in the context under
    the step name so later steps (and compensations) can read it. Exceptions that are already a
    ServiceError propagate as-is; anything else is wrapped in the step's error_class.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.steps: List[SagaStep] = []

    def step(
        self,
        name: str,
        action: Action,
        compensation: Optional[Compensation] = None,
        *,
        error_class: Type[ServiceError] = DirectoryError,
        error_message: Optional[str] = None,
    ) -> "Saga":
        self.steps.append(
            SagaStep(
                name=name,
                action=action,
                compensation=compensation,
                error_class=error_class,
                error_message=error_message or f"Failed to {name.replace('_', ' ')}",
            )
        )
        return self

    async def run(self, context: Optional[SagaContext] = None) -> SagaContext:
        ctx: SagaContext = context if context is not None else {}
        completed: List[SagaStep] = []
        for step in self.steps:
            try:
                ctx[step.name] = await step.action(ctx)
            except Exception as exc:
                logger.exception("%s: step '%s' failed", self.name, step.name)
                await self._compensate(completed, ctx)
                raise self._classify(step, exc) from exc
            completed.append(step)
        return ctx

    async def _compensate(self, completed: List[SagaStep], ctx: SagaContext) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await step.compensation(ctx)
                logger.warning("%s: compensated step '%s'", self.name, step.name)
            except Exception:
                logger.exception("%s: compensation for step '%s' failed", self.name, step.name)

    @staticmethod
    def _classify(step: SagaStep, exc: Exception) -> ServiceError:
        if isinstance(exc, ServiceError):
            return exc
        return step.error_class(f"{step.error_message}: {exc}")
