# storefront/services/saga.py
"""
Saga: ordered steps, each with a compensating action.

    saga = Saga("checkout")
    saga.step("reserve discount", reserve, release)
    saga.step("insert order header", insert_order, delete_order)
    result = saga.run()

Steps run in order. A step's compensator is recorded only after the step
succeeds and receives that step's return value. When a step raises, the
recorded compensators run in reverse and SagaFailed is raised carrying the
original error plus rollback bookkeeping.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: Callable[[], Any]
    compensate: Optional[Callable[[Any], None]] = None


@dataclass
class SagaResult:
    values: dict[str, Any]
    steps_executed: int
    compensators_recorded: int


@dataclass(eq=False)
class SagaFailed(Exception):
    error: Exception
    step_failed: str
    compensators_run: int = 0
    compensators_failed: list[str] = field(default_factory=list)

    @property
    def rollback_complete(self) -> bool:
        return not self.compensators_failed

    def __str__(self) -> str:
        return f"saga failed at '{self.step_failed}': {self.error}"


class Saga:
    def __init__(self, name: str, context: dict | None = None):
        self.name = name
        # do logow (np. order_id po utworzeniu naglowka)
        self.context = context if context is not None else {}
        self._steps: list[SagaStep] = []

    def step(self, name: str, action: Callable[[], Any], compensate: Callable[[Any], None] | None = None) -> "Saga":
        self._steps.append(SagaStep(name, action, compensate))
        return self

    def run(self) -> SagaResult:
        recorded: list[tuple[SagaStep, Any]] = []
        values: dict[str, Any] = {}

        for s in self._steps:
            try:
                value = s.action()
            except Exception as e:
                logger.warning(
                    "Saga step failed, compensating",
                    extra={"saga": self.name, "step": s.name, "error": str(e), **self.context},
                )
                run, failed = self._compensate(recorded)
                raise SagaFailed(error=e, step_failed=s.name, compensators_run=run, compensators_failed=failed) from e
            values[s.name] = value
            if s.compensate is not None:
                recorded.append((s, value))

        return SagaResult(values=values, steps_executed=len(self._steps), compensators_recorded=len(recorded))

    def _compensate(self, recorded: list[tuple[SagaStep, Any]]) -> tuple[int, list[str]]:
        run = 0
        failed: list[str] = []
        for s, value in reversed(recorded):
            try:
                s.compensate(value)
                run += 1
            except Exception as e:
                failed.append(s.name)
                logger.error(
                    "Saga compensation failed",
                    exc_info=e,
                    extra={"saga": self.name, "step": s.name, **self.context},
                )
        return run, failed
