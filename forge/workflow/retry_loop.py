"""Implementation/test retry loop.

An implementer produces a candidate from the technical spec, a tester runs
tests against it. On failure the implementer gets the failures back (when
more iterations remain), the loop waits retry_delay_ms, and tries again. When
the iteration budget runs out the loop deadlocks and synthesizes a feedback
report for refining the requirements.

States: iterating -> success | deadlock.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from forge.lib.artifacts import slugify
from forge.lib.refinements import TestFailure, suggest_refinements
from forge.producers.contract import PhaseInvocation, call_maybe_async
from forge.runner.stages import ProducerExecutionError

logger = logging.getLogger(__name__)

DEADLOCK_REASON = "Could not satisfy all tests within iteration limit"
SUCCESS_NEXT_STEPS = ["Review", "Documentation"]
DEADLOCK_NEXT_STEPS = [
    "Refine functional requirements",
    "Clarify technical specification",
    "Review test design",
]


class LoopState(Enum):
    ITERATING = "iterating"
    SUCCESS = "success"
    DEADLOCK = "deadlock"


@dataclass
class TestRun:
    """What a tester reports for one candidate."""
    __test__ = False

    all_passed: bool
    failures: list[TestFailure] = field(default_factory=list)
    raw: Any = None

    @classmethod
    def coerce(cls, raw: Any) -> "TestRun":
        """Accept a TestRun or a dict like {allPassed, failures}."""
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, dict):
            passed = raw.get("allPassed", raw.get("all_passed", False))
            failures = [TestFailure.coerce(f) for f in raw.get("failures") or []]
            return cls(all_passed=bool(passed), failures=failures, raw=raw)
        raise TypeError(f"Tester returned {type(raw).__name__}, expected a test run")

    def to_dict(self) -> dict:
        return {"allPassed": self.all_passed, "failures": [f.to_dict() for f in self.failures]}


@dataclass
class LoopResult:
    success: bool
    iterations: int
    result: Any = None
    test_run: TestRun | None = None
    feedback: dict | None = None
    next_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "iterations": self.iterations,
            "result": self.result,
            "testRun": self.test_run.to_dict() if self.test_run else None,
            "feedback": self.feedback,
            "nextSteps": self.next_steps,
        }


def _spec_name(spec: Any) -> str | None:
    if isinstance(spec, dict):
        return spec.get("name") or spec.get("title")
    return getattr(spec, "name", None)


class ImplementationTestLoop:
    """Bounded implementer/tester iteration."""

    def __init__(self, max_iterations: int = 5, retry_delay_ms: int = 1000):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.max_iterations = max_iterations
        self.retry_delay_ms = retry_delay_ms
        self.state = LoopState.ITERATING
        self.iteration = 0
        self.history: list[dict] = []

    async def run(self, spec: Any, implementer, tester, feedback_handler=None) -> LoopResult:
        """
        Args:
            spec: technical specification handed to the implementer
            implementer: has generate(spec) and optionally
                learn_from_failures(candidate, failures, spec); sync or async
            tester: has run_tests(candidate) returning a TestRun or
                {allPassed, failures}; sync or async
            feedback_handler: optional, has handle_deadlock(report)
        """
        self.state = LoopState.ITERATING
        self.iteration = 0
        self.history = []
        last_failures: list[TestFailure] = []

        logger.info(f"Starting implementation/test loop (max {self.max_iterations} iterations)")

        while self.iteration < self.max_iterations:
            self.iteration += 1
            logger.info(f"Iteration {self.iteration}/{self.max_iterations}")

            try:
                candidate = await call_maybe_async(implementer.generate, spec)
                self._record("implementation", candidate)

                test_run = TestRun.coerce(await call_maybe_async(tester.run_tests, candidate))
                self._record("testing", test_run.to_dict(), passed=test_run.all_passed)

                if test_run.all_passed:
                    self.state = LoopState.SUCCESS
                    logger.info(f"All tests passed in iteration {self.iteration}")
                    return LoopResult(
                        success=True,
                        iterations=self.iteration,
                        result=candidate,
                        test_run=test_run,
                        next_steps=list(SUCCESS_NEXT_STEPS),
                    )

                last_failures = test_run.failures
                logger.info(f"Tests failed: {len(test_run.failures)} failure(s)")
                if self.iteration < self.max_iterations and hasattr(implementer, "learn_from_failures"):
                    await call_maybe_async(implementer.learn_from_failures, candidate, test_run.failures, spec)
            except Exception as e:
                logger.warning(f"Error during iteration {self.iteration}: {e}")
                last_failures = [TestFailure.coerce(e)]
                self._record("error", str(e), passed=False)

            if self.iteration < self.max_iterations:
                await asyncio.sleep(self.retry_delay_ms / 1000)

        self.state = LoopState.DEADLOCK
        logger.warning("Reached iteration limit without passing all tests")
        report = self.feedback_report(spec, last_failures)

        if feedback_handler is not None:
            await call_maybe_async(feedback_handler.handle_deadlock, report)

        return LoopResult(
            success=False,
            iterations=self.iteration,
            feedback=report,
            next_steps=list(DEADLOCK_NEXT_STEPS),
        )

    def _record(self, step: str, result: Any, passed: bool | None = None) -> None:
        entry = {
            "iteration": self.iteration,
            "step": step,
            "timestamp": datetime.now().isoformat(),
            "result": result,
        }
        if passed is not None:
            entry["passed"] = passed
        self.history.append(entry)

    def feedback_report(self, spec: Any, last_failures: list[TestFailure]) -> dict:
        return {
            "timestamp": datetime.now().isoformat(),
            "deadlockReason": DEADLOCK_REASON,
            "specName": _spec_name(spec),
            "iterationHistory": self.history,
            "lastFailures": [f.to_dict() for f in last_failures],
            "suggestedRefinements": suggest_refinements(last_failures),
            "learningPoints": self.learning_points(),
        }

    def learning_points(self) -> list[dict]:
        """One learning point per failed iteration."""
        failed = sorted({e["iteration"] for e in self.history if e.get("passed") is False})
        return [
            {
                "iteration": iteration,
                "issue": "Implementation did not satisfy tests",
                "possibleCause": "Specification was not clear enough",
                "suggestion": "Require more detailed specification before implementation",
            }
            for iteration in failed
        ]


class DeadlockFeedbackHandler:
    """Persists deadlock reports under <knowledge_dir>/deadlocks/."""

    def __init__(self, knowledge_dir: Path):
        self.knowledge_dir = Path(knowledge_dir)

    def handle_deadlock(self, report: dict) -> dict:
        deadlock_dir = self.knowledge_dir / "deadlocks"
        deadlock_dir.mkdir(parents=True, exist_ok=True)
        name = report.get("specName") or "spec"
        ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        path = deadlock_dir / f"{ts}-{slugify(name)}.json"
        path.write_text(json.dumps(report, indent=2, default=str))

        learning_points = report.get("learningPoints", [])
        logger.info(f"Deadlock report saved to {path} ({len(learning_points)} learning points)")
        return {
            "feedbackSaved": True,
            "learningPointsExtracted": len(learning_points),
            "nextAction": "Manual review and requirements refinement",
            "reportPath": str(path),
        }


class ImplementationLoopProducer:
    """Producer for the implementation phase that runs the retry loop.

    The phase input (technical and testing sections) is the spec handed to
    the implementer. A deadlock fails the phase.
    """

    def __init__(self, implementer, tester, loop: ImplementationTestLoop | None = None, feedback_handler=None):
        self.implementer = implementer
        self.tester = tester
        self.loop = loop or ImplementationTestLoop()
        self.feedback_handler = feedback_handler

    async def execute(self, invocation: PhaseInvocation) -> Any:
        result = await self.loop.run(invocation.inputs, self.implementer, self.tester, self.feedback_handler)
        if not result.success:
            suggestions = "; ".join(result.feedback["suggestedRefinements"]) or "none"
            raise ProducerExecutionError(
                invocation.phase_id,
                f"Deadlock after {result.iterations} iterations (suggestions: {suggestions})",
                {"feedback": result.feedback},
            )
        return result.result
