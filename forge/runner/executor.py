"""
Phase executor: runs a fixed, ordered phase list against one document.

For every phase the document is reloaded, the start is persisted, the
producer runs, the section is validated, timings and counts are recorded and
the document is persisted again. Phases never run concurrently and no phase
starts before the previous phase's write is on disk.

Failure policy:
- abort (default): the first failed phase stops the run with PhaseFailed
- continue_on_error: the failure is recorded and the next phase runs; any
  phase that needs the failed one as input then fails on its own with
  MissingDependencyError
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from forge.document.model import Document, MissingDependencyError
from forge.document.store import DocumentIOError, DocumentStore, FileDocumentStore
from forge.lib.constants import (
    DOC_COMPLETED,
    DOC_FAILED,
    DOC_IN_PROGRESS,
    EVENT_COMPLETED,
    EVENT_FAILED,
    EVENT_STARTED,
    PHASE_FAILED,
    PHASE_PENDING,
)
from forge.lib.kpis import derive_counts, orchestration_summary
from forge.lib.report import ReportPaths, write_kpi_report
from forge.lib.topology import PhaseSpec, Topology
from forge.lib.validate import validate_section
from forge.producers.contract import PhaseInvocation, Producer, as_producer, call_maybe_async
from forge.runner.context import RunContext
from forge.runner.stages import PhaseFailed, PhaseOutcome, ProducerExecutionError, run_phase

logger = logging.getLogger(__name__)


@dataclass
class PipelineSummary:
    """What a run did. Returned on success, attached to PhaseFailed on abort."""
    identifier: str
    status: str
    outcomes: list[PhaseOutcome] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    total_duration_ms: int = 0
    tokens_used: int = 0
    report: ReportPaths | None = None

    @property
    def success(self) -> bool:
        return not any(o.failed for o in self.outcomes)

    @property
    def failed_phase(self) -> str | None:
        for outcome in self.outcomes:
            if outcome.failed:
                return outcome.phase
        return None

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "status": self.status,
            "phases": [o.to_dict() for o in self.outcomes],
            "completed": self.completed,
            "failed": self.failed,
            "pending": self.pending,
            "totalDurationMs": self.total_duration_ms,
            "tokensUsed": self.tokens_used,
            "report": str(self.report.markdown) if self.report else None,
        }


def _tokens_from(summary: Any) -> int:
    if isinstance(summary, dict):
        value = summary.get("tokensUsed", 0)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return int(value)
    return 0


def document_status(doc: Document, topology: Topology) -> str:
    """completed when every declared phase is, failed if any failed, else in-progress."""
    records = [doc.phases.get(p) for p in topology.ids]
    if any(r is not None and r.status == PHASE_FAILED for r in records):
        return DOC_FAILED
    if all(r is not None and r.is_completed for r in records):
        return DOC_COMPLETED
    return DOC_IN_PROGRESS


class PhaseExecutor:
    """Runs phases of a topology against one document."""

    def __init__(
        self,
        topology: Topology,
        producers: dict[str, Any],
        store: DocumentStore | None = None,
        continue_on_error: bool = False,
        report_dir: Path | None = None,
        base_dir: Path | None = None,
        requirements_path: Path | None = None,
        ctx: RunContext | None = None,
    ):
        self.topology = topology
        self.producers: dict[str, Producer] = {k: as_producer(v) for k, v in producers.items()}
        self.store = store or FileDocumentStore()
        self.continue_on_error = continue_on_error
        self.report_dir = report_dir
        self.base_dir = base_dir
        self.requirements_path = requirements_path
        self.ctx = ctx

    async def run(
        self,
        document_path: Path,
        identifier: str | None = None,
        phases: list[str] | None = None,
    ) -> PipelineSummary:
        """Run the whole topology, or the given phase subset in declared order.

        Raises:
            PhaseFailed: on the first failed phase, unless continue_on_error
            DocumentIOError: if the document cannot be read or written
        """
        document_path = Path(document_path)
        specs = self.topology.subset(phases) if phases else list(self.topology)
        ctx = self.ctx or RunContext.ephemeral(document_path, identifier or document_path.stem)

        seed = Document.new(identifier or document_path.stem, self.topology, project_path=self._project_path())
        doc = self.store.load_or_create(document_path, seed)
        if doc.ensure_phases(self.topology):
            logger.info(f"Added missing phase slots to {document_path}")
        doc.metadata.status = DOC_IN_PROGRESS
        self.store.save(document_path, doc)

        started_at = datetime.now()
        start = time.monotonic()
        ctx.log(f"Starting pipeline for {doc.metadata.identifier}: {', '.join(s.id for s in specs)}")

        outcomes: list[PhaseOutcome] = []
        aborted: PhaseOutcome | None = None
        for spec in specs:
            outcome = await self._run_one(document_path, spec, ctx)
            outcomes.append(outcome)
            if outcome.failed and not self.continue_on_error:
                aborted = outcome
                break

        summary = self._finish(document_path, outcomes, started_at, start, ctx)
        if aborted is not None:
            raise PhaseFailed(aborted.phase, aborted.error, summary)
        return summary

    def _project_path(self) -> str | None:
        return str(self.base_dir) if self.base_dir else None

    async def _run_one(self, document_path: Path, spec: PhaseSpec, ctx: RunContext) -> PhaseOutcome:
        doc = self.store.load(document_path)
        doc.reset_phase(spec.id)
        doc.log_execution(spec.agent, EVENT_STARTED, f"Starting phase {spec.id}")
        doc.track_agent(spec.agent, spec.id)
        self.store.save(document_path, doc)

        async def step() -> list[str]:
            return await self._execute(document_path, spec)

        def on_error(error: Exception) -> str:
            return self._record_failure(document_path, spec, error)

        return await run_phase(ctx, spec.id, step, on_error)

    async def _execute(self, document_path: Path, spec: PhaseSpec) -> list[str]:
        doc = self.store.load(document_path)
        inputs = doc.get_phase_input(spec.id)

        producer = self.producers.get(spec.id)
        if producer is None:
            raise ProducerExecutionError(spec.id, f"No producer configured for phase '{spec.id}'")

        invocation = PhaseInvocation(
            phase_id=spec.id,
            agent=spec.agent,
            inputs=inputs,
            document_path=document_path,
            requirements_path=self.requirements_path,
            store=self.store,
        )
        phase_start = time.monotonic()
        summary = await self._invoke(producer, invocation)
        duration_ms = int(round((time.monotonic() - phase_start) * 1000))

        doc = self.store.load(document_path)
        record = doc.record(spec.id)
        if not record.is_completed:
            doc.update_phase(spec.id, summary, spec.agent)

        validation = validate_section(spec.id, record.output, self.base_dir)
        validation.raise_for_errors(spec.id)

        doc.kpis.timings[spec.id] = duration_ms
        doc.kpis.counts[spec.id] = derive_counts(spec.id, record.output, self.base_dir)
        doc.kpis.tokens_used += _tokens_from(summary)
        doc.log_execution(spec.agent, EVENT_COMPLETED, f"Phase {spec.id} completed in {duration_ms}ms")
        self.store.save(document_path, doc)
        return validation.warnings

    async def _invoke(self, producer: Producer, invocation: PhaseInvocation) -> Any:
        try:
            return await call_maybe_async(producer.execute, invocation)
        except (ProducerExecutionError, DocumentIOError):
            raise
        except Exception as e:
            raise ProducerExecutionError(
                invocation.phase_id, f"{type(e).__name__}: {e}", {"type": type(e).__name__}
            ) from e

    def _record_failure(self, document_path: Path, spec: PhaseSpec, error: Exception) -> str:
        doc = self.store.load(document_path)
        leave_pending = isinstance(error, MissingDependencyError) and not self.continue_on_error
        if leave_pending:
            status = PHASE_PENDING
        else:
            doc.mark_phase_error(spec.id, error, spec.agent)
            status = PHASE_FAILED
        doc.log_execution(spec.agent, EVENT_FAILED, f"Phase {spec.id} failed: {error}")
        self.store.save(document_path, doc)
        return status

    def _finish(
        self,
        document_path: Path,
        outcomes: list[PhaseOutcome],
        started_at: datetime,
        start: float,
        ctx: RunContext,
    ) -> PipelineSummary:
        doc = self.store.load(document_path)
        total_ms = int(round((time.monotonic() - start) * 1000))
        doc.kpis.orchestration = orchestration_summary(
            started_at=started_at.isoformat(),
            finished_at=datetime.now().isoformat(),
            total_duration_ms=total_ms,
            attempts={o.phase: 1 for o in outcomes},
            tokens_used=doc.kpis.tokens_used,
        )
        doc.metadata.status = document_status(doc, self.topology)
        self.store.save(document_path, doc)

        doc_summary = doc.summary()
        summary = PipelineSummary(
            identifier=doc.metadata.identifier,
            status=doc.metadata.status,
            outcomes=outcomes,
            completed=doc_summary.completed,
            failed=doc_summary.failed,
            pending=doc_summary.pending,
            total_duration_ms=total_ms,
            tokens_used=doc.kpis.tokens_used,
        )
        ctx.log(
            f"Pipeline finished: {len(summary.completed)}/{len(doc.phases)} phases completed, "
            f"status {summary.status}"
        )

        if self.report_dir is not None:
            try:
                summary.report = write_kpi_report(doc, self.report_dir, document_path)
            except OSError as e:
                ctx.log(f"KPI report failed: {e}")

        run_status = summary.status if summary.success or self.continue_on_error else "aborted"
        ctx.write_result(run_status, summary.failed_phase)
        return summary
