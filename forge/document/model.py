"""
The shared versioned document ("RVD").

One document per requirement run. Every phase writes its output into its own
PhaseRecord; downstream phases read those outputs only once the record is
completed.
"""

import traceback
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from forge.lib.constants import (
    DOC_FAILED,
    DOC_IN_PROGRESS,
    DOCUMENT_VERSION,
    PHASE_COMPLETED,
    PHASE_FAILED,
    PHASE_PENDING,
)
from forge.lib.types import (
    InputRef,
    ManyInputs,
    NoInput,
    SingleInput,
    decode_input_ref,
    encode_input_ref,
)


class MissingDependencyError(Exception):
    """A declared input phase has not completed."""

    def __init__(self, phase: str, status: str, required_by: str | None = None):
        self.phase = phase
        self.status = status
        self.required_by = required_by
        msg = f"Phase {phase} is not completed yet (status: {status})"
        if required_by:
            msg += f"; required by {required_by}"
        super().__init__(msg)


class UnknownPhaseError(ValueError):
    """A phase id is not declared."""

    def __init__(self, phase: str, known: list[str] | None = None):
        self.phase = phase
        self.known = known or []
        msg = f"Unknown phase: {phase}"
        if self.known:
            msg += f" (known: {', '.join(self.known)})"
        super().__init__(msg)


@dataclass
class PhaseError:
    """One recorded failure of a phase."""
    timestamp: str
    message: str
    stack: str | None = None

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "message": self.message, "stack": self.stack}

    @classmethod
    def from_dict(cls, data: dict) -> "PhaseError":
        return cls(
            timestamp=data.get("timestamp", ""),
            message=data.get("message", ""),
            stack=data.get("stack"),
        )


@dataclass
class PhaseRecord:
    """Status/output/error envelope for one phase."""
    status: str = PHASE_PENDING
    timestamp: str | None = None
    agent: str | None = None
    input_ref: InputRef = field(default_factory=NoInput)
    output: Any = None
    errors: list[PhaseError] = field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.status == PHASE_COMPLETED

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "agent": self.agent,
            "input": encode_input_ref(self.input_ref),
            "output": self.output,
            "errors": [e.to_dict() for e in self.errors],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PhaseRecord":
        return cls(
            status=data.get("status", PHASE_PENDING),
            timestamp=data.get("timestamp"),
            agent=data.get("agent"),
            input_ref=decode_input_ref(data.get("input")),
            output=data.get("output"),
            errors=[PhaseError.from_dict(e) for e in data.get("errors", [])],
        )


@dataclass
class DocumentMetadata:
    identifier: str
    version: str = DOCUMENT_VERSION
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    status: str = DOC_IN_PROGRESS
    project_path: str | None = None

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "version": self.version,
            "createdAt": self.created_at,
            "status": self.status,
            "projectPath": self.project_path,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentMetadata":
        return cls(
            identifier=data["identifier"],
            version=data.get("version", DOCUMENT_VERSION),
            created_at=data.get("createdAt", ""),
            status=data.get("status", DOC_IN_PROGRESS),
            project_path=data.get("projectPath"),
        )


@dataclass
class DocumentMetrics:
    total_phases: int = 0
    completed_phases: int = 0
    failed_phases: int = 0
    start_time: str | None = None
    end_time: str | None = None

    def to_dict(self) -> dict:
        return {
            "totalPhases": self.total_phases,
            "completedPhases": self.completed_phases,
            "failedPhases": self.failed_phases,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentMetrics":
        return cls(
            total_phases=data.get("totalPhases", 0),
            completed_phases=data.get("completedPhases", 0),
            failed_phases=data.get("failedPhases", 0),
            start_time=data.get("startTime"),
            end_time=data.get("endTime"),
        )


@dataclass
class Kpis:
    """KPI block. Owned by the executor, mutated only during a run."""
    timings: dict[str, int] = field(default_factory=dict)
    counts: dict[str, dict] = field(default_factory=dict)
    orchestration: dict = field(default_factory=dict)
    tokens_used: int = 0

    def to_dict(self) -> dict:
        return {
            "timings": self.timings,
            "counts": self.counts,
            "orchestration": self.orchestration,
            "tokensUsed": self.tokens_used,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "Kpis":
        data = data or {}
        return cls(
            timings=dict(data.get("timings", {})),
            counts=dict(data.get("counts", {})),
            orchestration=dict(data.get("orchestration", {})),
            tokens_used=data.get("tokensUsed", 0),
        )


@dataclass
class DocumentSummary:
    identifier: str
    status: str
    completed: list[str]
    failed: list[str]
    pending: list[str]
    last_updated: str | None = None

    @property
    def total(self) -> int:
        return len(self.completed) + len(self.failed) + len(self.pending)

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "status": self.status,
            "completed": len(self.completed),
            "failed": len(self.failed),
            "pending": len(self.pending),
            "total": self.total,
            "completedPhases": self.completed,
            "failedPhases": self.failed,
            "pendingPhases": self.pending,
            "lastUpdated": self.last_updated,
        }


KNOWN_KEYS = {
    "version", "metadata", "phases", "metrics", "kpis", "executionLog",
    "agents", "patterns", "knowledge", "lastUpdated",
}


def _empty_knowledge() -> dict:
    return {"learnedPatterns": [], "strategies": {}, "successRates": {}}


@dataclass
class Document:
    """In-memory form of the document file."""
    metadata: DocumentMetadata
    phases: dict[str, PhaseRecord] = field(default_factory=dict)
    metrics: DocumentMetrics = field(default_factory=DocumentMetrics)
    kpis: Kpis = field(default_factory=Kpis)
    execution_log: list[dict] = field(default_factory=list)
    agents: list[dict] = field(default_factory=list)
    patterns: list[dict] = field(default_factory=list)
    knowledge: dict = field(default_factory=_empty_knowledge)
    last_updated: str | None = None
    version: str = DOCUMENT_VERSION
    # Unknown top-level keys, kept so load/save round-trips
    extra: dict = field(default_factory=dict)

    @classmethod
    def new(cls, identifier: str, topology, project_path: str | None = None) -> "Document":
        """Create an empty document with a pending slot per declared phase."""
        doc = cls(metadata=DocumentMetadata(identifier=identifier, project_path=project_path))
        doc.ensure_phases(topology)
        return doc

    def ensure_phases(self, topology) -> list[str]:
        """Add pending slots for declared phases the document lacks.

        Returns the ids that were added.
        """
        added = []
        for spec in topology:
            if spec.id not in self.phases:
                self.phases[spec.id] = PhaseRecord(agent=spec.agent, input_ref=spec.input_ref)
                added.append(spec.id)
        self.metrics.total_phases = len(self.phases)
        return added

    # --- phase access ---

    def record(self, phase_id: str) -> PhaseRecord:
        if phase_id not in self.phases:
            raise UnknownPhaseError(phase_id, list(self.phases))
        return self.phases[phase_id]

    def get_phase_output(self, phase_id: str, required_by: str | None = None) -> Any:
        """Return a phase's output, only if it has completed.

        Raises:
            MissingDependencyError: if the phase is not completed
        """
        if phase_id not in self.phases:
            raise MissingDependencyError(phase_id, "missing", required_by)
        record = self.phases[phase_id]
        if not record.is_completed:
            raise MissingDependencyError(phase_id, record.status, required_by)
        return record.output

    def get_phase_input(self, phase_id: str) -> Any:
        """Resolve a phase's declared input reference into completed outputs."""
        record = self.record(phase_id)
        match record.input_ref:
            case NoInput():
                return None
            case SingleInput(phase=dep):
                return self.get_phase_output(dep, required_by=phase_id)
            case ManyInputs(phases=deps):
                return [self.get_phase_output(dep, required_by=phase_id) for dep in deps]
        raise TypeError(f"Invalid input reference for phase {phase_id}: {record.input_ref!r}")

    def update_phase(self, phase_id: str, output: Any, agent: str | None = None) -> None:
        """Store a phase's output and mark it completed."""
        record = self.record(phase_id)
        now = datetime.now().isoformat()
        record.status = PHASE_COMPLETED
        record.timestamp = now
        record.agent = agent or record.agent
        record.output = output
        record.errors = []

        self.metrics.completed_phases += 1
        if not self.metrics.start_time:
            self.metrics.start_time = now
        self.metrics.end_time = now
        self.last_updated = now

    def mark_phase_error(self, phase_id: str, error: BaseException | str, agent: str | None = None) -> None:
        """Mark a phase failed and append the error to its record."""
        record = self.record(phase_id)
        now = datetime.now().isoformat()
        if isinstance(error, BaseException):
            message = str(error)
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        else:
            message = str(error)
            stack = None

        record.status = PHASE_FAILED
        record.timestamp = now
        record.agent = agent or record.agent
        record.errors.append(PhaseError(timestamp=now, message=message, stack=stack))

        self.metrics.failed_phases += 1
        self.metadata.status = DOC_FAILED
        self.last_updated = now

    def reset_phase(self, phase_id: str) -> None:
        """Return a phase to its initial pending state. Agent and input are kept."""
        record = self.record(phase_id)
        self.phases[phase_id] = PhaseRecord(agent=record.agent, input_ref=record.input_ref)

    # --- logs and knowledge ---

    def log_execution(self, agent: str, event: str, message: str) -> None:
        self.execution_log.append({
            "timestamp": datetime.now().isoformat(),
            "agent": agent,
            "event": event,
            "message": message,
        })

    def track_agent(self, agent: str, phase: str, config: dict | None = None) -> None:
        self.agents.append({
            "name": agent,
            "phase": phase,
            "executed": datetime.now().isoformat(),
            "config": config or {},
        })

    def learn_pattern(self, pattern: dict) -> None:
        """Append a learned pattern. Written by knowledge collaborators."""
        self.patterns.append({**pattern, "learnedAt": datetime.now().isoformat()})
        if pattern.get("name"):
            self.knowledge.setdefault("learnedPatterns", []).append(pattern["name"])

    def register_strategy(self, name: str, strategy: dict) -> None:
        self.knowledge.setdefault("strategies", {})[name] = strategy

    def summary(self) -> DocumentSummary:
        by_status: dict[str, list[str]] = {PHASE_COMPLETED: [], PHASE_FAILED: [], PHASE_PENDING: []}
        for phase_id, record in self.phases.items():
            by_status.setdefault(record.status, []).append(phase_id)
        return DocumentSummary(
            identifier=self.metadata.identifier,
            status=self.metadata.status,
            completed=by_status[PHASE_COMPLETED],
            failed=by_status[PHASE_FAILED],
            pending=by_status[PHASE_PENDING],
            last_updated=self.last_updated,
        )

    # --- serialization ---

    def to_dict(self) -> dict:
        data = {
            "version": self.version,
            "metadata": self.metadata.to_dict(),
            "phases": {pid: rec.to_dict() for pid, rec in self.phases.items()},
            "metrics": self.metrics.to_dict(),
            "kpis": self.kpis.to_dict(),
            "executionLog": self.execution_log,
            "agents": self.agents,
            "patterns": self.patterns,
            "knowledge": self.knowledge,
            "lastUpdated": self.last_updated,
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        return cls(
            version=data.get("version", DOCUMENT_VERSION),
            metadata=DocumentMetadata.from_dict(data["metadata"]),
            phases={pid: PhaseRecord.from_dict(rec) for pid, rec in data.get("phases", {}).items()},
            metrics=DocumentMetrics.from_dict(data.get("metrics", {})),
            kpis=Kpis.from_dict(data.get("kpis")),
            execution_log=list(data.get("executionLog", [])),
            agents=list(data.get("agents", [])),
            patterns=list(data.get("patterns", [])),
            knowledge=data.get("knowledge") or _empty_knowledge(),
            last_updated=data.get("lastUpdated"),
            extra={k: v for k, v in data.items() if k not in KNOWN_KEYS},
        )
