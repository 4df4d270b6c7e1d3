"""Feature checkpoint: record, lifecycle state machine, and persistence.

One checkpoint per feature, stored as <checkpoint_dir>/<feature>.json.

Lifecycle (transitions library, explicit triggers only):
    new / phase-complete / validation-failed / ready-for-review
        --complete_phase--> phase-complete
    phase-complete --fail_validation--> validation-failed
    phase-complete --request_review--> ready-for-review
    ready-for-review --approve--> approved

approved is terminal and only reachable through approve, i.e. an explicit
human action.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from transitions import Machine, MachineError

from forge.lib.artifacts import slugify
from forge.lib.validate import ValidationError, validate_before_write, validate_file

logger = logging.getLogger(__name__)

NEW = "new"
PHASE_COMPLETE = "phase-complete"
VALIDATION_FAILED = "validation-failed"
READY_FOR_REVIEW = "ready-for-review"
APPROVED = "approved"

STATES = [NEW, PHASE_COMPLETE, VALIDATION_FAILED, READY_FOR_REVIEW, APPROVED]

TRANSITIONS = [
    {"trigger": "complete_phase", "source": [NEW, PHASE_COMPLETE, VALIDATION_FAILED, READY_FOR_REVIEW],
     "dest": PHASE_COMPLETE},
    {"trigger": "fail_validation", "source": PHASE_COMPLETE, "dest": VALIDATION_FAILED},
    {"trigger": "request_review", "source": PHASE_COMPLETE, "dest": READY_FOR_REVIEW},
    {"trigger": "approve", "source": READY_FOR_REVIEW, "dest": APPROVED},
]


class CheckpointNotFoundError(FileNotFoundError):
    """No checkpoint exists for the feature."""

    def __init__(self, feature: str, path: Path):
        self.feature = feature
        self.path = path
        super().__init__(f"No checkpoint for feature '{feature}' at {path}")


class InvalidTransition(Exception):
    """Raised when attempting an invalid checkpoint state transition."""

    def __init__(self, from_state: str, trigger: str, feature: str = ""):
        self.from_state = from_state
        self.trigger = trigger
        self.feature = feature
        super().__init__(
            f"Invalid transition: cannot {trigger} from {from_state}"
            + (f" (feature: {feature})" if feature else "")
        )


@dataclass
class ValidationCheck:
    name: str
    status: str  # pass, warn, fail
    message: str

    def to_dict(self) -> dict:
        return {"name": self.name, "status": self.status, "message": self.message}


@dataclass
class ValidationReport:
    checks: list[ValidationCheck] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not any(c.status == "fail" for c in self.checks)

    def add(self, name: str, status: str, message: str) -> None:
        self.checks.append(ValidationCheck(name, status, message))

    def to_dict(self) -> dict:
        return {"passed": self.passed, "checks": [c.to_dict() for c in self.checks]}

    @classmethod
    def from_dict(cls, data: dict | None) -> "ValidationReport | None":
        if data is None:
            return None
        return cls(checks=[ValidationCheck(**c) for c in data.get("checks", [])])


@dataclass
class Checkpoint:
    """Per-feature progress record."""
    feature_name: str
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    requirements: str | None = None
    phases: dict[str, dict] = field(default_factory=dict)
    last_phase: str | None = None
    status: str = NEW
    validation: ValidationReport | None = None
    review_notes: str | None = None
    approved_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "featureName": self.feature_name,
            "createdAt": self.created_at,
            "requirements": self.requirements,
            "phases": self.phases,
            "lastPhase": self.last_phase,
            "status": self.status,
            "validation": self.validation.to_dict() if self.validation else None,
            "reviewNotes": self.review_notes,
            "approvedAt": self.approved_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Checkpoint":
        return cls(
            feature_name=data["featureName"],
            created_at=data["createdAt"],
            requirements=data.get("requirements"),
            phases=dict(data.get("phases", {})),
            last_phase=data.get("lastPhase"),
            status=data.get("status", NEW),
            validation=ValidationReport.from_dict(data.get("validation")),
            review_notes=data.get("reviewNotes"),
            approved_at=data.get("approvedAt"),
        )


class CheckpointFSM:
    """State machine over one Checkpoint.

    The checkpoint's status field is the machine state; every transition
    writes it back and logs it. Persistence is left to CheckpointStore.
    """

    def __init__(self, checkpoint: Checkpoint):
        self.checkpoint = checkpoint

        initial = checkpoint.status
        if initial not in STATES:
            logger.warning(f"[FSM] {checkpoint.feature_name}: Unknown state '{initial}', defaulting to '{NEW}'")
            initial = NEW

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        self.checkpoint.status = to_state
        logger.info(f"[FSM] {self.checkpoint.feature_name}: {from_state} -> {to_state} ({event.event.name})")

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)

    def fire(self, trigger: str) -> None:
        """Run a trigger, translating library errors to InvalidTransition."""
        if not self.can(trigger):
            raise InvalidTransition(self.state, trigger, self.checkpoint.feature_name)
        try:
            getattr(self, trigger)()
        except MachineError as e:
            raise InvalidTransition(self.state, trigger, self.checkpoint.feature_name) from e


class CheckpointStore:
    """Checkpoint files under one directory."""

    def __init__(self, checkpoint_dir: Path):
        self.checkpoint_dir = Path(checkpoint_dir)

    def path_for(self, feature: str) -> Path:
        return self.checkpoint_dir / f"{slugify(feature)}.json"

    def exists(self, feature: str) -> bool:
        return self.path_for(feature).exists()

    def load(self, feature: str) -> Checkpoint:
        """
        Raises:
            CheckpointNotFoundError: if no checkpoint file exists
            ValidationError: if the file is not a valid checkpoint
        """
        path = self.path_for(feature)
        if not path.exists():
            raise CheckpointNotFoundError(feature, path)
        return Checkpoint.from_dict(validate_file(path, "checkpoint"))

    def load_or_new(self, feature: str) -> Checkpoint:
        if self.exists(feature):
            return self.load(feature)
        return Checkpoint(feature_name=feature)

    def save(self, checkpoint: Checkpoint) -> Path:
        path = self.path_for(checkpoint.feature_name)
        data = checkpoint.to_dict()
        validate_before_write(data, "checkpoint", path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2) + "\n")
        logger.debug(f"Saved checkpoint {path} ({checkpoint.status})")
        return path

    def list_checkpoints(self) -> list[Checkpoint]:
        if not self.checkpoint_dir.exists():
            return []
        checkpoints = []
        for path in sorted(self.checkpoint_dir.glob("*.json")):
            try:
                checkpoints.append(Checkpoint.from_dict(validate_file(path, "checkpoint")))
            except ValidationError as e:
                logger.warning(f"Skipping invalid checkpoint {path}: {e}")
        return checkpoints
