"""Incremental feature workflow.

Runs (or resumes) a feature from a given phase, gates the result on an
artifact-presence check, and holds it for human approval.

Resuming from a phase other than the first resets that phase and everything
after it in the document, then runs the executor in-process on exactly that
subset.
"""

import json
import logging
import tomllib
from datetime import datetime
from pathlib import Path

import yaml

from forge.document.reset import reset_sections
from forge.document.store import editing
from forge.lib.artifacts import count_files, derive_project_name, find_generated_dir
from forge.runner.executor import PhaseExecutor
from forge.runner.stages import PhaseFailed
from forge.workflow.checkpoint import (
    Checkpoint,
    CheckpointFSM,
    CheckpointStore,
    InvalidTransition,
    ValidationReport,
)

logger = logging.getLogger(__name__)

MANIFESTS = ("package.json", "pyproject.toml", "deployment.json", "deployment.yaml", "deployment.yml")


def _check_manifest(path: Path) -> str:
    """Parse a manifest; returns a short description or raises."""
    if path.name == "package.json":
        data = json.loads(path.read_text())
        return data.get("name", path.name) if isinstance(data, dict) else path.name
    if path.name == "pyproject.toml":
        data = tomllib.loads(path.read_text())
        return data.get("project", {}).get("name", path.name)
    if path.suffix == ".json":
        json.loads(path.read_text())
        return path.name

    yaml.safe_load(path.read_text())
    return path.name


def validate_generated(generated: Path | None) -> ValidationReport:
    """Artifact-presence checks over a feature's generated code directory.

    Checks: files-generated, manifest-valid, tests-present, readme-present.
    """
    report = ValidationReport()

    if generated is None:
        report.add("files-generated", "fail", "No generated code found")
        return report

    files = count_files(generated)
    if files == 0:
        report.add("files-generated", "fail", f"No files in {generated}")
    else:
        report.add("files-generated", "pass", f"{files} files generated")

    manifests = [generated / m for m in MANIFESTS if (generated / m).exists()]
    if not manifests:
        report.add("manifest-valid", "warn", "No manifest found")
    for manifest in manifests:
        try:
            report.add("manifest-valid", "pass", f"{manifest.name}: {_check_manifest(manifest)}")
        except (ValueError, tomllib.TOMLDecodeError, yaml.YAMLError, OSError) as e:
            report.add("manifest-valid", "fail", f"{manifest.name}: {e}")

    tests_dir = next((generated / d for d in ("tests", "test", "__tests__") if (generated / d).is_dir()), None)
    if tests_dir is not None:
        report.add("tests-present", "pass", f"{count_files(tests_dir)} test files")
    else:
        report.add("tests-present", "warn", "No tests directory")

    readme = generated / "README.md"
    if readme.exists():
        report.add("readme-present", "pass", f"{readme.stat().st_size / 1024:.1f} KB")
    else:
        report.add("readme-present", "warn", "No README.md")

    return report


class IncrementalWorkflow:
    """Feature-level driver around a PhaseExecutor."""

    def __init__(
        self,
        executor: PhaseExecutor,
        document_path: Path,
        checkpoints: CheckpointStore,
        generated_code_dir: Path,
    ):
        self.executor = executor
        self.document_path = Path(document_path)
        self.checkpoints = checkpoints
        self.generated_code_dir = Path(generated_code_dir)

    async def run_feature(
        self,
        feature: str,
        requirements: Path,
        start_from_phase: str | None = None,
        validate: bool = True,
        dry_run: bool = False,
        skip_cleanup: bool = False,
    ) -> Checkpoint:
        """Run or resume a feature.

        Returns the checkpoint in phase-complete's successor state:
        ready-for-review, or validation-failed when the gate fails.

        Raises:
            UnknownPhaseError: start_from_phase is not declared
            InvalidTransition: the feature is already approved
            PhaseFailed: a phase failed (abort or continue-on-error); the
                checkpoint is not updated
        """
        topology = self.executor.topology
        start = start_from_phase or topology.first.id
        run_set = topology.downstream_of(start)
        resuming = start != topology.first.id

        checkpoint = self.checkpoints.load_or_new(feature)
        fsm = CheckpointFSM(checkpoint)
        if not fsm.can("complete_phase"):
            raise InvalidTransition(checkpoint.status, "complete_phase", feature)

        logger.info(f"Feature {feature}: phases {', '.join(run_set)} (validate={validate})")
        if resuming:
            logger.info(f"Resuming from {start}; previously completed: {', '.join(checkpoint.phases) or 'none'}")

        if dry_run:
            action = "keep" if skip_cleanup or not resuming else "reset"
            logger.info(f"[DRY RUN] Would {action} sections {', '.join(run_set)} and run them; nothing executed")
            return checkpoint

        checkpoint.requirements = str(requirements)
        store = self.executor.store
        if resuming and not skip_cleanup and store.exists(self.document_path):
            with editing(store, self.document_path) as doc:
                reset_sections(doc, run_set)

        self.executor.requirements_path = Path(requirements)
        summary = await self.executor.run(self.document_path, identifier=feature, phases=run_set)
        if not summary.success:
            # continue_on_error runs come back with failures instead of raising
            outcome = next(o for o in summary.outcomes if o.failed)
            error = outcome.error or RuntimeError(f"Phase {outcome.phase} did not complete")
            logger.warning(f"Feature {feature}: phase {outcome.phase} failed; checkpoint not advanced")
            raise PhaseFailed(outcome.phase, error, summary)

        now = datetime.now().isoformat()
        for outcome in summary.outcomes:
            if not outcome.failed:
                checkpoint.phases[outcome.phase] = {"completedAt": now}
                checkpoint.last_phase = outcome.phase
        fsm.fire("complete_phase")
        self.checkpoints.save(checkpoint)

        if validate:
            project = derive_project_name(Path(requirements))
            generated = find_generated_dir(self.generated_code_dir, feature, project)
            report = validate_generated(generated)
            checkpoint.validation = report
            for check in report.checks:
                logger.info(f"[{check.status}] {check.name}: {check.message}")
            if not report.passed:
                fsm.fire("fail_validation")
                self.checkpoints.save(checkpoint)
                logger.warning(f"Feature {feature} failed validation")
                return checkpoint

        fsm.fire("request_review")
        self.checkpoints.save(checkpoint)
        logger.info(f"Feature {feature} ready for review: {self.checkpoints.path_for(feature)}")
        return checkpoint


def approve_feature(checkpoints: CheckpointStore, feature: str, notes: str = "") -> Checkpoint:
    """The only path to approved.

    Raises:
        CheckpointNotFoundError: no checkpoint for the feature
        InvalidTransition: the checkpoint is not ready-for-review
    """
    checkpoint = checkpoints.load(feature)
    CheckpointFSM(checkpoint).fire("approve")
    checkpoint.review_notes = notes
    checkpoint.approved_at = datetime.now().isoformat()
    checkpoints.save(checkpoint)
    return checkpoint
