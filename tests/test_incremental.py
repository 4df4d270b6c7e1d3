"""Tests for forge.workflow.incremental."""

import asyncio
import json
from pathlib import Path

import pytest

from forge.document.model import UnknownPhaseError
from forge.document.store import InMemoryDocumentStore
from forge.lib.topology import explicit_topology
from forge.producers.contract import CallableProducer
from forge.runner.executor import PhaseExecutor
from forge.runner.stages import PhaseFailed
from forge.workflow.checkpoint import (
    APPROVED,
    READY_FOR_REVIEW,
    VALIDATION_FAILED,
    Checkpoint,
    CheckpointNotFoundError,
    CheckpointStore,
    InvalidTransition,
)
from forge.workflow.incremental import IncrementalWorkflow, approve_feature, validate_generated

DOC = Path("rvd.json")


def write_generated(directory: Path):
    (directory / "tests").mkdir(parents=True)
    (directory / "package.json").write_text(json.dumps({"name": "login-service"}))
    (directory / "index.js").write_text("module.exports = {};\n")
    (directory / "tests" / "index.test.js").write_text("test('x', () => {});\n")
    (directory / "README.md").write_text("# Login\n")


@pytest.fixture
def requirements(tmp_path):
    path = tmp_path / "requirements.md"
    path.write_text("# Login Service\n\nUsers sign in.\n")
    return path


@pytest.fixture
def workflow(tmp_path, producers):
    store = InMemoryDocumentStore()
    executor = PhaseExecutor(explicit_topology(), producers, store)
    return IncrementalWorkflow(
        executor=executor,
        document_path=DOC,
        checkpoints=CheckpointStore(tmp_path / "checkpoints"),
        generated_code_dir=tmp_path / "generated",
    )


class TestValidateGenerated:
    """Tests for the artifact-presence gate."""

    def test_complete_project(self, tmp_path):
        """A full project passes all four checks."""
        write_generated(tmp_path / "app")
        report = validate_generated(tmp_path / "app")
        assert report.passed
        assert [c.name for c in report.checks] == [
            "files-generated", "manifest-valid", "tests-present", "readme-present",
        ]
        assert all(c.status == "pass" for c in report.checks)

    def test_no_directory(self):
        """No generated directory fails files-generated."""
        report = validate_generated(None)
        assert not report.passed
        assert report.checks[0].name == "files-generated"

    def test_empty_directory(self, tmp_path):
        """An empty directory fails."""
        assert not validate_generated(tmp_path).passed

    def test_missing_extras_only_warn(self, tmp_path):
        """Missing manifest, tests and README only warn."""
        (tmp_path / "main.py").write_text("print('hi')\n")
        report = validate_generated(tmp_path)
        assert report.passed
        statuses = {c.name: c.status for c in report.checks}
        assert statuses == {
            "files-generated": "pass",
            "manifest-valid": "warn",
            "tests-present": "warn",
            "readme-present": "warn",
        }

    def test_broken_manifest_fails(self, tmp_path):
        """An unparseable package.json fails the gate."""
        (tmp_path / "package.json").write_text("{broken")
        report = validate_generated(tmp_path)
        assert not report.passed

    def test_pyproject_manifest(self, tmp_path):
        """pyproject.toml is parsed and its project name reported."""
        (tmp_path / "pyproject.toml").write_text('[project]\nname = "login"\n')
        check = next(c for c in validate_generated(tmp_path).checks if c.name == "manifest-valid")
        assert check.status == "pass"
        assert "login" in check.message

    def test_deployment_yaml(self, tmp_path):
        """A broken deployment YAML fails the gate."""
        (tmp_path / "deployment.yaml").write_text("service: [unclosed\n")
        assert not validate_generated(tmp_path).passed


class TestRunFeature:
    """Tests for IncrementalWorkflow.run_feature."""

    def test_ready_for_review(self, tmp_path, workflow, requirements):
        """A passing run with generated code reaches ready-for-review."""
        write_generated(tmp_path / "generated" / "login")
        checkpoint = asyncio.run(workflow.run_feature("login", requirements))

        assert checkpoint.status == READY_FOR_REVIEW
        assert list(checkpoint.phases) == explicit_topology().ids
        assert checkpoint.last_phase == "deployment"
        assert checkpoint.validation.passed
        assert checkpoint.requirements == str(requirements)

        saved = workflow.checkpoints.load("login")
        assert saved.status == READY_FOR_REVIEW

    def test_validation_failed(self, workflow, requirements):
        """Without generated code the gate fails the feature."""
        checkpoint = asyncio.run(workflow.run_feature("login", requirements))
        assert checkpoint.status == VALIDATION_FAILED
        assert workflow.checkpoints.load("login").status == VALIDATION_FAILED

    def test_no_validate(self, workflow, requirements):
        """validate=False skips the gate."""
        checkpoint = asyncio.run(workflow.run_feature("login", requirements, validate=False))
        assert checkpoint.status == READY_FOR_REVIEW
        assert checkpoint.validation is None

    def test_resume_runs_downstream_only(self, workflow, requirements, sections):
        """Resuming runs only the start phase and what follows."""
        asyncio.run(workflow.run_feature("login", requirements, validate=False))

        calls = []
        for pid, fn in list(workflow.executor.producers.items()):
            workflow.executor.producers[pid] = CallableProducer(
                lambda inv, fn=fn: calls.append(inv.phase_id) or fn.execute(inv)
            )

        checkpoint = asyncio.run(
            workflow.run_feature("login", requirements, start_from_phase="review", validate=False)
        )
        assert calls == ["review", "documentation", "deployment"]
        assert checkpoint.status == READY_FOR_REVIEW
        doc = workflow.executor.store.load(DOC)
        assert doc.phases["functional"].output == sections["functional"]

    def test_resume_from_unknown_phase(self, workflow, requirements):
        """Resuming from an undeclared phase raises."""
        with pytest.raises(UnknownPhaseError):
            asyncio.run(workflow.run_feature("login", requirements, start_from_phase="bogus"))

    def test_dry_run_executes_nothing(self, workflow, requirements):
        """A dry run writes neither checkpoint nor document."""
        checkpoint = asyncio.run(workflow.run_feature("login", requirements, dry_run=True))
        assert checkpoint.status == "new"
        assert not workflow.checkpoints.exists("login")
        assert not workflow.executor.store.exists(DOC)

    def test_approved_feature_cannot_rerun(self, workflow, requirements):
        """Approved features are terminal."""
        workflow.checkpoints.save(Checkpoint("login", status=APPROVED))
        with pytest.raises(InvalidTransition):
            asyncio.run(workflow.run_feature("login", requirements))

    def test_abort_leaves_checkpoint_untouched(self, workflow, requirements):
        """An aborted run saves no checkpoint."""
        def failing(invocation):
            raise RuntimeError("boom")

        workflow.executor.producers["testing"] = CallableProducer(failing)
        with pytest.raises(PhaseFailed):
            asyncio.run(workflow.run_feature("login", requirements))
        assert not workflow.checkpoints.exists("login")

    def test_failure_under_continue_on_error_does_not_advance(self, tmp_path, producers, requirements):
        """A phase failure with continue_on_error still stops the checkpoint."""
        def failing(invocation):
            raise RuntimeError("boom")

        producers["technical"] = CallableProducer(failing)
        executor = PhaseExecutor(explicit_topology(), producers, InMemoryDocumentStore(), continue_on_error=True)
        checkpoints = CheckpointStore(tmp_path / "checkpoints")
        checkpoints.save(Checkpoint("login", status=READY_FOR_REVIEW))
        write_generated(tmp_path / "generated" / "login")
        workflow = IncrementalWorkflow(executor, DOC, checkpoints, tmp_path / "generated")

        with pytest.raises(PhaseFailed) as exc:
            asyncio.run(workflow.run_feature("login", requirements, validate=False))

        assert exc.value.phase == "technical"
        assert "technical" in exc.value.summary.failed
        saved = checkpoints.load("login")
        assert saved.status == READY_FOR_REVIEW
        assert saved.phases == {}


class TestApproveFeature:
    """Tests for approve_feature."""

    def test_approve(self, tmp_path):
        """Approval records notes and time."""
        store = CheckpointStore(tmp_path)
        store.save(Checkpoint("login", status=READY_FOR_REVIEW))
        checkpoint = approve_feature(store, "login", "Looks good")
        assert checkpoint.status == APPROVED
        assert checkpoint.review_notes == "Looks good"
        assert checkpoint.approved_at is not None
        assert store.load("login").status == APPROVED

    def test_missing_checkpoint(self, tmp_path):
        """Approving an unknown feature raises CheckpointNotFoundError."""
        with pytest.raises(CheckpointNotFoundError):
            approve_feature(CheckpointStore(tmp_path), "login")

    def test_not_ready(self, tmp_path):
        """Approval from validation-failed is rejected and nothing changes."""
        store = CheckpointStore(tmp_path)
        store.save(Checkpoint("login", status=VALIDATION_FAILED))
        with pytest.raises(InvalidTransition):
            approve_feature(store, "login")
        assert store.load("login").status == VALIDATION_FAILED
