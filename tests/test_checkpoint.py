"""Tests for forge.workflow.checkpoint."""

import json

import pytest

from forge.lib.validate import ValidationError
from forge.workflow.checkpoint import (
    APPROVED,
    NEW,
    PHASE_COMPLETE,
    READY_FOR_REVIEW,
    STATES,
    VALIDATION_FAILED,
    Checkpoint,
    CheckpointFSM,
    CheckpointNotFoundError,
    CheckpointStore,
    InvalidTransition,
    ValidationReport,
)


class TestCheckpointFSM:
    """Tests for the checkpoint lifecycle."""

    def test_states(self):
        """The lifecycle has exactly five states."""
        assert set(STATES) == {"new", "phase-complete", "validation-failed", "ready-for-review", "approved"}

    def test_happy_path(self):
        """new -> phase-complete -> ready-for-review -> approved."""
        checkpoint = Checkpoint("login")
        fsm = CheckpointFSM(checkpoint)
        fsm.fire("complete_phase")
        assert checkpoint.status == PHASE_COMPLETE
        fsm.fire("request_review")
        assert checkpoint.status == READY_FOR_REVIEW
        fsm.fire("approve")
        assert checkpoint.status == APPROVED

    def test_validation_failed_can_rerun(self):
        """A failed gate can be re-run but not approved."""
        checkpoint = Checkpoint("login", status=VALIDATION_FAILED)
        fsm = CheckpointFSM(checkpoint)
        assert fsm.can("complete_phase")
        assert not fsm.can("approve")
        fsm.fire("complete_phase")
        assert checkpoint.status == PHASE_COMPLETE

    def test_ready_for_review_can_rerun(self):
        """A feature under review can be re-run."""
        fsm = CheckpointFSM(Checkpoint("login", status=READY_FOR_REVIEW))
        assert fsm.can("complete_phase")

    def test_approve_requires_review(self):
        """Approval outside ready-for-review raises InvalidTransition."""
        fsm = CheckpointFSM(Checkpoint("login", status=PHASE_COMPLETE))
        with pytest.raises(InvalidTransition) as exc:
            fsm.fire("approve")
        assert exc.value.from_state == PHASE_COMPLETE
        assert exc.value.trigger == "approve"

    def test_approved_is_terminal(self):
        """Nothing leaves approved."""
        fsm = CheckpointFSM(Checkpoint("login", status=APPROVED))
        for trigger in ("complete_phase", "fail_validation", "request_review", "approve"):
            assert not fsm.can(trigger)

    def test_unknown_state_defaults_to_new(self):
        """An unknown stored status starts the machine at new."""
        fsm = CheckpointFSM(Checkpoint("login", status="bogus"))
        assert fsm.state == NEW


class TestValidationReport:
    """Tests for ValidationReport."""

    def test_warn_does_not_fail(self):
        """Warnings do not fail the report."""
        report = ValidationReport()
        report.add("files-generated", "pass", "3 files")
        report.add("readme-present", "warn", "No README.md")
        assert report.passed

    def test_fail(self):
        """Any failed check fails the report."""
        report = ValidationReport()
        report.add("files-generated", "fail", "none")
        assert not report.passed
        assert report.to_dict()["passed"] is False

    def test_round_trip(self):
        """Reports survive to_dict/from_dict."""
        report = ValidationReport()
        report.add("tests-present", "pass", "2 test files")
        assert ValidationReport.from_dict(report.to_dict()).to_dict() == report.to_dict()
        assert ValidationReport.from_dict(None) is None


class TestCheckpointStore:
    """Tests for checkpoint persistence."""

    def test_save_and_load(self, tmp_path):
        """Saved checkpoints load back unchanged."""
        store = CheckpointStore(tmp_path)
        checkpoint = Checkpoint("login", requirements="req.md")
        checkpoint.phases["functional"] = {"completedAt": "2024-01-01T00:00:00"}
        checkpoint.last_phase = "functional"
        path = store.save(checkpoint)

        assert path == tmp_path / "login.json"
        loaded = store.load("login")
        assert loaded.to_dict() == checkpoint.to_dict()

    def test_feature_names_are_slugified(self, tmp_path):
        """Checkpoint file names are slugs of the feature name."""
        store = CheckpointStore(tmp_path)
        assert store.path_for("User Login").name == "user-login.json"

    def test_load_missing(self, tmp_path):
        """Loading an unknown feature raises CheckpointNotFoundError."""
        with pytest.raises(CheckpointNotFoundError) as exc:
            CheckpointStore(tmp_path).load("login")
        assert exc.value.feature == "login"

    def test_load_invalid(self, tmp_path):
        """A checkpoint missing required fields fails validation."""
        (tmp_path / "login.json").write_text(json.dumps({"featureName": "login"}))
        with pytest.raises(ValidationError):
            CheckpointStore(tmp_path).load("login")

    def test_load_malformed_json(self, tmp_path):
        """A truncated checkpoint file is reported as invalid JSON."""
        (tmp_path / "login.json").write_text("{")
        with pytest.raises(ValidationError, match="Invalid JSON"):
            CheckpointStore(tmp_path).load("login")

    def test_load_or_new(self, tmp_path):
        """load_or_new does not write anything."""
        checkpoint = CheckpointStore(tmp_path).load_or_new("login")
        assert checkpoint.status == NEW
        assert not (tmp_path / "login.json").exists()

    def test_refuses_invalid_status(self, tmp_path):
        """An invalid status is never written."""
        with pytest.raises(ValidationError):
            CheckpointStore(tmp_path).save(Checkpoint("login", status="done"))

    def test_list_skips_invalid(self, tmp_path):
        """Listing skips unreadable checkpoint files."""
        store = CheckpointStore(tmp_path)
        store.save(Checkpoint("a"))
        store.save(Checkpoint("b", status=READY_FOR_REVIEW))
        (tmp_path / "broken.json").write_text("{")
        assert [c.feature_name for c in store.list_checkpoints()] == ["a", "b"]

    def test_list_without_dir(self, tmp_path):
        """No checkpoint directory means no checkpoints."""
        assert CheckpointStore(tmp_path / "none").list_checkpoints() == []
