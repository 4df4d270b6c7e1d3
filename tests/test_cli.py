"""Tests for the forge CLI."""

import json

import pytest

from forge.cli import build_parser, main
from forge.document.store import FileDocumentStore


def forge(project, *argv):
    return main(["--config", str(project / "forge.yaml"), *argv])


def run_pipeline(project):
    return forge(project, "run", "--requirements", str(project / "requirements.md"))


class TestParser:
    """Tests for argument parsing."""

    def test_run_defaults(self):
        """Tri-state run flags default to None so config decides."""
        args = build_parser().parse_args(["run", "--requirements", "req.md"])
        assert args.continue_on_error is None
        assert args.report is None
        assert args.reset_sections is None

    def test_run_flags(self):
        """run flags parse to their overrides."""
        args = build_parser().parse_args([
            "run", "-r", "req.md", "--continue-on-error", "--no-report", "--reset-sections", "downstream",
        ])
        assert args.continue_on_error is True
        assert args.report is False
        assert args.reset_sections == "downstream"

    def test_command_required(self):
        """A subcommand is required."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRunCommand:
    """Tests for forge run."""

    def test_success(self, project, capsys):
        """A full run prints the summary and exits 0."""
        assert run_pipeline(project) == 0
        out = capsys.readouterr().out
        assert "Pipeline Login Service: completed" in out
        assert "KPI report:" in out
        doc = FileDocumentStore().load(project / ".forge" / "rvd.json")
        assert doc.metadata.status == "completed"

    def test_document_override(self, project):
        """--document writes to the given path."""
        target = project / "docs" / "custom.json"
        assert forge(project, "run", "-r", str(project / "requirements.md"), "-d", str(target)) == 0
        assert target.exists()

    def test_abort_exit_code(self, project, capsys):
        """An aborted run exits 1 and names the phase."""
        config = project / "forge.yaml"
        config.write_text(config.read_text().replace("forge_test_agents:testing", "forge_test_agents:failing"))
        assert run_pipeline(project) == 1
        assert "Pipeline aborted at phase 'testing'" in capsys.readouterr().out

    def test_continue_on_error_exit_code(self, project, capsys):
        """A continue-on-error run with failures exits 0 and lists them."""
        config = project / "forge.yaml"
        config.write_text(config.read_text().replace("forge_test_agents:review", "forge_test_agents:failing"))
        code = forge(project, "run", "-r", str(project / "requirements.md"), "--continue-on-error")
        assert code == 0
        assert "Failed phases: review" in capsys.readouterr().out

    def test_missing_requirements(self, project, capsys):
        """A missing requirements file exits 2."""
        assert forge(project, "run", "-r", str(project / "nope.md")) == 2
        assert "ERROR: Requirements file not found" in capsys.readouterr().out

    def test_bad_reset_mode(self, project, capsys):
        """An unknown phase in --reset-sections exits 2."""
        run_pipeline(project)
        code = forge(project, "run", "-r", str(project / "requirements.md"), "--reset-sections", "bogus")
        assert code == 2
        assert "Unknown phase: bogus" in capsys.readouterr().out

    def test_missing_config(self, tmp_path, capsys):
        """A missing --config file exits 2."""
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(tmp_path / "missing.yaml"), "status"])
        assert exc.value.code == 2
        assert "Config file not found" in capsys.readouterr().out

    def test_bad_topology(self, tmp_path, capsys):
        """An invalid config exits 2."""
        (tmp_path / "forge.yaml").write_text("topology: star\n")
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(tmp_path / "forge.yaml"), "status"])
        assert exc.value.code == 2


class TestFeatureCommands:
    """Tests for forge feature and forge approve."""

    def test_feature_validation_failed(self, project, capsys):
        """A feature failing the gate exits 1 and shows the checks."""
        code = forge(project, "feature", "login", "-r", str(project / "requirements.md"))
        assert code == 1
        out = capsys.readouterr().out
        assert "Status:  validation-failed" in out
        assert "[fail] files-generated" in out

    def test_feature_then_approve(self, project, capsys):
        """A reviewed feature can be approved once and never re-run."""
        assert forge(project, "feature", "login", "-r", str(project / "requirements.md"), "--no-validate") == 0
        assert forge(project, "approve", "login", "--notes", "ship it") == 0
        checkpoint = json.loads((project / ".forge" / "checkpoints" / "login.json").read_text())
        assert checkpoint["status"] == "approved"
        assert checkpoint["reviewNotes"] == "ship it"

        # Approved features are terminal
        assert forge(project, "approve", "login") == 2
        assert forge(project, "feature", "login", "-r", str(project / "requirements.md")) == 2

    def test_feature_dry_run(self, project, capsys):
        """A dry run exits 0 and writes no checkpoint."""
        code = forge(project, "feature", "login", "-r", str(project / "requirements.md"), "--dry-run")
        assert code == 0
        assert "[DRY RUN]" in capsys.readouterr().out
        assert not (project / ".forge" / "checkpoints").exists()

    def test_unknown_start_phase(self, project, capsys):
        """An unknown --start-phase exits 2."""
        code = forge(project, "feature", "login", "-r", str(project / "requirements.md"), "--start-phase", "bogus")
        assert code == 2

    def test_feature_bad_producer_reference(self, project, capsys):
        """An unimportable producer module is a usage error, not a traceback."""
        config = project / "forge.yaml"
        config.write_text(config.read_text().replace("forge_test_agents:technical", "no_such_module:technical"))
        code = forge(project, "feature", "login", "-r", str(project / "requirements.md"))
        assert code == 2
        assert "Cannot import producer module 'no_such_module'" in capsys.readouterr().out

    def test_feature_corrupt_checkpoint(self, project, capsys):
        """A checkpoint file that fails to parse is reported, not raised."""
        checkpoint_dir = project / ".forge" / "checkpoints"
        checkpoint_dir.mkdir(parents=True)
        (checkpoint_dir / "login.json").write_text("{")
        code = forge(project, "feature", "login", "-r", str(project / "requirements.md"))
        assert code == 2
        assert "Invalid state file" in capsys.readouterr().out

    def test_approve_corrupt_checkpoint(self, project, capsys):
        """approve reports a checkpoint that fails schema validation."""
        checkpoint_dir = project / ".forge" / "checkpoints"
        checkpoint_dir.mkdir(parents=True)
        (checkpoint_dir / "login.json").write_text(json.dumps({"featureName": "login"}))
        assert forge(project, "approve", "login") == 2
        assert "Invalid state file" in capsys.readouterr().out

    def test_approve_missing(self, project, capsys):
        """Approving an unknown feature exits 2."""
        assert forge(project, "approve", "login") == 2
        assert "No checkpoint for feature 'login'" in capsys.readouterr().out

    def test_approve_not_ready(self, project, capsys):
        """Approving before review exits 2 with the current status."""
        forge(project, "feature", "login", "-r", str(project / "requirements.md"))
        assert forge(project, "approve", "login") == 2
        assert "not ready for review (status: validation-failed)" in capsys.readouterr().out


class TestDocumentCommands:
    """Tests for forge reset, status and report."""

    def test_reset(self, project, capsys):
        """reset clears only the named sections."""
        run_pipeline(project)
        assert forge(project, "reset", "--sections", "review,deployment") == 0
        doc = FileDocumentStore().load(project / ".forge" / "rvd.json")
        assert doc.phases["review"].status == "pending"
        assert doc.phases["deployment"].status == "pending"
        assert doc.phases["documentation"].status == "completed"
        assert "Reset 2 section(s): review, deployment" in capsys.readouterr().out

    def test_reset_unknown_phase(self, project, capsys):
        """reset rejects unknown phases."""
        run_pipeline(project)
        assert forge(project, "reset", "--sections", "bogus") == 2

    def test_reset_missing_document(self, project, capsys):
        """reset without a document exits 2."""
        assert forge(project, "reset", "--sections", "all") == 2
        assert "Document not found" in capsys.readouterr().out

    def test_status(self, project, capsys):
        """status shows identity, progress and phases."""
        run_pipeline(project)
        capsys.readouterr()
        assert forge(project, "status") == 0
        out = capsys.readouterr().out
        assert "Document: Login Service" in out
        assert "Progress:       8/8 phases completed" in out
        assert "functional" in out

    def test_status_missing_document(self, project, capsys):
        """status without a document exits 2."""
        assert forge(project, "status") == 2

    def test_report(self, project, capsys):
        """report writes Markdown and CSV to --report-dir."""
        run_pipeline(project)
        report_dir = project / "out"
        assert forge(project, "report", "--report-dir", str(report_dir)) == 0
        assert len(list(report_dir.glob("orchestrate-login-service-*.md"))) == 1
        assert len(list(report_dir.glob("orchestrate-login-service-*.csv"))) == 1
