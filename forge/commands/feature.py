"""
forge feature/approve - Incremental feature runs and human approval.
"""

from pathlib import Path

from forge.document.store import DocumentIOError
from forge.lib.config import PipelineConfig
from forge.lib.validate import ValidationError
from forge.runner.locking import LockTimeout, document_lock
from forge.runner.stages import PhaseFailed
from forge.workflow.checkpoint import (
    VALIDATION_FAILED,
    CheckpointNotFoundError,
    CheckpointStore,
    InvalidTransition,
)
from forge.workflow.engine import execute_flow, feature_flow
from forge.workflow.incremental import approve_feature


def print_validation(validation: dict | None):
    if not validation:
        return
    print("Validation:")
    for check in validation["checks"]:
        print(f"  [{check['status']}] {check['name']}: {check['message']}")


def cmd_feature(args, config: PipelineConfig) -> int:
    """Run or resume a feature and hold it for review."""
    feature = args.name
    requirements = Path(args.requirements)
    if not requirements.exists():
        print(f"ERROR: Requirements file not found: {requirements}")
        return 2

    params = {
        "config_path": str(config.source) if config.source else None,
        "feature": feature,
        "requirements": str(requirements.resolve()),
        "start_from_phase": args.start_phase,
        "validate": not args.no_validate,
        "dry_run": args.dry_run,
        "skip_cleanup": args.skip_cleanup,
    }

    try:
        with document_lock(config.work_dir / "locks", config.document, config.lock_timeout):
            checkpoint = execute_flow(feature_flow, config.prefect_enabled, **params)
    except LockTimeout as e:
        print(f"ERROR: {e}")
        return 2
    except InvalidTransition as e:
        print(f"ERROR: Feature '{feature}' cannot be re-run: {e}")
        return 2
    except ValidationError as e:
        print(f"ERROR: Invalid state file: {e}")
        return 2
    except PhaseFailed as e:
        print(f"Feature '{feature}' aborted at phase '{e.phase}': {e.error}")
        print("Checkpoint not updated; fix the phase and resume with --start-phase")
        return 1
    except DocumentIOError as e:
        print(f"ERROR: {e}")
        return 1
    except ValueError as e:
        # Unknown phase, bad producer reference
        print(f"ERROR: {e}")
        return 2

    if args.dry_run:
        print(f"[DRY RUN] Feature '{feature}': nothing executed (status: {checkpoint['status']})")
        return 0

    print(f"Feature: {feature}")
    print(f"Status:  {checkpoint['status']}")
    if checkpoint["lastPhase"]:
        print(f"Last phase: {checkpoint['lastPhase']}")
    print_validation(checkpoint["validation"])

    if checkpoint["status"] == VALIDATION_FAILED:
        print(f"Fix the generated code and run 'forge feature {feature}' again")
        return 1

    print(f"Run 'forge approve {feature}' after review")
    return 0


def cmd_approve(args, config: PipelineConfig) -> int:
    """Approve a feature that is ready for review."""
    feature = args.name
    checkpoints = CheckpointStore(config.checkpoint_dir)

    try:
        checkpoint = approve_feature(checkpoints, feature, args.notes or "")
    except CheckpointNotFoundError as e:
        print(f"ERROR: {e}")
        return 2
    except ValidationError as e:
        print(f"ERROR: Invalid state file: {e}")
        return 2
    except InvalidTransition:
        status = checkpoints.load(feature).status
        print(f"ERROR: Feature is not ready for review (status: {status})")
        return 2

    print(f"Approved feature '{feature}' at {checkpoint.approved_at}")
    return 0
