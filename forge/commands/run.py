"""
forge run - Full pipeline run over every declared phase.
"""

from pathlib import Path

from forge.document.store import DocumentIOError
from forge.lib.config import PipelineConfig
from forge.lib.kpis import format_duration
from forge.runner.locking import LockTimeout, document_lock
from forge.runner.stages import PhaseFailed
from forge.workflow.engine import execute_flow, pipeline_flow


def print_phase_table(phases: list[dict]):
    for entry in phases:
        line = f"  {entry['phase']:<16} {entry['status']:<10} {format_duration(entry['durationMs']):>8}"
        if entry.get("error"):
            line += f"  {entry['error']}"
        print(line)
        for warning in entry.get("warnings") or []:
            print(f"  {'':<16} warning: {warning}")


def cmd_run(args, config: PipelineConfig) -> int:
    """Run the pipeline against the document."""
    requirements = Path(args.requirements)
    if not requirements.exists():
        print(f"ERROR: Requirements file not found: {requirements}")
        return 2

    document = Path(args.document).resolve() if args.document else config.document
    params = {
        "config_path": str(config.source) if config.source else None,
        "requirements": str(requirements.resolve()),
        "document": str(document),
        "continue_on_error": args.continue_on_error,
        "reset_mode": args.reset_sections,
        "clean": args.clean_artifacts,
        "report": args.report,
        "report_dir": str(Path(args.report_dir).resolve()) if args.report_dir else None,
    }

    try:
        with document_lock(config.work_dir / "locks", document, config.lock_timeout):
            result = execute_flow(pipeline_flow, config.prefect_enabled, **params)
    except LockTimeout as e:
        print(f"ERROR: {e}")
        print("Another run is using this document")
        return 2
    except PhaseFailed as e:
        print(f"Pipeline aborted at phase '{e.phase}': {e.error}")
        if e.summary is not None:
            print_phase_table(e.summary.to_dict()["phases"])
        return 1
    except DocumentIOError as e:
        print(f"ERROR: {e}")
        return 1
    except ValueError as e:
        # Configuration problems: unknown phase, bad producer reference, bad reset mode
        print(f"ERROR: {e}")
        return 2

    print(f"Pipeline {result['identifier']}: {result['status']}")
    print_phase_table(result["phases"])
    print(f"Total: {format_duration(result['totalDurationMs'])}, tokens used: {result['tokensUsed']}")
    if result["failed"]:
        print(f"Failed phases: {', '.join(result['failed'])}")
    if result["report"]:
        print(f"KPI report: {result['report']}")
    return 0
