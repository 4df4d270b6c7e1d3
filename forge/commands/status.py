"""
forge status/report - Inspect a document and its KPIs.
"""

from pathlib import Path

from forge.document.store import DocumentIOError, FileDocumentStore
from forge.lib.config import PipelineConfig
from forge.lib.kpis import format_duration
from forge.lib.report import write_kpi_report
from forge.workflow.checkpoint import CheckpointStore


def _load(args, config: PipelineConfig):
    document = Path(args.document).resolve() if args.document else config.document
    return document, FileDocumentStore().load(document)


def cmd_status(args, config: PipelineConfig) -> int:
    """Show document status, per-phase state and feature checkpoints."""
    try:
        document, doc = _load(args, config)
    except DocumentIOError as e:
        print(f"ERROR: {e}")
        return 2

    summary = doc.summary()
    print(f"Document: {doc.metadata.identifier}")
    print("=" * 60)
    print()
    print(f"Path:           {document}")
    print(f"Status:         {doc.metadata.status}")
    print(f"Created:        {doc.metadata.created_at}")
    print(f"Last updated:   {doc.last_updated or '-'}")
    print(f"Progress:       {len(summary.completed)}/{summary.total} phases completed")
    if summary.failed:
        print(f"Failed:         {', '.join(summary.failed)}")
    print()

    print("Phases:")
    for phase_id, record in doc.phases.items():
        timing = doc.kpis.timings.get(phase_id)
        duration = format_duration(timing) if timing is not None else "-"
        line = f"  {phase_id:<16} {record.status:<10} {duration:>8}"
        if record.errors:
            line += f"  {record.errors[-1].message}"
        print(line)

    orchestration = doc.kpis.orchestration
    if orchestration:
        print()
        print(f"Last run:       {orchestration.get('startedAt', '-')}")
        print(f"Duration:       {format_duration(orchestration.get('totalDurationMs', 0))}")
    if doc.kpis.tokens_used:
        print(f"Tokens used:    {doc.kpis.tokens_used}")

    checkpoints = CheckpointStore(config.checkpoint_dir).list_checkpoints()
    if checkpoints:
        print()
        print("Features:")
        for checkpoint in checkpoints:
            print(f"  {checkpoint.feature_name:<24} {checkpoint.status:<18} {checkpoint.last_phase or '-'}")
    return 0


def cmd_report(args, config: PipelineConfig) -> int:
    """Write the KPI report (markdown and CSV) for the document."""
    try:
        document, doc = _load(args, config)
    except DocumentIOError as e:
        print(f"ERROR: {e}")
        return 2

    report_dir = Path(args.report_dir).resolve() if args.report_dir else config.report_dir
    paths = write_kpi_report(doc, report_dir, document)
    print(f"Markdown: {paths.markdown}")
    print(f"CSV:      {paths.csv}")
    return 0
