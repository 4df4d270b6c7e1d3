"""Workflow engine.

Wires configuration, producers, the document store and the executor
together for the two entry points (full pipeline run, incremental feature
run). Both are wrapped with Prefect @flow for observability; callers that
do not want a Prefect run call the .fn of the flow or the plain coroutine.
"""

import asyncio
import logging
from pathlib import Path

from prefect import flow

from forge.document.reset import reset_sections, resolve_reset_set
from forge.document.store import DocumentStore, FileDocumentStore, editing
from forge.lib.artifacts import clean_artifacts, derive_project_name
from forge.lib.config import PipelineConfig, load_pipeline_config
from forge.producers.registry import build_producers
from forge.runner.context import RunContext
from forge.runner.executor import PhaseExecutor, PipelineSummary
from forge.workflow.checkpoint import Checkpoint, CheckpointStore
from forge.workflow.incremental import IncrementalWorkflow

logger = logging.getLogger(__name__)


def build_executor(
    config: PipelineConfig,
    requirements: Path | None = None,
    document: Path | None = None,
    producers: dict | None = None,
    store: DocumentStore | None = None,
    continue_on_error: bool | None = None,
    report: bool | None = None,
    report_dir: Path | None = None,
    label: str = "run",
    dry_run: bool = False,
) -> PhaseExecutor:
    """PhaseExecutor for a config, with CLI-style overrides.

    Dry runs get an ephemeral run context so nothing is written.
    """
    document = Path(document or config.document)
    if dry_run:
        ctx = RunContext.ephemeral(document, label)
    else:
        ctx = RunContext.create(config.work_dir, document, label)
    do_report = config.report if report is None else report
    return PhaseExecutor(
        topology=config.topology(),
        producers=producers if producers is not None else build_producers(config),
        store=store or FileDocumentStore(),
        continue_on_error=config.continue_on_error if continue_on_error is None else continue_on_error,
        report_dir=Path(report_dir or config.report_dir) if do_report else None,
        base_dir=config.project_root,
        requirements_path=Path(requirements) if requirements else None,
        ctx=ctx,
    )


async def run_pipeline(
    config: PipelineConfig,
    requirements: Path,
    document: Path | None = None,
    continue_on_error: bool | None = None,
    reset_mode: str | None = None,
    clean: bool = False,
    report: bool | None = None,
    report_dir: Path | None = None,
    producers: dict | None = None,
    store: DocumentStore | None = None,
) -> PipelineSummary:
    """Full pipeline run over every declared phase.

    Raises:
        PhaseFailed: when a phase fails and continue_on_error is off
    """
    requirements = Path(requirements)
    document = Path(document or config.document)
    project = derive_project_name(requirements)

    executor = build_executor(
        config, requirements, document, producers, store,
        continue_on_error=continue_on_error, report=report, report_dir=report_dir, label=project,
    )
    executor.ctx.log(f"Starting run: {executor.ctx.run_id}")
    executor.ctx.log(f"Requirements: {requirements}")

    if clean:
        if clean_artifacts(config.generated_code_dir, project):
            executor.ctx.log(f"Cleaned generated artifacts for {project}")
        else:
            executor.ctx.log(f"No artifacts to clean for {project}")

    if reset_mode and executor.store.exists(document):
        phase_ids = resolve_reset_set(reset_mode, executor.topology)
        with editing(executor.store, document) as doc:
            reset_sections(doc, phase_ids)
        executor.ctx.log(f"Reset sections using mode '{reset_mode}': {', '.join(phase_ids)}")

    return await executor.run(document, identifier=project)


async def run_feature(
    config: PipelineConfig,
    feature: str,
    requirements: Path,
    start_from_phase: str | None = None,
    validate: bool = True,
    dry_run: bool = False,
    skip_cleanup: bool = False,
    producers: dict | None = None,
    store: DocumentStore | None = None,
) -> Checkpoint:
    executor = build_executor(config, requirements, None, producers, store, label=feature, dry_run=dry_run)
    workflow = IncrementalWorkflow(
        executor=executor,
        document_path=config.document,
        checkpoints=CheckpointStore(config.checkpoint_dir),
        generated_code_dir=config.generated_code_dir,
    )
    return await workflow.run_feature(
        feature,
        Path(requirements),
        start_from_phase=start_from_phase,
        validate=validate,
        dry_run=dry_run,
        skip_cleanup=skip_cleanup,
    )


@flow(name="forge_pipeline", validate_parameters=False)
async def pipeline_flow(
    config_path: str | None,
    requirements: str,
    document: str | None = None,
    continue_on_error: bool | None = None,
    reset_mode: str | None = None,
    clean: bool = False,
    report: bool | None = None,
    report_dir: str | None = None,
) -> dict:
    """Prefect flow for a full pipeline run. Returns the summary as a dict."""
    config = load_pipeline_config(Path(config_path) if config_path else None)
    summary = await run_pipeline(
        config,
        Path(requirements),
        document=Path(document) if document else None,
        continue_on_error=continue_on_error,
        reset_mode=reset_mode,
        clean=clean,
        report=report,
        report_dir=Path(report_dir) if report_dir else None,
    )
    return summary.to_dict()


@flow(name="forge_feature", validate_parameters=False)
async def feature_flow(
    config_path: str | None,
    feature: str,
    requirements: str,
    start_from_phase: str | None = None,
    validate: bool = True,
    dry_run: bool = False,
    skip_cleanup: bool = False,
) -> dict:
    """Prefect flow for an incremental feature run. Returns the checkpoint as a dict."""
    config = load_pipeline_config(Path(config_path) if config_path else None)
    checkpoint = await run_feature(
        config,
        feature,
        Path(requirements),
        start_from_phase=start_from_phase,
        validate=validate,
        dry_run=dry_run,
        skip_cleanup=skip_cleanup,
    )
    return checkpoint.to_dict()


def execute_flow(flow_obj, prefect_enabled: bool, **params) -> dict:
    """Run a flow to completion from synchronous code.

    With Prefect disabled the undecorated coroutine runs directly, so no
    Prefect run (or API) is involved.
    """
    fn = flow_obj if prefect_enabled else flow_obj.fn
    return asyncio.run(fn(**params))
