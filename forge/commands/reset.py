"""
forge reset - Return document sections to pending.
"""

from pathlib import Path

from forge.document.reset import reset_sections, resolve_reset_set
from forge.document.store import DocumentIOError, FileDocumentStore, editing
from forge.lib.config import PipelineConfig
from forge.runner.locking import LockTimeout, document_lock


def cmd_reset(args, config: PipelineConfig) -> int:
    """Reset sections by mode: downstream, all, or a comma list of phases."""
    document = Path(args.document).resolve() if args.document else config.document
    store = FileDocumentStore()

    if not store.exists(document):
        print(f"ERROR: Document not found: {document}")
        return 2

    try:
        phase_ids = resolve_reset_set(args.sections, config.topology())
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2

    try:
        with document_lock(config.work_dir / "locks", document, config.lock_timeout):
            with editing(store, document) as doc:
                reset_sections(doc, phase_ids)
    except LockTimeout as e:
        print(f"ERROR: {e}")
        return 2
    except DocumentIOError as e:
        print(f"ERROR: {e}")
        return 1
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2

    print(f"Reset {len(phase_ids)} section(s): {', '.join(phase_ids)}")
    return 0
