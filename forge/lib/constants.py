"""Shared constants for the pipeline."""

# Phase record statuses
PHASE_PENDING = "pending"
PHASE_COMPLETED = "completed"
PHASE_FAILED = "failed"

# Document-level statuses
DOC_IN_PROGRESS = "in-progress"
DOC_COMPLETED = "completed"
DOC_FAILED = "failed"

# Execution log events
EVENT_STARTED = "started"
EVENT_COMPLETED = "completed"
EVENT_FAILED = "failed"

DOCUMENT_VERSION = "1.0"

# Named sections, in pipeline order
SECTIONS = [
    "functional",
    "technical",
    "architecture",
    "testing",
    "implementation",
    "review",
    "documentation",
    "deployment",
]

RESET_DOWNSTREAM = "downstream"
RESET_ALL = "all"
