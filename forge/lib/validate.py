"""
Schema validation for forge.

Every file boundary (document, checkpoint, run result) is checked against a
JSON Schema before it is written or after it is read. Phase sections are
checked per phase kind; schema violations are fatal, advisory findings are
reported as warnings and never fail a phase.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Schema validation failed."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


_schema_cache: dict[str, dict] = {}


def _get_schemas_dir() -> Path:
    return Path(__file__).parent.parent / "schemas"


def _load_schema(schema_name: str) -> dict:
    """Load schema by name, with caching."""
    if schema_name not in _schema_cache:
        schema_path = _get_schemas_dir() / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
        _schema_cache[schema_name] = json.loads(schema_path.read_text())
    return _schema_cache[schema_name]


def _format_path(error: jsonschema.ValidationError) -> str:
    return ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"


def schema_errors(data: Any, schema_name: str) -> list[str]:
    """All schema violations for data, as readable strings. Empty if valid."""
    schema = _load_schema(schema_name)
    validator_cls = jsonschema.validators.validator_for(schema)
    validator = validator_cls(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    return [f"{e.message} at {_format_path(e)}" for e in errors]


def validate(data: Any, schema_name: str) -> None:
    """
    Validate data against named schema.

    Raises:
        ValidationError: If validation fails
    """
    schema = _load_schema(schema_name)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        raise ValidationError(schema_name, e.message, _format_path(e)) from None


def validate_file(filepath: Path, schema_name: str) -> dict:
    """
    Load JSON file and validate against schema.

    Returns:
        Parsed and validated data

    Raises:
        ValidationError: If file invalid or doesn't match schema
    """
    if not filepath.exists():
        raise ValidationError(schema_name, f"File not found: {filepath}")

    try:
        data = json.loads(filepath.read_text())
    except json.JSONDecodeError as e:
        raise ValidationError(schema_name, f"Invalid JSON in {filepath}: {e}") from None

    validate(data, schema_name)
    return data


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Validate data before writing to file. Ensures we never write invalid data."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e}"
        ) from None


# --- Phase sections ---

SECTION_SCHEMAS = {
    "functional": "section_functional",
    "technical": "section_technical",
    "testing": "section_testing",
    "implementation": "section_implementation",
    "review": "section_review",
}


@dataclass
class SectionValidation:
    """Outcome of validating one phase section."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def raise_for_errors(self, phase_id: str) -> None:
        if not self.valid:
            raise ValidationError(
                SECTION_SCHEMAS.get(phase_id, "section_generic"),
                f"Section '{phase_id}' is invalid: {'; '.join(self.errors)}",
            )


def section_payload(output: Any) -> Any:
    """Unwrap a {timestamp, generatedBy, data} envelope if present."""
    if isinstance(output, dict) and "data" in output and (
        "timestamp" in output or "generatedBy" in output or "extractedBy" in output
    ):
        return output["data"]
    return output


def _file_path(entry) -> str | None:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        return entry.get("path")
    return None


def _advisory_warnings(phase_id: str, payload: Any, base_dir: Path | None) -> list[str]:
    warnings = []
    if not isinstance(payload, dict):
        return warnings

    if phase_id == "functional" and not payload.get("requirements"):
        warnings.append("No requirements were extracted")

    elif phase_id == "technical":
        if not payload.get("dataStructures"):
            warnings.append("No data structures declared")

    elif phase_id == "testing":
        if not any(payload.get(k) for k in ("unit", "integration", "e2e")):
            warnings.append("All test groups are empty")

    elif phase_id == "implementation":
        files = payload.get("files") or []
        if not files:
            warnings.append("No implementation files listed")
        elif base_dir is not None:
            root = Path(payload.get("outputDir") or base_dir)
            if not root.is_absolute():
                root = base_dir / root
            missing = [p for p in (_file_path(f) for f in files) if p and not (root / p).exists()]
            if missing:
                warnings.append(f"{len(missing)} listed file(s) missing on disk: {', '.join(missing[:5])}")

    elif phase_id == "review" and "overallScore" not in payload:
        warnings.append("Review has no overall score")

    return warnings


def validate_section(phase_id: str, output: Any, base_dir: Path | None = None) -> SectionValidation:
    """Check a phase's stored section.

    Fatal errors come from the phase kind's schema; advisory warnings are
    informational only.
    """
    payload = section_payload(output)
    if payload is None:
        return SectionValidation(valid=False, errors=[f"Section '{phase_id}' is empty"])

    schema_name = SECTION_SCHEMAS.get(phase_id, "section_generic")
    errors = schema_errors(payload, schema_name)
    warnings = _advisory_warnings(phase_id, payload, base_dir)

    for w in warnings:
        logger.warning(f"Section {phase_id}: {w}")

    return SectionValidation(valid=not errors, errors=errors, warnings=warnings)
