"""
KPI derivation for pipeline runs.

Counts are derived per phase from the stored section (and, for the
implementation phase, from the files it wrote to disk). Timings are recorded
by the executor. Everything here is a pure function over document data.
"""

import logging
from pathlib import Path
from typing import Any

from forge.lib.validate import section_payload

logger = logging.getLogger(__name__)


def _length(value) -> int:
    """Count for a section field: list length, {count: n}, or a plain int."""
    if isinstance(value, (list, tuple)):
        return len(value)
    if isinstance(value, dict):
        return int(value.get("count", len(value)))
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _file_stats(files: list, base_dir: Path | None) -> dict:
    total_bytes = 0
    loc_total = 0
    by_type: dict[str, int] = {}

    for entry in files:
        if isinstance(entry, dict):
            rel = entry.get("path")
            kind = entry.get("type") or (Path(rel).suffix.lstrip(".") if rel else "") or "other"
        else:
            rel = entry
            kind = Path(entry).suffix.lstrip(".") or "other"
        by_type[kind] = by_type.get(kind, 0) + 1

        if not rel:
            continue
        path = Path(rel)
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        if not path.is_file():
            continue
        try:
            total_bytes += path.stat().st_size
            loc_total += len(path.read_text(errors="replace").splitlines())
        except OSError as e:
            logger.warning(f"Could not read {path} for KPI counts: {e}")

    return {
        "files": len(files),
        "bytes": total_bytes,
        "loc": {
            "total": loc_total,
            "avgPerFile": round(loc_total / len(files)) if files else 0,
        },
        "byType": by_type,
    }


def derive_counts(phase_id: str, output: Any, base_dir: Path | None = None) -> dict:
    """Section-specific counts for one phase's stored output.

    Unknown phase kinds get an empty dict.
    """
    data = section_payload(output)
    if not isinstance(data, dict):
        return {"items": _length(data)} if isinstance(data, list) else {}

    match phase_id:
        case "functional":
            return {"requirements": _length(data.get("requirements"))}
        case "technical":
            return {
                "apis": _length(data.get("apis")),
                "dataStructures": _length(data.get("dataStructures")),
                "components": _length(data.get("components")),
            }
        case "architecture":
            return {"components": _length(data.get("components"))}
        case "testing":
            return {
                "unit": _length(data.get("unit", data.get("unitTests"))),
                "integration": _length(data.get("integration", data.get("integrationTests"))),
                "e2e": _length(data.get("e2e", data.get("e2eTests"))),
            }
        case "implementation":
            root = base_dir
            if data.get("outputDir"):
                out = Path(data["outputDir"])
                root = out if out.is_absolute() or base_dir is None else base_dir / out
            return _file_stats(data.get("files") or [], root)
        case "review":
            findings = _length(data.get("findings"))
            for area in ("codeQuality", "architecture"):
                findings += _length((data.get(area) or {}).get("findings"))
            issues = _length(data.get("issues")) + _length((data.get("security") or {}).get("issues"))
            return {
                "overallScore": data.get("overallScore") or 0,
                "findings": findings,
                "issues": issues,
                "recommendations": _length(data.get("recommendations")),
            }
        case "documentation":
            return {"documents": _length(data.get("documents", data.get("files")))}
        case "deployment":
            return {"manifests": _length(data.get("manifests", data.get("files")))}
    return {}


def orchestration_summary(
    started_at: str,
    finished_at: str,
    total_duration_ms: int,
    attempts: dict[str, int],
    tokens_used: int,
) -> dict:
    return {
        "totalDurationMs": total_duration_ms,
        "startedAt": started_at,
        "finishedAt": finished_at,
        "attemptsPerAgent": attempts,
        "tokensUsed": tokens_used,
    }


def _flatten(prefix: str, value, rows: list[tuple[str, Any]]) -> None:
    if isinstance(value, dict):
        for key, sub in value.items():
            _flatten(f"{prefix}.{key}" if prefix else str(key), sub, rows)
    else:
        rows.append((prefix, value))


def flatten_kpis(kpis: dict) -> list[tuple[str, Any]]:
    """Flatten a kpis block into (metric, value) rows.

    Row order: counts, timings, orchestration. Timestamps in the
    orchestration block are skipped; they are not metrics.
    """
    rows: list[tuple[str, Any]] = []
    _flatten("counts", kpis.get("counts", {}), rows)
    _flatten("timings", kpis.get("timings", {}), rows)

    orchestration = kpis.get("orchestration", {})
    rows.append(("orchestration.totalDurationMs", orchestration.get("totalDurationMs", 0)))
    _flatten("orchestration.attemptsPerAgent", orchestration.get("attemptsPerAgent", {}), rows)
    rows.append(("orchestration.tokensUsed", kpis.get("tokensUsed", 0)))
    return rows


def format_duration(ms: float) -> str:
    """Format milliseconds as human-readable duration."""
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes < 60:
        return f"{minutes}m {secs:.0f}s"
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m"
