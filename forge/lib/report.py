"""
KPI report rendering.

Writes a Markdown summary and a metric,value CSV for one document. Both are
rendered from the same flattened rows so they always agree.
"""

import csv
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from forge.document.model import Document
from forge.lib.artifacts import slugify
from forge.lib.kpis import flatten_kpis

logger = logging.getLogger(__name__)

SECTION_TITLES = {
    "counts": "Counts",
    "timings": "Timings (ms)",
    "orchestration": "Orchestration",
}


@dataclass
class ReportPaths:
    markdown: Path
    csv: Path


def render_markdown(doc: Document, rows: list[tuple[str, object]], document_path: Path | None = None) -> str:
    lines = [
        f"# Orchestration KPIs - {doc.metadata.identifier}",
        "",
        f"- Date: {datetime.now().isoformat()}",
        f"- Status: {doc.metadata.status}",
    ]
    if document_path:
        lines.append(f"- Document: {document_path}")

    for section, title in SECTION_TITLES.items():
        section_rows = [(m, v) for m, v in rows if m.split(".", 1)[0] == section]
        lines += ["", f"## {title}", ""]
        if not section_rows:
            lines.append("_none recorded_")
            continue
        lines += ["| Metric | Value |", "|---|---|"]
        for metric, value in section_rows:
            lines.append(f"| {metric.split('.', 1)[1]} | {value} |")

    return "\n".join(lines) + "\n"


def write_kpi_report(doc: Document, report_dir: Path, document_path: Path | None = None) -> ReportPaths:
    """Write orchestrate-<slug>-<ts>.md and .csv to report_dir."""
    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)

    slug = slugify(doc.metadata.identifier)
    ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    md_path = report_dir / f"orchestrate-{slug}-{ts}.md"
    csv_path = report_dir / f"orchestrate-{slug}-{ts}.csv"

    rows = flatten_kpis(doc.kpis.to_dict())

    md_path.write_text(render_markdown(doc, rows, document_path))
    with open(csv_path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["metric", "value"])
        writer.writerows(rows)

    logger.info(f"KPI report written: {md_path}")
    logger.info(f"KPI CSV written: {csv_path}")
    return ReportPaths(markdown=md_path, csv=csv_path)
