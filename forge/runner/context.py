"""
Run context and directory management for forge.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from forge.lib.artifacts import slugify
from forge.lib.validate import validate_before_write

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Context for a single pipeline run.

    run_dir is None for ephemeral runs (tests, dry runs); those log only to
    the module logger.
    """
    run_id: str
    run_dir: Optional[Path]
    document_path: Path
    start_time: datetime = field(default_factory=datetime.now)
    phases: dict = field(default_factory=dict)

    @classmethod
    def create(cls, work_dir: Path, document_path: Path, label: str) -> "RunContext":
        """Create a new run context with a fresh run directory."""
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        run_id = f"{timestamp}_{slugify(label)}"

        run_dir = Path(work_dir) / "runs" / run_id
        run_dir.mkdir(parents=True, exist_ok=True)

        return cls(run_id=run_id, run_dir=run_dir, document_path=Path(document_path))

    @classmethod
    def ephemeral(cls, document_path: Path, label: str = "run") -> "RunContext":
        run_id = f"{datetime.now().strftime('%Y%m%d-%H%M%S-%f')}_{slugify(label)}"
        return cls(run_id=run_id, run_dir=None, document_path=Path(document_path))

    def log(self, message: str):
        """Append to run log."""
        logger.info(message)
        if self.run_dir is None:
            return
        timestamp = datetime.now().isoformat()
        with open(self.run_dir / "run.log", "a") as f:
            f.write(f"[{timestamp}] {message}\n")

    def record_phase(self, phase: str, status: str, duration: float, notes: str = ""):
        """Record phase result."""
        self.phases[phase] = {
            "status": status,
            "duration_seconds": duration,
            "notes": notes,
        }

    def write_result(self, status: str, failed_phase: str = None) -> dict:
        """Write result.json."""
        end_time = datetime.now()
        duration = (end_time - self.start_time).total_seconds()

        result = {
            "version": 1,
            "run_id": self.run_id,
            "document": str(self.document_path),
            "status": status,
            "timestamps": {
                "started": self.start_time.isoformat(),
                "ended": end_time.isoformat(),
                "duration_seconds": duration,
            },
            "phases": self.phases,
            "failed_phase": failed_phase,
        }

        if self.run_dir is None:
            return result

        result_path = self.run_dir / "result.json"
        validate_before_write(result, "result", result_path)
        result_path.write_text(json.dumps(result, indent=2))
        return result
