"""
Helpers for generated artifacts on disk.
"""

import logging
import re
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    """Lowercase, whitespace and unsafe characters collapsed to hyphens."""
    slug = re.sub(r"[^a-z0-9._-]+", "-", str(name).strip().lower()).strip("-")
    return slug or "project"


def derive_project_name(requirements_path: Path) -> str:
    """Project name from the first '# ' heading of a requirements file.

    Falls back to the file stem when there is no heading or the file is
    unreadable.
    """
    path = Path(requirements_path)
    try:
        for line in path.read_text(errors="replace").splitlines():
            if line.startswith("# "):
                title = line[2:].strip()
                if title:
                    return title
    except OSError as e:
        logger.warning(f"Could not read {path} for project name: {e}")
    return path.stem or "project"


def generated_dir(generated_code_dir: Path, project: str) -> Path:
    return Path(generated_code_dir) / slugify(project)


def find_generated_dir(generated_code_dir: Path, feature: str, project: str | None = None) -> Path | None:
    """First existing generated-code directory for a feature.

    Tries <project>-<feature>, <feature>, <project>, then the feature slug.
    """
    root = Path(generated_code_dir)
    candidates = []
    if project:
        candidates.append(root / f"{slugify(project)}-{slugify(feature)}")
    candidates.append(root / feature)
    if project:
        candidates.append(root / slugify(project))
    candidates.append(root / slugify(feature))

    for candidate in candidates:
        if candidate.is_dir():
            return candidate
    return None


def clean_artifacts(generated_code_dir: Path, project: str) -> bool:
    """Remove generated code for a project. Returns True if anything was removed."""
    target = generated_dir(generated_code_dir, project)
    if not target.exists():
        return False
    logger.info(f"Removing generated artifacts at {target}")
    shutil.rmtree(target)
    return True


def count_files(directory: Path, exclude: tuple[str, ...] = ("node_modules", ".git", "__pycache__")) -> int:
    """Count regular files under directory, skipping dependency/VCS dirs."""
    directory = Path(directory)
    if not directory.is_dir():
        return 0
    return sum(
        1 for p in directory.rglob("*")
        if p.is_file() and not any(part in exclude for part in p.relative_to(directory).parts)
    )
