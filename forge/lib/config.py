"""
Pipeline configuration.

Loads forge.yaml and merges it over built-in defaults. A missing file yields
the defaults; an unparseable file is logged and also yields the defaults.

Example forge.yaml:

    document: .forge/rvd.json
    continue_on_error: false
    topology: explicit
    producers:
      functional: "my_agents.functional:FunctionalAgent"
      technical: "node agents/technical.mjs --rvd {document}"
    retry:
      max_iterations: 5
      retry_delay_ms: 1000
    prefect:
      enabled: false

Relative paths resolve against project_root, which defaults to the directory
holding the config file.
"""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from forge.lib.topology import Topology, explicit_topology, linear_topology, topology_from_entries

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "forge.yaml"

DEFAULTS = {
    "project_root": None,
    "document": ".forge/rvd.json",
    "work_dir": ".forge",
    "checkpoint_dir": ".forge/checkpoints",
    "generated_code_dir": "generated-code",
    "knowledge_dir": ".forge/knowledge",
    "report": True,
    "report_dir": ".forge/reports",
    "continue_on_error": False,
    "topology": "explicit",
    "phases": None,
    "producers": {},
    "retry": {"max_iterations": 5, "retry_delay_ms": 1000},
    "prefect": {"enabled": False},
    "lock_timeout": 60,
}

TOPOLOGY_KINDS = ("explicit", "linear")


class ConfigError(ValueError):
    """Configuration is structurally wrong (unknown keys, bad topology)."""


@dataclass
class PipelineConfig:
    """Resolved pipeline configuration. All paths are absolute."""
    project_root: Path
    document: Path
    work_dir: Path
    checkpoint_dir: Path
    generated_code_dir: Path
    knowledge_dir: Path
    report_dir: Path
    report: bool = True
    continue_on_error: bool = False
    topology_kind: str = "explicit"
    phases: list[dict] | None = None
    producers: dict[str, str] = field(default_factory=dict)
    max_iterations: int = 5
    retry_delay_ms: int = 1000
    prefect_enabled: bool = False
    lock_timeout: int = 60
    source: Path | None = None

    def topology(self) -> Topology:
        return topology_from_config(self)


def _merge(base: dict, override: dict) -> dict:
    """Shallow merge, one level deep for nested mapping keys."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def _resolve(root: Path, value) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def build_config(data: dict, config_dir: Path | None = None) -> PipelineConfig:
    """Build a PipelineConfig from raw (already merged) settings."""
    unknown = set(data) - set(DEFAULTS)
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

    if data["project_root"]:
        root = _resolve(config_dir or Path.cwd(), data["project_root"])
    else:
        root = config_dir or Path.cwd()

    kind = data["topology"]
    if kind not in TOPOLOGY_KINDS:
        raise ConfigError(f"Unknown topology '{kind}' (expected one of {', '.join(TOPOLOGY_KINDS)})")

    return PipelineConfig(
        project_root=root,
        document=_resolve(root, data["document"]),
        work_dir=_resolve(root, data["work_dir"]),
        checkpoint_dir=_resolve(root, data["checkpoint_dir"]),
        generated_code_dir=_resolve(root, data["generated_code_dir"]),
        knowledge_dir=_resolve(root, data["knowledge_dir"]),
        report_dir=_resolve(root, data["report_dir"]),
        report=bool(data["report"]),
        continue_on_error=bool(data["continue_on_error"]),
        topology_kind=kind,
        phases=data["phases"],
        producers=dict(data["producers"] or {}),
        max_iterations=int(data["retry"].get("max_iterations", 5)),
        retry_delay_ms=int(data["retry"].get("retry_delay_ms", 1000)),
        prefect_enabled=bool(data["prefect"].get("enabled", False)),
        lock_timeout=int(data["lock_timeout"]),
    )


def load_pipeline_config(path: Path | None = None) -> PipelineConfig:
    """Load forge.yaml and return a PipelineConfig.

    If path is None, looks for forge.yaml in the current directory.
    """
    config_path = Path(path) if path else Path.cwd() / CONFIG_FILENAME
    config_dir = config_path.parent.resolve()

    if not config_path.exists():
        logger.debug(f"No config at {config_path}, using defaults")
        return build_config(copy.deepcopy(DEFAULTS), config_dir if path else None)

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(data, dict):
            raise yaml.YAMLError("top level must be a mapping")
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        data = {}

    config = build_config(_merge(DEFAULTS, data), config_dir)
    config.source = config_path
    return config


def topology_from_config(config: PipelineConfig) -> Topology:
    """Explicit phase list from config when given, else the named topology kind."""
    if config.phases:
        return topology_from_entries(config.phases)
    if config.topology_kind == "linear":
        return linear_topology()
    return explicit_topology()
