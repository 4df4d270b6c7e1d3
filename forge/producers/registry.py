"""
Producer registry.

Maps phase ids to producers from configuration. A producer reference is one
of:

- "package.module:attr": a class (instantiated with no arguments) or a
  callable taking a PhaseInvocation
- a command template, run as a subprocess. {document}, {phase} and
  {requirements} are substituted per argument; stdout is parsed as the JSON
  summary when possible
- {"loop": {"implementer": ref, "tester": ref}}: the implementation/test
  retry loop, with implementer and tester given as module references
"""

import asyncio
import importlib
import json
import logging
import re
import shlex
from pathlib import Path
from typing import Any

from forge.producers.contract import CallableProducer, PhaseInvocation, Producer
from forge.runner.stages import ProducerExecutionError
from forge.workflow.retry_loop import DeadlockFeedbackHandler, ImplementationLoopProducer, ImplementationTestLoop

logger = logging.getLogger(__name__)

MODULE_REF = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_][\w.]*$")

# Truncate subprocess stderr in error messages
STDERR_TAIL = 2000


def _import_ref(ref: str) -> Any:
    module_name, _, attr_path = ref.partition(":")
    try:
        obj = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import producer module '{module_name}': {e}") from e
    for attr in attr_path.split("."):
        try:
            obj = getattr(obj, attr)
        except AttributeError:
            raise ValueError(f"Producer reference '{ref}' not found") from None
    return obj


def _instantiate(ref: str) -> Any:
    obj = _import_ref(ref)
    return obj() if isinstance(obj, type) else obj


class CommandProducer:
    """Runs an external command for a phase."""

    def __init__(self, template: str, cwd: Path | None = None):
        self.template = template
        self.cwd = cwd
        # Fail at load time on unbalanced quotes
        self.args = shlex.split(template)
        if not self.args:
            raise ValueError("Empty producer command")

    def build_command(self, invocation: PhaseInvocation) -> list[str]:
        values = {
            "document": str(invocation.document_path),
            "phase": invocation.phase_id,
            "requirements": str(invocation.requirements_path or ""),
        }
        try:
            return [arg.format(**values) for arg in self.args]
        except (KeyError, IndexError, ValueError) as e:
            raise ProducerExecutionError(invocation.phase_id, f"Unknown variable in command template: {e}")

    async def execute(self, invocation: PhaseInvocation) -> Any:
        cmd = self.build_command(invocation)
        logger.info(f"[{invocation.phase_id}] $ {shlex.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.cwd) if self.cwd else None,
            )
        except OSError as e:
            raise ProducerExecutionError(invocation.phase_id, f"Could not start {cmd[0]}: {e}") from e

        stdout, stderr = await proc.communicate()
        out = stdout.decode(errors="replace")
        err = stderr.decode(errors="replace")

        if proc.returncode != 0:
            raise ProducerExecutionError(
                invocation.phase_id,
                f"Command exited {proc.returncode}: {err[-STDERR_TAIL:].strip()}",
                {"exit_code": proc.returncode},
            )

        text = out.strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return {"stdout": text}

    def __repr__(self):
        return f"CommandProducer({self.template!r})"


def load_producer(ref: Any, cwd: Path | None = None, loop_options: dict | None = None) -> Producer:
    """Resolve one producer reference.

    Raises:
        ValueError: for unresolvable references
    """
    if isinstance(ref, dict):
        if "loop" not in ref:
            raise ValueError(f"Unknown producer mapping: {ref}")
        spec = ref["loop"]
        options = loop_options or {}
        loop = ImplementationTestLoop(
            max_iterations=int(spec.get("max_iterations", options.get("max_iterations", 5))),
            retry_delay_ms=int(spec.get("retry_delay_ms", options.get("retry_delay_ms", 1000))),
        )
        handler = None
        if options.get("knowledge_dir"):
            handler = DeadlockFeedbackHandler(options["knowledge_dir"])
        return ImplementationLoopProducer(
            implementer=_instantiate(spec["implementer"]),
            tester=_instantiate(spec["tester"]),
            loop=loop,
            feedback_handler=handler,
        )

    if not isinstance(ref, str) or not ref.strip():
        raise ValueError(f"Invalid producer reference: {ref!r}")

    if MODULE_REF.match(ref):
        obj = _instantiate(ref)
        if hasattr(obj, "execute"):
            return obj
        if callable(obj):
            return CallableProducer(obj, name=ref)
        raise ValueError(f"Producer '{ref}' is neither a producer nor callable")

    return CommandProducer(ref, cwd=cwd)


def build_producers(config) -> dict[str, Producer]:
    """Producers for every phase named in config.producers."""
    loop_options = {
        "max_iterations": config.max_iterations,
        "retry_delay_ms": config.retry_delay_ms,
        "knowledge_dir": config.knowledge_dir,
    }
    producers = {}
    for phase_id, ref in config.producers.items():
        producers[phase_id] = load_producer(ref, cwd=config.project_root, loop_options=loop_options)
        logger.debug(f"Producer for {phase_id}: {producers[phase_id]!r}")
    return producers
