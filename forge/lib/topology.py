"""
Pipeline topology: the fixed, ordered list of phases and their inputs.

Two shapes are supported:
- explicit: each phase declares its inputs (none, one, or several phases)
- linear: named sections, each depending on the one before it

The topology is configuration. It is never discovered at runtime.
"""

from dataclasses import dataclass

from forge.lib.constants import SECTIONS
from forge.lib.types import InputRef, ManyInputs, NoInput, SingleInput, decode_input_ref, input_phases


@dataclass(frozen=True)
class PhaseSpec:
    """One declared phase."""
    id: str
    agent: str
    input_ref: InputRef = NoInput()

    @property
    def depends_on(self) -> tuple[str, ...]:
        return input_phases(self.input_ref)


class Topology:
    """Ordered collection of PhaseSpecs."""

    def __init__(self, phases: list[PhaseSpec]):
        if not phases:
            raise ValueError("Topology must declare at least one phase")
        ids = [p.id for p in phases]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate phase ids in topology: {ids}")

        seen: set[str] = set()
        for spec in phases:
            for dep in spec.depends_on:
                if dep not in seen:
                    raise ValueError(
                        f"Phase '{spec.id}' depends on '{dep}', which is not declared before it"
                    )
            seen.add(spec.id)

        self.phases = tuple(phases)

    def __iter__(self):
        return iter(self.phases)

    def __len__(self):
        return len(self.phases)

    def __contains__(self, phase_id: str) -> bool:
        return any(p.id == phase_id for p in self.phases)

    @property
    def ids(self) -> list[str]:
        return [p.id for p in self.phases]

    @property
    def first(self) -> PhaseSpec:
        return self.phases[0]

    def get(self, phase_id: str) -> PhaseSpec:
        """Look up a phase by id.

        Raises:
            UnknownPhaseError: if the id is not declared
        """
        from forge.document.model import UnknownPhaseError

        for spec in self.phases:
            if spec.id == phase_id:
                return spec
        raise UnknownPhaseError(phase_id, self.ids)

    def index(self, phase_id: str) -> int:
        self.get(phase_id)
        return self.ids.index(phase_id)

    def downstream_of(self, phase_id: str) -> list[str]:
        """Phase ids at or after phase_id, in declared order."""
        return self.ids[self.index(phase_id):]

    def subset(self, phase_ids: list[str]) -> list[PhaseSpec]:
        """PhaseSpecs for the given ids, kept in declared order."""
        wanted = set(phase_ids)
        for pid in phase_ids:
            self.get(pid)
        return [p for p in self.phases if p.id in wanted]


AGENT_NAMES = {
    "functional": "FunctionalRequirementsAgent",
    "technical": "TechnicalRequirementsAgent",
    "architecture": "ArchitectureAgent",
    "testing": "TestAgent",
    "implementation": "ImplementationAgent",
    "review": "ReviewAgent",
    "documentation": "DocumentationAgent",
    "deployment": "DeploymentAgent",
}


def explicit_topology() -> Topology:
    """Default topology with per-phase input declarations."""
    return Topology([
        PhaseSpec("functional", AGENT_NAMES["functional"], NoInput()),
        PhaseSpec("technical", AGENT_NAMES["technical"], SingleInput("functional")),
        PhaseSpec("architecture", AGENT_NAMES["architecture"], SingleInput("technical")),
        PhaseSpec("testing", AGENT_NAMES["testing"], SingleInput("technical")),
        PhaseSpec("implementation", AGENT_NAMES["implementation"], ManyInputs(("technical", "testing"))),
        PhaseSpec("review", AGENT_NAMES["review"], SingleInput("implementation")),
        PhaseSpec("documentation", AGENT_NAMES["documentation"], ManyInputs(("technical", "implementation"))),
        PhaseSpec("deployment", AGENT_NAMES["deployment"], ManyInputs(("implementation", "documentation"))),
    ])


def linear_topology(names: list[str] | None = None) -> Topology:
    """Named sections, each depending on the immediately preceding one."""
    names = names or SECTIONS
    phases = []
    previous = None
    for name in names:
        agent = AGENT_NAMES.get(name, f"{name[:1].upper()}{name[1:]}Agent")
        ref = SingleInput(previous) if previous else NoInput()
        phases.append(PhaseSpec(name, agent, ref))
        previous = name
    return Topology(phases)


def topology_from_entries(entries: list[dict]) -> Topology:
    """Build a topology from config entries of the form {id, agent, input}."""
    phases = []
    for entry in entries:
        if "id" not in entry:
            raise ValueError(f"Phase entry missing 'id': {entry}")
        phase_id = entry["id"]
        agent = entry.get("agent") or AGENT_NAMES.get(phase_id, f"{phase_id}-agent")
        phases.append(PhaseSpec(phase_id, agent, decode_input_ref(entry.get("input"))))
    return Topology(phases)
