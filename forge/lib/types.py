"""
Shared data types for the pipeline.

Phase input references are a tagged variant. The document stores them as
JSON (null, a phase id, or a list of phase ids); everything else works with
the decoded dataclasses below.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class NoInput:
    """Phase consumes nothing from the document (first phase)."""


@dataclass(frozen=True)
class SingleInput:
    """Phase consumes the output of exactly one prior phase."""
    phase: str


@dataclass(frozen=True)
class ManyInputs:
    """Phase consumes the outputs of several prior phases, in declared order."""
    phases: tuple[str, ...]


InputRef = NoInput | SingleInput | ManyInputs


def decode_input_ref(raw) -> InputRef:
    """Decode the JSON form of an input reference.

    Raises:
        ValueError: if raw is not null, a string, or a list of strings
    """
    if raw is None:
        return NoInput()
    if isinstance(raw, str):
        return SingleInput(raw)
    if isinstance(raw, (list, tuple)) and all(isinstance(p, str) for p in raw):
        return ManyInputs(tuple(raw))
    raise ValueError(f"Invalid input reference: {raw!r}")


def encode_input_ref(ref: InputRef):
    """Encode an input reference to its JSON form."""
    match ref:
        case NoInput():
            return None
        case SingleInput(phase=phase):
            return phase
        case ManyInputs(phases=phases):
            return list(phases)
    raise TypeError(f"Not an input reference: {ref!r}")


def input_phases(ref: InputRef) -> tuple[str, ...]:
    """Phase ids referenced by an input reference, in declared order."""
    match ref:
        case NoInput():
            return ()
        case SingleInput(phase=phase):
            return (phase,)
        case ManyInputs(phases=phases):
            return phases
    raise TypeError(f"Not an input reference: {ref!r}")
