"""
Selective section reset.

A reset returns named phases to pending with no output and no errors, and
bumps lastUpdated. Nothing else in the document is touched; in particular
KPIs and logs from earlier runs are kept.
"""

import logging
from datetime import datetime

from forge.document.model import Document, UnknownPhaseError
from forge.lib.constants import RESET_ALL, RESET_DOWNSTREAM
from forge.lib.topology import Topology

logger = logging.getLogger(__name__)


def resolve_reset_set(mode: str, topology: Topology, start_from: str | None = None) -> list[str]:
    """Phase ids a reset mode covers, in declared order.

    Modes:
        downstream: start_from and every phase after it; without start_from,
            every phase after the first
        all: every declared phase
        a,b,c: exactly the named phases

    Raises:
        UnknownPhaseError: for names not in the topology
        ValueError: for an empty selection
    """
    mode = (mode or "").strip()
    if mode == RESET_ALL:
        return topology.ids
    if mode == RESET_DOWNSTREAM:
        if not start_from:
            return topology.ids[1:]
        return topology.downstream_of(start_from)

    names = [n.strip() for n in mode.split(",") if n.strip()]
    if not names:
        raise ValueError(f"Empty reset selection: {mode!r}")
    for name in names:
        if name not in topology:
            raise UnknownPhaseError(name, topology.ids)
    return [spec.id for spec in topology.subset(names)]


def reset_sections(doc: Document, phase_ids: list[str]) -> Document:
    """Reset the given phases in place. Idempotent."""
    for phase_id in phase_ids:
        if phase_id not in doc.phases:
            raise UnknownPhaseError(phase_id, list(doc.phases))
    for phase_id in phase_ids:
        doc.reset_phase(phase_id)
    doc.last_updated = datetime.now().isoformat()
    logger.info(f"Reset sections: {', '.join(phase_ids)}")
    return doc
