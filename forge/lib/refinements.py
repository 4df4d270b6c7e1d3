"""
Refinement suggestions for implementation/test deadlocks.

Failures that carry a structured category are mapped through a lookup table.
Failures without one are classified by keyword so plain-text tester output
still yields suggestions.
"""

import re
from dataclasses import dataclass, field
from typing import Any

ASSERTION_MISMATCH = "assertion_mismatch"
MISSING_SYMBOL = "missing_symbol"
TIMEOUT = "timeout"

SUGGESTIONS = {
    ASSERTION_MISMATCH: "Technical specification may be incomplete or ambiguous. Review acceptance criteria.",
    MISSING_SYMBOL: "API signatures or data structures may be missing. Review technical specification.",
    TIMEOUT: "Performance constraint may be unrealistic. Review non-functional requirements.",
}

# Checked in order; first match wins per failure
KEYWORDS = [
    (ASSERTION_MISMATCH, re.compile(r"assert|expected", re.IGNORECASE)),
    (MISSING_SYMBOL, re.compile(r"undefined|not found|not defined|no attribute|cannot find", re.IGNORECASE)),
    (TIMEOUT, re.compile(r"timeout|timed out", re.IGNORECASE)),
]


@dataclass
class TestFailure:
    """A single failing test as reported by a tester."""
    __test__ = False

    name: str = ""
    message: str = ""
    category: str | None = None
    details: dict = field(default_factory=dict)

    @classmethod
    def coerce(cls, raw: Any) -> "TestFailure":
        """Accept a TestFailure, a dict, an exception, or a plain string."""
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, dict):
            return cls(
                name=str(raw.get("name", raw.get("test", ""))),
                message=str(raw.get("message", "")),
                category=raw.get("category"),
                details={k: v for k, v in raw.items() if k not in ("name", "test", "message", "category")},
            )
        if isinstance(raw, BaseException):
            return cls(name=type(raw).__name__, message=str(raw))
        return cls(message=str(raw))

    def to_dict(self) -> dict:
        data = {"name": self.name, "message": self.message, "category": self.category}
        if self.details:
            data["details"] = self.details
        return data


def classify(failure: TestFailure) -> str | None:
    """Category for a failure: its own if known, else by keyword."""
    if failure.category in SUGGESTIONS:
        return failure.category
    text = f"{failure.name} {failure.message}"
    for category, pattern in KEYWORDS:
        if pattern.search(text):
            return category
    return None


def suggest_refinements(failures: list[TestFailure]) -> list[str]:
    """Distinct suggestions for a failure set, in category table order."""
    found = {classify(f) for f in failures}
    return [text for category, text in SUGGESTIONS.items() if category in found]
