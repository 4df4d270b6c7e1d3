"""
The producer contract.

A producer generates one phase's section. It receives a PhaseInvocation,
may write its own section into the document through the store, and returns
a summary. Producers may be sync or async.
"""

import inspect
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol, runtime_checkable


@dataclass
class PhaseInvocation:
    """Everything a producer gets for one phase run."""
    phase_id: str
    agent: str
    inputs: Any
    document_path: Path
    requirements_path: Path | None = None
    store: Any = None


@runtime_checkable
class Producer(Protocol):
    def execute(self, invocation: PhaseInvocation) -> Any: ...


class CallableProducer:
    """Wraps a plain function (sync or async) taking a PhaseInvocation."""

    def __init__(self, fn: Callable[[PhaseInvocation], Any], name: str | None = None):
        self.fn = fn
        self.name = name or getattr(fn, "__name__", repr(fn))

    def execute(self, invocation: PhaseInvocation) -> Any:
        return self.fn(invocation)

    def __repr__(self):
        return f"CallableProducer({self.name})"


def as_producer(obj) -> Producer:
    """Accept a producer object or a bare callable."""
    if hasattr(obj, "execute"):
        return obj
    if callable(obj):
        return CallableProducer(obj)
    raise TypeError(f"Not a producer: {obj!r}")


async def call_maybe_async(fn: Callable, *args) -> Any:
    """Call fn and await the result if it is awaitable."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
