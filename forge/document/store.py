"""
Document persistence.

The document is a single JSON file rewritten whole on every save. Saves are
atomic (temp file in the same directory, then os.replace) so a crash never
leaves a half-written document behind.
"""

import copy
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol

from forge.document.model import Document
from forge.lib.validate import ValidationError, validate, validate_before_write

logger = logging.getLogger(__name__)


class DocumentIOError(OSError):
    """Document file could not be read or written."""


class DocumentParseError(DocumentIOError):
    """Document file exists but is not a valid document."""


class DocumentStore(Protocol):
    """Repository interface for the shared document."""

    def exists(self, path: Path) -> bool: ...

    def load(self, path: Path) -> Document: ...

    def save(self, path: Path, doc: Document) -> None: ...

    def load_or_create(self, path: Path, seed: Document) -> Document: ...

    def with_phase(self, path: Path, phase_id: str, output, agent: str | None = None) -> Document: ...


def _parse(raw: str, path: Path) -> Document:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DocumentParseError(f"Invalid JSON in {path}: {e}") from None
    if not isinstance(data, dict):
        raise DocumentParseError(f"Document root in {path} must be an object")
    try:
        validate(data, "document")
    except ValidationError as e:
        raise DocumentParseError(f"Invalid document {path}: {e}") from None
    return Document.from_dict(data)


class FileDocumentStore:
    """Documents stored as JSON files on disk."""

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def load(self, path: Path) -> Document:
        """Read and validate a document.

        Raises:
            DocumentIOError: if the file is missing or unreadable
            DocumentParseError: if the file is not valid JSON or fails the schema
        """
        path = Path(path)
        if not path.exists():
            raise DocumentIOError(f"Document not found: {path}")
        try:
            raw = path.read_text()
        except OSError as e:
            raise DocumentIOError(f"Could not read document {path}: {e}") from e
        return _parse(raw, path)

    def save(self, path: Path, doc: Document) -> None:
        """Validate and atomically write the whole document."""
        path = Path(path)
        data = doc.to_dict()
        validate_before_write(data, "document", path)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f, indent=2)
                    f.write("\n")
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise DocumentIOError(f"Could not write document {path}: {e}") from e
        logger.debug(f"Saved document {path}")

    def load_or_create(self, path: Path, seed: Document) -> Document:
        """Load the document at path, or persist and return seed if absent."""
        path = Path(path)
        if path.exists():
            return self.load(path)
        logger.info(f"Creating document {path} ({seed.metadata.identifier})")
        self.save(path, seed)
        return seed

    def with_phase(self, path: Path, phase_id: str, output, agent: str | None = None) -> Document:
        """Load, store one phase output, save. Used by producers that write their own section."""
        doc = self.load(path)
        doc.update_phase(phase_id, output, agent)
        self.save(path, doc)
        return doc


class InMemoryDocumentStore:
    """Documents kept in a dict keyed by path. Serializes on save so callers
    never share mutable state with the store."""

    def __init__(self):
        self._docs: dict[str, dict] = {}

    def exists(self, path: Path) -> bool:
        return str(path) in self._docs

    def load(self, path: Path) -> Document:
        key = str(path)
        if key not in self._docs:
            raise DocumentIOError(f"Document not found: {path}")
        return Document.from_dict(copy.deepcopy(self._docs[key]))

    def save(self, path: Path, doc: Document) -> None:
        data = doc.to_dict()
        validate_before_write(data, "document", Path(path))
        self._docs[str(path)] = copy.deepcopy(data)

    def load_or_create(self, path: Path, seed: Document) -> Document:
        if self.exists(path):
            return self.load(path)
        self.save(path, seed)
        return self.load(path)

    def with_phase(self, path: Path, phase_id: str, output, agent: str | None = None) -> Document:
        doc = self.load(path)
        doc.update_phase(phase_id, output, agent)
        self.save(path, doc)
        return doc


@contextmanager
def editing(store: DocumentStore, path: Path) -> Iterator[Document]:
    """Load a document, yield it for mutation, save it on clean exit."""
    doc = store.load(path)
    yield doc
    store.save(path, doc)
