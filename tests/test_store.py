"""Tests for forge.document.store."""

import json

import pytest

from forge.document.model import Document
from forge.document.store import (
    DocumentIOError,
    DocumentParseError,
    FileDocumentStore,
    InMemoryDocumentStore,
    editing,
)
from forge.lib.topology import explicit_topology
from forge.lib.validate import ValidationError


@pytest.fixture
def seed():
    return Document.new("demo", explicit_topology())


class TestFileDocumentStore:
    """Tests for the JSON file store."""

    def test_load_or_create_persists_seed(self, tmp_path, seed):
        """A missing document is created from the seed and written."""
        path = tmp_path / "nested" / "rvd.json"
        store = FileDocumentStore()
        doc = store.load_or_create(path, seed)
        assert path.exists()
        assert doc.metadata.identifier == "demo"

        data = json.loads(path.read_text())
        assert data["metadata"]["identifier"] == "demo"
        assert list(data["phases"]) == explicit_topology().ids

    def test_load_or_create_keeps_existing(self, tmp_path, seed):
        """An existing document wins over the seed."""
        path = tmp_path / "rvd.json"
        store = FileDocumentStore()
        store.save(path, seed)
        other = Document.new("other", explicit_topology())
        assert store.load_or_create(path, other).metadata.identifier == "demo"

    def test_round_trip(self, tmp_path, seed):
        """Saving then loading gives the same document."""
        path = tmp_path / "rvd.json"
        store = FileDocumentStore()
        seed.update_phase("functional", {"requirements": [{"text": "a"}]})
        store.save(path, seed)
        assert store.load(path).to_dict() == seed.to_dict()

    def test_save_is_atomic(self, tmp_path, seed):
        """Saves leave no temp files behind."""
        path = tmp_path / "rvd.json"
        FileDocumentStore().save(path, seed)
        # No temp files left behind
        assert [p.name for p in tmp_path.iterdir()] == ["rvd.json"]
        assert path.read_text().endswith("\n")

    def test_load_missing(self, tmp_path):
        """A missing document raises DocumentIOError."""
        with pytest.raises(DocumentIOError) as exc:
            FileDocumentStore().load(tmp_path / "missing.json")
        assert not isinstance(exc.value, DocumentParseError)

    def test_load_malformed_json(self, tmp_path):
        """Malformed JSON raises DocumentParseError."""
        path = tmp_path / "rvd.json"
        path.write_text("{not json")
        with pytest.raises(DocumentParseError):
            FileDocumentStore().load(path)

    def test_load_schema_violation(self, tmp_path):
        """A schema violation raises DocumentParseError."""
        path = tmp_path / "rvd.json"
        path.write_text(json.dumps({"version": "1.0", "metadata": {"identifier": "x", "status": "bogus"}, "phases": {}}))
        with pytest.raises(DocumentParseError):
            FileDocumentStore().load(path)

    def test_parse_error_is_io_error(self):
        """Parse errors are I/O errors."""
        assert issubclass(DocumentParseError, DocumentIOError)
        assert issubclass(DocumentIOError, OSError)

    def test_refuses_to_write_invalid(self, tmp_path, seed):
        """An invalid document is never written."""
        path = tmp_path / "rvd.json"
        seed.metadata.status = "bogus"
        with pytest.raises(ValidationError):
            FileDocumentStore().save(path, seed)
        assert not path.exists()

    def test_with_phase(self, tmp_path, seed):
        """with_phase stores a phase output in one step."""
        path = tmp_path / "rvd.json"
        store = FileDocumentStore()
        store.save(path, seed)
        store.with_phase(path, "functional", {"requirements": []}, "FunctionalRequirementsAgent")
        assert store.load(path).phases["functional"].status == "completed"

    def test_editing(self, tmp_path, seed):
        """editing saves changes made inside the block."""
        path = tmp_path / "rvd.json"
        store = FileDocumentStore()
        store.save(path, seed)
        with editing(store, path) as doc:
            doc.mark_phase_error("review", "boom")
        assert store.load(path).phases["review"].status == "failed"


class TestInMemoryDocumentStore:
    """Tests for the in-memory store."""

    def test_load_returns_copies(self, seed):
        """Loaded documents are copies, not shared state."""
        store = InMemoryDocumentStore()
        store.save("rvd.json", seed)
        first = store.load("rvd.json")
        first.update_phase("functional", {"requirements": []})
        assert store.load("rvd.json").phases["functional"].status == "pending"

    def test_load_missing(self):
        """A missing document raises DocumentIOError."""
        with pytest.raises(DocumentIOError):
            InMemoryDocumentStore().load("missing.json")

    def test_load_or_create(self, seed):
        """load_or_create stores the seed."""
        store = InMemoryDocumentStore()
        assert not store.exists("rvd.json")
        store.load_or_create("rvd.json", seed)
        assert store.exists("rvd.json")

    def test_validates_on_save(self, seed):
        """The in-memory store validates too."""
        seed.metadata.status = "bogus"
        with pytest.raises(ValidationError):
            InMemoryDocumentStore().save("rvd.json", seed)
