"""Shared fixtures: valid phase sections, producers and a configured project."""

import copy
import sys
import types

import pytest

SECTIONS = {
    "functional": {"requirements": [{"text": "Users can sign in"}, {"text": "Users can sign out"}]},
    "technical": {"apis": [{"name": "POST /login"}], "dataStructures": [{"name": "User"}], "components": []},
    "architecture": {"components": ["api", "store"]},
    "testing": {"unit": [{"name": "test_login"}], "integration": [], "e2e": []},
    "implementation": {"files": ["src/app.py", "src/models.py"]},
    "review": {"overallScore": 8, "findings": ["naming"], "issues": [], "recommendations": ["add docs"]},
    "documentation": {"documents": ["README.md"]},
    "deployment": {"manifests": ["Dockerfile"]},
}


@pytest.fixture
def sections():
    return copy.deepcopy(SECTIONS)


@pytest.fixture
def producers(sections):
    """One plain function per phase returning its valid section."""
    def make(section):
        return lambda invocation: copy.deepcopy(section)
    return {phase_id: make(section) for phase_id, section in sections.items()}


@pytest.fixture
def agents_module(monkeypatch, sections):
    """Producer module importable as forge_test_agents, one function per phase."""
    module = types.ModuleType("forge_test_agents")
    for phase_id, section in sections.items():
        setattr(module, phase_id, lambda invocation, section=section: copy.deepcopy(section))

    def failing(invocation):
        raise RuntimeError("model unavailable")

    module.failing = failing
    monkeypatch.setitem(sys.modules, "forge_test_agents", module)
    return module


@pytest.fixture
def project(tmp_path, agents_module, sections):
    """A project directory with forge.yaml and a requirements file."""
    lines = ["producers:"]
    lines += [f"  {phase_id}: forge_test_agents:{phase_id}" for phase_id in sections]
    (tmp_path / "forge.yaml").write_text("\n".join(lines) + "\n")
    (tmp_path / "requirements.md").write_text("# Login Service\n\nUsers sign in.\n")
    return tmp_path
