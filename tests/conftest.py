"""Shared fixtures for fleet tests."""

from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
import yaml

from fleet.errors import OnboardCancelled
from fleet.models.identity import IdentityManifest, IdentityResult
from fleet.models.manifest import AgentDefinition, ResolvedAgent
from fleet.services.hook_runner import HookResult


def identity_data(name: str = "eng", role: Optional[str] = None, **overrides) -> dict:
    data = {
        "name": name,
        "displayName": name.capitalize(),
        "role": role or name,
        "emoji": "🤖",
        "description": f"{name} agent",
        "volumeSize": 20,
        "skills": [],
        "templateVars": [],
    }
    data.update(overrides)
    return data


def make_agent(name: str = "eng", role: Optional[str] = None, files: Optional[Dict[str, str]] = None,
               agent_name: Optional[str] = None, plugin_config: Optional[dict] = None,
               **identity_overrides) -> ResolvedAgent:
    """Hydrated agent without touching disk."""
    manifest = IdentityManifest.model_validate(identity_data(name, role, **identity_overrides))
    identity = IdentityResult(reference=f"./{name}", manifest=manifest, files=files or {})
    definition = AgentDefinition(identity=f"./{name}", name=agent_name, plugins=plugin_config)
    return ResolvedAgent.from_definition(definition, identity)


@pytest.fixture
def write_identity(tmp_path) -> Callable[..., Path]:
    """Write an identity directory under tmp_path and return its path."""

    def _write(dirname: str, name: Optional[str] = None, role: Optional[str] = None,
               extra_files: Optional[Dict[str, str]] = None, **overrides) -> Path:
        directory = tmp_path / dirname
        directory.mkdir(parents=True, exist_ok=True)
        data = identity_data(name or Path(dirname).name, role, **overrides)
        (directory / "identity.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")
        for rel, content in (extra_files or {}).items():
            path = directory / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        return directory

    return _write


class FakeInvoker:
    """Records hook invocations and replays canned results."""

    def __init__(self, results: Optional[List[HookResult]] = None, default: Optional[HookResult] = None):
        self.results = list(results or [])
        self.default = default or HookResult(ok=True, output="")
        self.calls: List[dict] = []

    def run(self, script, env, timeout):
        self.calls.append({"script": script, "env": dict(env), "timeout": timeout})
        if self.results:
            return self.results.pop(0)
        return self.default


class FakeCollector:
    """Answers prompts from a list; None in the list means the operator cancelled."""

    def __init__(self, answers: Optional[List[Optional[str]]] = None):
        self.answers = list(answers or [])
        self.prompts: List[str] = []
        self.shown: List[str] = []
        self.validators = []

    def show(self, text):
        self.shown.append(text)

    def ask(self, message, validate, secret=True):
        self.prompts.append(message)
        self.validators.append(validate)
        answer = self.answers.pop(0) if self.answers else None
        if answer is None:
            raise OnboardCancelled()
        return answer


@pytest.fixture
def fake_invoker():
    return FakeInvoker()


@pytest.fixture
def fake_collector():
    return FakeCollector()
