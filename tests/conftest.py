"""Shared pytest fixtures for agentsync tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from dotenv import load_dotenv

from agentsync.sync.engine import SyncOrchestrator
from agentsync.sync.models import ItemKind
from agentsync.sync.targets import OutputDefinition, ResolvedTarget, TargetRegistry

load_dotenv()


class RepoBuilder:
    """Small helper that lays out a repository with an ``agents/`` tree."""

    def __init__(self, root: Path) -> None:
        (root / "agents").mkdir(parents=True)
        self.root = root.resolve()
        self.agents = self.root / "agents"

    def write(self, rel: str, text: str) -> Path:
        """Write *text* to ``agents/<rel>`` and return the path."""
        path = self.agents / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def remove(self, rel: str) -> None:
        (self.agents / rel).unlink()

    def out(self, rel: str) -> Path:
        """Path relative to the repository root."""
        return self.root / rel


@pytest.fixture
def repo(tmp_path: Path) -> RepoBuilder:
    """An empty repository with an ``agents/`` directory."""
    return RepoBuilder(tmp_path / "repo")


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def make_target():
    """Factory for custom ``ResolvedTarget`` values writing under ``out/<id>``."""

    def _make(
        target_id: str,
        outputs: dict[ItemKind, OutputDefinition | None] | None = None,
        **fields,
    ) -> ResolvedTarget:
        if outputs is None:
            outputs = {
                ItemKind.SKILL: OutputDefinition(
                    path=f"{{repo}}/out/{target_id}/skills/{{item}}"
                ),
                ItemKind.COMMAND: OutputDefinition(
                    path=f"{{repo}}/out/{target_id}/{{item}}"
                ),
                ItemKind.SUBAGENT: OutputDefinition(
                    path=f"{{repo}}/out/{target_id}/agents/{{item}}.md"
                ),
                ItemKind.INSTRUCTION: OutputDefinition(
                    path=f"{{output_dir}}/{target_id.upper()}.md"
                ),
            }
        return ResolvedTarget(
            id=target_id,
            display_name=fields.pop("display_name", target_id.upper()),
            outputs=outputs,
            **fields,
        )

    return _make


@pytest.fixture
def registry(make_target) -> TargetRegistry:
    """Two independent custom targets, ``t1`` and ``t2``."""
    return TargetRegistry([make_target("t1"), make_target("t2")])


@pytest.fixture
def make_orchestrator(repo: RepoBuilder, state_dir: Path):
    """Factory building a ``SyncOrchestrator`` over the ``repo`` fixture."""

    def _make(registry: TargetRegistry, **kwargs) -> SyncOrchestrator:
        kwargs.setdefault("state_dir", state_dir)
        kwargs.setdefault("home", repo.root / "home")
        return SyncOrchestrator(repo.root, registry, **kwargs)

    return _make
