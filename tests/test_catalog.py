"""Tests for source discovery (SourceCatalog).

Covers:
- Skills: shared dirs, SKILL.local.md, <name>.local/ dirs, .local/skills
- Commands and subagents: shared, suffix and path variants
- Subagent frontmatter name override and strict parsing
- Instructions: root template, outputDir frontmatter, skipped templates
- Repository AGENTS.md files: output next to themselves, .gitignore respected
- Missing directories produce messages, not errors
- include_local=False counts excluded variants
"""

from __future__ import annotations

import pytest

from agentsync.errors import FrontmatterError, InvalidTargetsError
from agentsync.sources.catalog import SourceCatalog, local_items
from agentsync.sync.models import ItemKind, MarkerType, SourceType


@pytest.fixture
def catalog(repo, registry):
    return SourceCatalog(repo.root, repo.agents, registry)


def _summary(result):
    return sorted((i.name, i.marker_type, i.source_type) for i in result.items)


class TestSkills:
    def test_variants(self, repo, catalog):
        repo.write("skills/review/SKILL.md", "shared")
        repo.write("skills/review/SKILL.local.md", "suffix file")
        repo.write("skills/lint.local/SKILL.md", "suffix dir")
        repo.write(".local/skills/deploy/SKILL.md", "path")
        repo.write("skills/empty/README.md", "no skill file")

        result = catalog.load_items(ItemKind.SKILL)

        assert _summary(result) == [
            ("deploy", MarkerType.PATH, SourceType.LOCAL),
            ("lint", MarkerType.SUFFIX, SourceType.LOCAL),
            ("review", MarkerType.NONE, SourceType.SHARED),
            ("review", MarkerType.SUFFIX, SourceType.LOCAL),
        ]
        assert result.source_counts.shared == 1
        assert result.source_counts.local == 3

    def test_bundle_root_and_case_insensitive_file(self, repo, catalog):
        repo.write("skills/review/skill.md", "---\nname: review\n---\nbody")

        (item,) = catalog.load_items(ItemKind.SKILL).items

        assert item.bundle_root == str(repo.agents / "skills" / "review")
        assert item.content == "body"
        assert item.identity == "review"


class TestMarkdownItems:
    def test_command_variants(self, repo, catalog):
        repo.write("commands/deploy.md", "shared")
        repo.write("commands/deploy.local.md", "suffix")
        repo.write(".local/commands/deploy.md", "path")
        repo.write("commands/notes.txt", "ignored")

        result = catalog.load_items(ItemKind.COMMAND)

        assert _summary(result) == [
            ("deploy", MarkerType.NONE, SourceType.SHARED),
            ("deploy", MarkerType.PATH, SourceType.LOCAL),
            ("deploy", MarkerType.SUFFIX, SourceType.LOCAL),
        ]
        assert {i.identity for i in result.items} == {"deploy"}

    def test_declared_targets_canonicalised(self, repo, catalog):
        repo.write("commands/deploy.md", "---\ntargets: T2\n---\nbody")

        (item,) = catalog.load_items(ItemKind.COMMAND).items

        assert item.declared_targets == ("t2",)

    def test_unknown_declared_target_raises(self, repo, catalog):
        repo.write("commands/deploy.md", "---\ntargets: nope\n---\nbody")

        with pytest.raises(InvalidTargetsError, match='Command "deploy"'):
            catalog.load_items(ItemKind.COMMAND)

    def test_subagent_name_from_frontmatter(self, repo, catalog):
        repo.write("agents/file-name.md", "---\nname: Reviewer\n---\nbody")

        (item,) = catalog.load_items(ItemKind.SUBAGENT).items

        assert item.name == "Reviewer"
        assert item.identity == "reviewer"

    def test_subagent_parsing_is_strict(self, repo, catalog):
        repo.write("agents/broken.md", "---\nname: x\n")

        with pytest.raises(FrontmatterError):
            catalog.load_items(ItemKind.SUBAGENT)

    def test_commands_are_lenient(self, repo, catalog):
        repo.write("commands/loose.md", "---\nname: x\n")

        (item,) = catalog.load_items(ItemKind.COMMAND).items

        assert item.content == "---\nname: x\n"


class TestInstructions:
    def test_root_template_outputs_to_repo(self, repo, catalog):
        repo.write("AGENTS.md", "root rules")

        (item,) = catalog.load_items(ItemKind.INSTRUCTION).items

        assert item.name == "."
        assert item.output_dir == str(repo.root)
        assert item.marker_type == MarkerType.NONE

    def test_output_dir_from_frontmatter(self, repo, catalog):
        repo.write("web/web.agents.md", "---\noutputDir: apps/web\n---\nweb rules")

        (item,) = catalog.load_items(ItemKind.INSTRUCTION).items

        assert item.name == "apps/web"
        assert item.output_dir == str(repo.root / "apps" / "web")
        assert item.identity == (repo.root / "apps" / "web").as_posix().casefold()

    def test_local_variants_share_identity(self, repo, catalog):
        repo.write("AGENTS.md", "shared")
        repo.write("AGENTS.local.md", "suffix")
        repo.write(".local/AGENTS.md", "path")

        result = catalog.load_items(ItemKind.INSTRUCTION)

        assert {i.identity for i in result.items} == {
            repo.root.as_posix().casefold()
        }
        assert sorted(i.marker_type.value for i in result.items) == [
            "none",
            "path",
            "suffix",
        ]

    def test_template_without_output_dir_is_skipped(self, repo, catalog):
        repo.write("nested/AGENTS.md", "no destination")

        result = catalog.load_items(ItemKind.INSTRUCTION)

        assert result.items == []
        assert result.messages[0].startswith("Skipping instruction template")


class TestRepoInstructions:
    """AGENTS.md files of the repository outside agents/."""

    def _put(self, repo, rel: str, text: str = "rules") -> None:
        path = repo.out(rel)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)

    def test_repo_files_output_next_to_themselves(self, repo, catalog):
        self._put(repo, "AGENTS.md", "root")
        self._put(repo, "services/api/AGENTS.md", "api")

        result = catalog.load_items(ItemKind.INSTRUCTION)

        items = sorted(result.items, key=lambda i: i.name)
        assert [i.name for i in items] == [".", "services/api"]
        assert items[1].output_dir == str(repo.root / "services" / "api")
        assert items[1].source_path == str(repo.out("services/api/AGENTS.md"))
        assert all(i.source_type == SourceType.SHARED for i in items)

    def test_gitignored_and_tool_dirs_skipped(self, repo, catalog):
        self._put(repo, ".gitignore", "build/\n*.generated/\n")
        self._put(repo, "build/AGENTS.md")
        self._put(repo, "x.generated/AGENTS.md")
        self._put(repo, "node_modules/pkg/AGENTS.md")
        self._put(repo, ".claude/AGENTS.md")
        self._put(repo, "docs/AGENTS.md")

        result = catalog.load_items(ItemKind.INSTRUCTION)

        assert [i.name for i in result.items] == ["docs"]

    def test_shared_template_replaces_repo_file(self, repo, catalog):
        self._put(repo, "AGENTS.md", "generated earlier")
        repo.write("AGENTS.md", "template")

        (item,) = catalog.load_items(ItemKind.INSTRUCTION).items

        assert item.source_path == str(repo.agents / "AGENTS.md")

    def test_only_exact_agents_md_is_scanned(self, repo, catalog):
        self._put(repo, "AGENTS.local.md")
        self._put(repo, "notes.agents.md")

        assert catalog.load_items(ItemKind.INSTRUCTION).items == []


class TestMissingDirectories:
    def test_missing_agents_dir(self, tmp_path, registry):
        catalog = SourceCatalog(tmp_path, tmp_path / "agents", registry)

        result = catalog.load_items(ItemKind.COMMAND)

        assert result.items == []
        assert result.messages == [f"Agents directory not found: {tmp_path / 'agents'}"]

    def test_missing_category_dir(self, repo, catalog):
        result = catalog.load_items(ItemKind.SKILL)

        assert result.items == []
        assert result.messages == [f"No skills directory at {repo.agents / 'skills'}"]


class TestExcludeLocal:
    def test_local_variants_dropped_and_counted(self, repo, catalog):
        repo.write("commands/a.md", "shared")
        repo.write("commands/a.local.md", "suffix")
        repo.write(".local/commands/b.md", "path")

        result = catalog.load_items(ItemKind.COMMAND, include_local=False)

        assert [i.name for i in result.items] == ["a"]
        assert result.source_counts.shared == 1
        assert result.source_counts.local == 0
        assert result.source_counts.excluded_local == 2

    def test_local_items_helper(self, repo, catalog):
        repo.write("commands/a.md", "shared")
        repo.write(".local/commands/b.md", "path")

        local = local_items(catalog.load_items(ItemKind.COMMAND))

        assert [i.name for i in local] == ["b"]
