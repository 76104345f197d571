"""Tests for the sync orchestrator (end-to-end runs over a temp repository).

Covers:
- Idempotence: a second run with unchanged sources writes nothing
- Precedence: local-path > local-suffix > shared, with fallback on removal
- Collision determinism: unrelated targets on one path both fail
- Shared output groups: one physical file, others satisfied
- Removal safety: edited outputs are kept, unmodified ones removed
- Converter fan-out and partial-failure isolation
- Hook ordering and hook failure scopes
- Source errors abort a category before any write
- only/skip, declared targets, dry-run, exclude-local
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from agentsync.errors import ConfigError
from agentsync.sync.converters import CustomConverter
from agentsync.sync.hooks import CallableHook, HookSet
from agentsync.sync.manifest import ManagedOutputManifest
from agentsync.sync.models import ItemKind, TargetStatus
from agentsync.sync.targets import OutputDefinition, TargetRegistry

COMMANDS = [ItemKind.COMMAND]


def _result(report, target_id, kind=ItemKind.COMMAND):
    return report.summary_for(kind).result_for(target_id)


def _manifest(state_dir: Path, repo_root: Path, category: str = "commands"):
    return ManagedOutputManifest.for_repository(state_dir, repo_root, category).load()


# ---------------------------------------------------------------------------
# Basic flow
# ---------------------------------------------------------------------------


class TestSharedThenLocalOverride:
    """Shared item synced, then replaced by a local-path override."""

    def test_local_override_updates_output_and_manifest(
        self, repo, make_target, make_orchestrator, state_dir
    ):
        """A local-path override replaces the shared content on re-sync."""
        registry = TargetRegistry([make_target("t1")])
        repo.write("commands/alpha.md", "shared alpha")
        output = repo.out("out/t1/alpha")

        first = make_orchestrator(registry).run(categories=COMMANDS)
        assert output.read_text() == "shared alpha\n"
        assert _result(first, "t1").counts.created == 1

        repo.write(".local/commands/alpha.md", "local alpha")
        second = make_orchestrator(registry).run(categories=COMMANDS)
        assert output.read_text() == "local alpha\n"
        assert _result(second, "t1").counts.updated == 1

        record = _manifest(state_dir, repo.root).get("t1", str(output))
        assert record is not None
        assert record.checksum == hashlib.sha256(b"local alpha\n").hexdigest()
        assert record.source_kind == "command"


class TestIdempotence:
    """A second run with no source changes creates, updates and removes nothing."""

    def test_second_run_only_skips(self, repo, registry, make_orchestrator):
        """Every category reports only skipped outputs on the second run."""
        repo.write("commands/deploy.md", "---\ndescription: Ship it\n---\nDeploy.\n")
        repo.write("skills/review/SKILL.md", "---\nname: review\n---\nReview code.\n")
        repo.write("skills/review/notes/extra.txt", "extra")
        repo.write(
            "agents/helper.md",
            "---\nname: helper\ndescription: Helps\n---\nYou help.\n",
        )
        repo.write("AGENTS.md", "Be nice.\n")

        make_orchestrator(registry).run(remove_missing=True)
        second = make_orchestrator(registry).run(remove_missing=True)

        for summary in second.summaries:
            for result in summary.results:
                assert result.counts.created == 0
                assert result.counts.updated == 0
                assert result.counts.removed == 0
                assert result.counts.skipped >= 1
        assert not second.had_failures

    def test_outputs_have_expected_shapes(self, repo, registry, make_orchestrator):
        """Skills are copied as bundles and instructions land in output_dir."""
        repo.write("skills/review/SKILL.md", "---\nname: review\n---\nReview code.\n")
        repo.write("skills/review/notes/extra.txt", "extra")
        repo.write("AGENTS.md", "Be nice.\n")

        make_orchestrator(registry).run()

        bundle = repo.out("out/t1/skills/review")
        assert (bundle / "SKILL.md").read_text().endswith("Review code.\n")
        assert (bundle / "notes" / "extra.txt").read_text() == "extra"
        assert repo.out("T1.md").read_text() == "Be nice.\n"
        assert repo.out("T2.md").read_text() == "Be nice.\n"


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------


class TestPrecedence:
    """local-path beats local-suffix beats shared."""

    def test_fallback_order_as_variants_disappear(
        self, repo, make_target, make_orchestrator
    ):
        """Removing the stronger variant falls back to the next one."""
        registry = TargetRegistry([make_target("t1")])
        repo.write("commands/alpha.md", "shared")
        repo.write("commands/alpha.local.md", "suffix")
        repo.write(".local/commands/alpha.md", "path")
        output = repo.out("out/t1/alpha")

        make_orchestrator(registry).run(categories=COMMANDS)
        assert output.read_text() == "path\n"

        repo.remove(".local/commands/alpha.md")
        make_orchestrator(registry).run(categories=COMMANDS)
        assert output.read_text() == "suffix\n"

        repo.remove("commands/alpha.local.md")
        make_orchestrator(registry).run(categories=COMMANDS)
        assert output.read_text() == "shared\n"

    def test_exclude_local_uses_shared_variant(
        self, repo, make_target, make_orchestrator
    ):
        """Excluded local variants are counted but never synced."""
        registry = TargetRegistry([make_target("t1")])
        repo.write("commands/alpha.md", "shared")
        repo.write(".local/commands/alpha.md", "path")

        report = make_orchestrator(registry).run(
            categories=COMMANDS, exclude_local=[ItemKind.COMMAND]
        )
        assert repo.out("out/t1/alpha").read_text() == "shared\n"
        counts = report.summary_for(ItemKind.COMMAND).source_counts
        assert counts.shared == 1
        assert counts.excluded_local == 1
        assert counts.local == 0


# ---------------------------------------------------------------------------
# Collisions
# ---------------------------------------------------------------------------


class TestCollisions:
    """Overlapping output paths."""

    def test_unrelated_targets_on_one_path_both_fail(
        self, repo, make_target, make_orchestrator
    ):
        """Neither target writes and both report a collision error."""
        shared = {ItemKind.COMMAND: OutputDefinition(path="{repo}/out/shared/{item}")}
        registry = TargetRegistry(
            [make_target("t1", outputs=shared), make_target("t2", outputs=shared)]
        )
        repo.write("commands/alpha.md", "alpha")
        existing = repo.out("out/shared/alpha")
        existing.parent.mkdir(parents=True)
        existing.write_text("original")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        assert existing.read_text() == "original"
        for target_id in ("t1", "t2"):
            result = _result(report, target_id)
            assert result.status == TargetStatus.FAILED
            assert "Output collision detected at" in result.errors[0]
        assert report.had_failures

    def test_shared_group_writes_once(self, repo, make_target, make_orchestrator):
        """Targets in one output group share a single physical file."""
        grouped = {
            ItemKind.INSTRUCTION: OutputDefinition(
                path="{output_dir}/AGENTS.md", group="agents"
            )
        }
        registry = TargetRegistry(
            [make_target("t1", outputs=grouped), make_target("t2", outputs=grouped)]
        )
        repo.write("AGENTS.md", "Shared rules.\n")

        report = make_orchestrator(registry).run(categories=[ItemKind.INSTRUCTION])

        assert repo.out("AGENTS.md").read_text() == "Shared rules.\n"
        first = _result(report, "t1", ItemKind.INSTRUCTION)
        second = _result(report, "t2", ItemKind.INSTRUCTION)
        assert first.counts.created == 1
        assert second.counts.skipped == 1
        assert first.status == second.status == TargetStatus.SYNCED

    def test_converters_returning_one_path_both_fail(
        self, repo, make_target, make_orchestrator
    ):
        """Two converters asking for the same file write nothing."""

        def to_shared(item, context):
            return {"path": "shared/out.md", "content": context.target_id}

        def converted(target_id):
            return {
                ItemKind.COMMAND: OutputDefinition(
                    path=f"{{repo}}/out/{target_id}/{{item}}",
                    converter=CustomConverter(to_shared, "tests:to_shared"),
                )
            }

        registry = TargetRegistry(
            [
                make_target("t1", outputs=converted("t1")),
                make_target("t2", outputs=converted("t2")),
            ]
        )
        repo.write("commands/alpha.md", "alpha")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        shared = repo.out("shared/out.md")
        assert not shared.exists()
        for target_id in ("t1", "t2"):
            result = _result(report, target_id)
            assert result.status == TargetStatus.FAILED
            assert result.counts.failed == 1
            assert (
                f"Output collision detected at {shared} (targets: t1, t2)"
                in result.errors[0]
            )

    def test_converter_onto_default_path_of_other_target(
        self, repo, make_target, make_orchestrator, state_dir
    ):
        """A converter output on another target's default path fails both."""

        def steal(item, context):
            return {"path": f"out/t2/{item.name}", "content": "from t1"}

        outputs = {
            ItemKind.COMMAND: OutputDefinition(
                path="{repo}/out/t1/{item}",
                converter=CustomConverter(steal, "tests:steal"),
            )
        }
        registry = TargetRegistry(
            [make_target("t1", outputs=outputs), make_target("t2")]
        )
        repo.write("commands/alpha.md", "alpha")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        assert not repo.out("out/t2/alpha").exists()
        assert not repo.out("out/t1/alpha").exists()
        for target_id in ("t1", "t2"):
            result = _result(report, target_id)
            assert result.status == TargetStatus.FAILED
            assert "Output collision detected at" in result.errors[0]
        assert len(_manifest(state_dir, repo.root)) == 0

    def test_repo_agents_file_satisfies_grouped_targets(
        self, repo, make_target, make_orchestrator, state_dir
    ):
        """A repository AGENTS.md is never rewritten; siblings are generated."""
        grouped = {
            ItemKind.INSTRUCTION: OutputDefinition(
                path="{output_dir}/AGENTS.md", group="agents"
            )
        }
        registry = TargetRegistry(
            [
                make_target("t1", outputs=grouped),
                make_target("t2", outputs=grouped),
                make_target("t3"),
            ]
        )
        root_file = repo.out("AGENTS.md")
        root_file.write_text("Root <agents t3>rules</agents>\n")
        (repo.root / "docs").mkdir()
        repo.out("docs/AGENTS.md").write_text("Docs rules.\n")

        report = make_orchestrator(registry).run(categories=[ItemKind.INSTRUCTION])

        assert root_file.read_text() == "Root <agents t3>rules</agents>\n"
        assert repo.out("T3.md").read_text() == "Root rules\n"
        assert repo.out("docs/T3.md").read_text() == "Docs rules.\n"
        for target_id in ("t1", "t2"):
            result = _result(report, target_id, ItemKind.INSTRUCTION)
            assert result.counts.skipped == 2
            assert result.counts.created == 0
            assert result.errors == []
        manifest = _manifest(state_dir, repo.root, "instructions")
        assert {r.target_id for r in manifest.records()} == {"t3"}

    def test_gitignored_agents_file_is_not_a_source(
        self, repo, make_target, make_orchestrator
    ):
        registry = TargetRegistry([make_target("t3")])
        (repo.root / ".gitignore").write_text("vendor/\n")
        (repo.root / "vendor").mkdir()
        repo.out("vendor/AGENTS.md").write_text("Vendored.\n")
        (repo.root / "lib").mkdir()
        repo.out("lib/AGENTS.md").write_text("Library.\n")

        make_orchestrator(registry).run(categories=[ItemKind.INSTRUCTION])

        assert not repo.out("vendor/T3.md").exists()
        assert repo.out("lib/T3.md").read_text() == "Library.\n"


# ---------------------------------------------------------------------------
# Removal safety
# ---------------------------------------------------------------------------


class TestRemovalSafety:
    """Orphaned outputs are only deleted when unmodified."""

    @pytest.fixture
    def synced(self, repo, make_target, make_orchestrator):
        registry = TargetRegistry([make_target("t1")])
        repo.write("commands/alpha.md", "alpha")
        repo.write("commands/beta.md", "beta")
        make_orchestrator(registry).run(categories=COMMANDS)
        repo.out("out/t1/beta").write_text("edited by hand")
        repo.remove("commands/alpha.md")
        repo.remove("commands/beta.md")
        return registry

    def test_modified_output_kept_unmodified_removed(
        self, repo, synced, make_orchestrator, state_dir
    ):
        """Non-interactive removal keeps the edited file with a warning."""
        report = make_orchestrator(synced).run(
            categories=COMMANDS, remove_missing=True, non_interactive=True
        )

        assert not repo.out("out/t1/alpha").exists()
        assert repo.out("out/t1/beta").read_text() == "edited by hand"
        result = _result(report, "t1")
        assert result.counts.removed == 1
        assert any("Output modified since last sync" in w for w in result.warnings)
        assert not report.had_failures

        manifest = _manifest(state_dir, repo.root)
        assert manifest.get("t1", str(repo.out("out/t1/alpha"))) is None
        assert manifest.get("t1", str(repo.out("out/t1/beta"))) is not None

    def test_without_remove_missing_everything_is_kept(
        self, repo, synced, make_orchestrator
    ):
        """Orphans are preserved unless removal is requested."""
        report = make_orchestrator(synced).run(categories=COMMANDS)

        assert repo.out("out/t1/alpha").exists()
        assert repo.out("out/t1/beta").exists()
        assert _result(report, "t1").counts.removed == 0

    def test_confirmed_removal_deletes_modified_output(
        self, repo, synced, make_orchestrator
    ):
        """An interactive 'yes' removes the edited file."""
        asked: list[str] = []

        def confirm(path: str) -> bool:
            asked.append(path)
            return True

        report = make_orchestrator(synced).run(
            categories=COMMANDS,
            remove_missing=True,
            non_interactive=False,
            confirm_removal=confirm,
        )

        assert asked == [str(repo.out("out/t1/beta"))]
        assert not repo.out("out/t1/beta").exists()
        assert _result(report, "t1").counts.removed == 2

    def test_declined_removal_keeps_output(self, repo, synced, make_orchestrator):
        """An interactive 'no' keeps the file and records why."""
        report = make_orchestrator(synced).run(
            categories=COMMANDS,
            remove_missing=True,
            non_interactive=False,
            confirm_removal=lambda path: False,
        )

        assert repo.out("out/t1/beta").exists()
        warnings = _result(report, "t1").warnings
        assert any(w.startswith("Output modified; keeping") for w in warnings)

    def test_deselected_target_outputs_are_out_of_scope(
        self, repo, make_target, make_orchestrator
    ):
        """Records of a target not selected this run are never touched."""
        registry = TargetRegistry([make_target("t1"), make_target("t2")])
        repo.write("commands/alpha.md", "alpha")
        make_orchestrator(registry).run(categories=COMMANDS)
        repo.remove("commands/alpha.md")

        make_orchestrator(registry).run(
            categories=COMMANDS, only=["t2"], remove_missing=True
        )

        assert repo.out("out/t1/alpha").exists()
        assert not repo.out("out/t2/alpha").exists()


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------


class TestConverters:
    """Converter fan-out and failure isolation."""

    def test_fan_out_writes_every_output(self, repo, make_target, make_orchestrator):
        """Two {path, content} pairs yield two files and no default output."""

        def fan_out(item, context):
            return [
                {"path": f"out/{item.name}-a.txt", "content": "A"},
                {"path": f"out/{item.name}-b.txt", "content": "B"},
            ]

        outputs = {
            ItemKind.COMMAND: OutputDefinition(
                path="{repo}/out/t1/{item}",
                converter=CustomConverter(fan_out, "tests:fan_out"),
            )
        }
        registry = TargetRegistry([make_target("t1", outputs=outputs)])
        repo.write("commands/alpha.md", "alpha")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        assert repo.out("out/alpha-a.txt").read_text() == "A"
        assert repo.out("out/alpha-b.txt").read_text() == "B"
        assert not repo.out("out/t1/alpha").exists()
        assert _result(report, "t1").counts.created == 2

    def test_failing_converter_does_not_affect_other_target(
        self, repo, make_target, make_orchestrator
    ):
        """Target A ends partial while target B syncs everything."""

        def flaky(item, context):
            if item.name == "bad":
                raise RuntimeError("boom")
            return f"converted {item.name}"

        outputs = {
            ItemKind.COMMAND: OutputDefinition(
                path="{repo}/out/a/{item}",
                converter=CustomConverter(flaky, "tests:flaky"),
            )
        }
        registry = TargetRegistry(
            [make_target("a", outputs=outputs), make_target("b")]
        )
        repo.write("commands/alpha.md", "alpha")
        repo.write("commands/bad.md", "bad")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        a = _result(report, "a")
        b = _result(report, "b")
        assert a.status == TargetStatus.PARTIAL
        assert a.counts.created == 1
        assert a.counts.failed == 1
        assert "boom" in a.errors[0]
        assert "'bad'" in a.errors[0]
        assert b.status == TargetStatus.SYNCED
        assert b.counts.created == 2
        assert repo.out("out/a/alpha").read_text() == "converted alpha"

    def test_skip_and_satisfy_count_as_skipped(
        self, repo, make_target, make_orchestrator
    ):
        """skip/satisfy decisions write nothing and count as skipped."""

        def decide(item, context):
            return {"satisfy": True} if item.name == "alpha" else None

        outputs = {
            ItemKind.COMMAND: OutputDefinition(
                path="{repo}/out/t1/{item}",
                converter=CustomConverter(decide, "tests:decide"),
            )
        }
        registry = TargetRegistry([make_target("t1", outputs=outputs)])
        repo.write("commands/alpha.md", "alpha")
        repo.write("commands/beta.md", "beta")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        assert _result(report, "t1").counts.skipped == 2
        assert not repo.out("out/t1").exists()


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


class TestHooks:
    """Hook ordering and failure scopes."""

    def test_hook_order(self, repo, make_target, make_orchestrator):
        """Hooks run global/target around sync and convert phases."""
        calls: list[str] = []

        def recorder(label):
            return CallableHook(lambda ctx: calls.append(label), label)

        target_hooks = HookSet(
            before_sync=(recorder("target before_sync"),),
            before_convert=(recorder("target before_convert"),),
            after_convert=(recorder("target after_convert"),),
            after_sync=(recorder("target after_sync"),),
        )
        global_hooks = HookSet(
            before_sync=(recorder("global before_sync"),),
            before_convert=(recorder("global before_convert"),),
            after_convert=(recorder("global after_convert"),),
            after_sync=(recorder("global after_sync"),),
        )
        registry = TargetRegistry([make_target("t1", hooks=target_hooks)])
        repo.write("commands/alpha.md", "alpha")

        make_orchestrator(registry, global_hooks=global_hooks).run(categories=COMMANDS)

        assert calls == [
            "global before_sync",
            "target before_sync",
            "global before_convert",
            "target before_convert",
            "global after_convert",
            "target after_convert",
            "target after_sync",
            "global after_sync",
        ]

    def test_global_before_sync_failure_aborts_every_target(
        self, repo, registry, make_orchestrator
    ):
        """Nothing is written and every target fails."""

        def fail(ctx):
            raise RuntimeError("not ready")

        hooks = HookSet(before_sync=(CallableHook(fail, "tests:fail"),))
        repo.write("commands/alpha.md", "alpha")

        report = make_orchestrator(registry, global_hooks=hooks).run(
            categories=COMMANDS
        )

        assert not repo.out("out").exists()
        for target_id in ("t1", "t2"):
            result = _result(report, target_id)
            assert result.status == TargetStatus.FAILED
            assert "not ready" in result.errors[0]

    def test_target_before_sync_failure_aborts_only_that_target(
        self, repo, make_target, make_orchestrator
    ):
        """The other target still syncs."""

        def fail(ctx):
            raise RuntimeError("nope")

        hooks = HookSet(before_sync=(CallableHook(fail, "tests:fail"),))
        registry = TargetRegistry(
            [make_target("t1", hooks=hooks), make_target("t2")]
        )
        repo.write("commands/alpha.md", "alpha")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        assert _result(report, "t1").status == TargetStatus.FAILED
        assert _result(report, "t2").status == TargetStatus.SYNCED
        assert not repo.out("out/t1/alpha").exists()
        assert repo.out("out/t2/alpha").exists()

    def test_convert_hook_failure_skips_remaining_items(
        self, repo, make_target, make_orchestrator
    ):
        """The failing item fails and the target's later items are skipped."""

        def fail(ctx):
            raise RuntimeError("convert hook broke")

        hooks = HookSet(before_convert=(CallableHook(fail, "tests:fail"),))
        registry = TargetRegistry([make_target("t1", hooks=hooks)])
        for name in ("alpha", "beta", "gamma"):
            repo.write(f"commands/{name}.md", name)

        report = make_orchestrator(registry).run(categories=COMMANDS)

        result = _result(report, "t1")
        assert result.counts.failed == 1
        assert result.counts.skipped == 2
        assert result.status == TargetStatus.PARTIAL
        assert "'alpha'" in result.errors[0]

    def test_hooks_receive_context(self, repo, make_target, make_orchestrator):
        """Convert hooks see the item name, category and output path."""
        seen = []
        hooks = HookSet(after_convert=(CallableHook(seen.append, "tests:seen"),))
        registry = TargetRegistry([make_target("t1", hooks=hooks)])
        repo.write("commands/alpha.md", "alpha")

        make_orchestrator(registry).run(categories=COMMANDS)

        (context,) = seen
        assert context.item_name == "alpha"
        assert context.category == "commands"
        assert context.target_id == "t1"
        assert context.output_path == str(repo.out("out/t1/alpha"))


# ---------------------------------------------------------------------------
# Source errors and selection
# ---------------------------------------------------------------------------


class TestSourceErrors:
    """Structurally invalid sources abort their category before writes."""

    def test_empty_targets_abort_category(self, repo, registry, make_orchestrator):
        """A valid sibling item is not written either."""
        repo.write("commands/alpha.md", "alpha")
        repo.write("commands/broken.md", "---\ntargets: []\n---\nbody\n")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        assert not repo.out("out/t1/alpha").exists()
        result = _result(report, "t1")
        assert result.status == TargetStatus.FAILED
        assert "has empty targets" in result.errors[0]

    def test_invalid_subagent_frontmatter_leaves_other_categories(
        self, repo, registry, make_orchestrator
    ):
        """A subagent parse error fails subagents only."""
        repo.write("agents/helper.md", "---\nname: helper\nnot a pair\n---\nbody\n")
        repo.write("commands/alpha.md", "alpha")

        report = make_orchestrator(registry).run(
            categories=[ItemKind.COMMAND, ItemKind.SUBAGENT]
        )

        assert report.summary_for(ItemKind.SUBAGENT).had_failures
        assert not report.summary_for(ItemKind.COMMAND).had_failures
        assert repo.out("out/t1/alpha").exists()

    def test_templating_error_aborts_category(self, repo, registry, make_orchestrator):
        """An unknown selector is reported with the source path."""
        repo.write("commands/alpha.md", "<agents bogus>x</agents>\n")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        error = _result(report, "t1").errors[0]
        assert "alpha.md" in error
        assert not repo.out("out").exists()

    def test_unresolvable_path_fails_only_that_target(
        self, repo, make_target, make_orchestrator
    ):
        """A template placeholder without a value is a target-level failure."""
        outputs = {
            ItemKind.COMMAND: OutputDefinition(path="{repo}/out/{output_dir}/x")
        }
        registry = TargetRegistry(
            [make_target("t1", outputs=outputs), make_target("t2")]
        )
        repo.write("commands/alpha.md", "alpha")

        report = make_orchestrator(registry).run(categories=COMMANDS)

        assert _result(report, "t1").status == TargetStatus.FAILED
        assert "{output_dir}" in _result(report, "t1").errors[0]
        assert _result(report, "t2").status == TargetStatus.SYNCED


class TestSelection:
    """only/skip, declared targets, dry-run."""

    def test_declared_targets_limit_outputs(self, repo, registry, make_orchestrator):
        """An item declaring t2 is never written for t1."""
        repo.write("commands/alpha.md", "---\ntargets: [t2]\n---\nalpha\n")

        make_orchestrator(registry).run(categories=COMMANDS)

        assert not repo.out("out/t1/alpha").exists()
        assert repo.out("out/t2/alpha").read_text() == "alpha\n"

    def test_only_restricts_targets(self, repo, registry, make_orchestrator):
        """Unselected targets are absent from the summary."""
        repo.write("commands/alpha.md", "alpha")

        report = make_orchestrator(registry).run(categories=COMMANDS, only=["T1"])

        assert _result(report, "t1").counts.created == 1
        assert _result(report, "t2") is None

    def test_skip_removes_target(self, repo, registry, make_orchestrator):
        repo.write("commands/alpha.md", "alpha")

        make_orchestrator(registry).run(categories=COMMANDS, skip=["t1"])

        assert not repo.out("out/t1/alpha").exists()
        assert repo.out("out/t2/alpha").exists()

    def test_unknown_only_target_is_config_error(self, registry, make_orchestrator):
        with pytest.raises(ConfigError, match="Unknown target"):
            make_orchestrator(registry).run(only=["nope"])

    def test_dry_run_writes_nothing(self, repo, registry, make_orchestrator, state_dir):
        """Statuses are computed but neither outputs nor manifests are saved."""
        repo.write("commands/alpha.md", "alpha")

        report = make_orchestrator(registry).run(categories=COMMANDS, dry_run=True)

        assert report.dry_run
        assert _result(report, "t1").counts.created == 1
        assert not repo.out("out").exists()
        assert not state_dir.exists()


class TestFallbacksAndParallelism:
    """Fallback rendering and the bounded worker pool."""

    def test_command_falls_back_to_skill(self, repo, make_target, make_orchestrator):
        """A target without commands renders them as skills."""
        target = make_target(
            "t1",
            outputs={ItemKind.SKILL: OutputDefinition(path="{repo}/out/skills/{item}")},
            fallbacks={ItemKind.COMMAND: ItemKind.SKILL},
        )
        repo.write("commands/deploy.md", "---\ndescription: Ship it\n---\nDeploy now.\n")

        make_orchestrator(TargetRegistry([target])).run(categories=COMMANDS)

        skill = repo.out("out/skills/deploy/SKILL.md").read_text()
        assert skill.startswith("---\nname: deploy\ndescription: Ship it\n---\n")
        assert "# deploy" in skill
        assert "Deploy now." in skill

    def test_parallel_run_matches_serial(self, repo, registry, make_orchestrator):
        """max_workers > 1 produces the same outputs and counts."""
        for index in range(6):
            repo.write(f"commands/cmd{index}.md", f"command {index}")

        report = make_orchestrator(registry, max_workers=4).run(categories=COMMANDS)

        assert _result(report, "t1").counts.created == 6
        for index in range(6):
            assert repo.out(f"out/t2/cmd{index}").read_text() == f"command {index}\n"

    def test_manifest_file_format(self, repo, registry, make_orchestrator, state_dir):
        """The manifest stores camelCase entries sorted by target."""
        repo.write("commands/alpha.md", "alpha")
        make_orchestrator(registry).run(categories=COMMANDS)

        manifest = _manifest(state_dir, repo.root)
        data = json.loads(manifest.path.read_text())
        assert [e["targetId"] for e in data["entries"]] == ["t1", "t2"]
        entry = data["entries"][0]
        assert set(entry) == {
            "targetId",
            "outputPath",
            "sourceType",
            "sourceId",
            "checksum",
            "lastSyncedAt",
            "writerId",
        }
        assert entry["sourceType"] == "command"
        assert entry["sourceId"] == "alpha"
        assert entry["writerId"] == "file"
