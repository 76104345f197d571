"""Build output candidates for every (effective item, target) pair.

Construction never touches the output filesystem: paths are resolved and
content is rendered in memory.  Items without a converter are templated for
the target here so a ``TemplatingError`` surfaces before any write.  Items
with a converter are converted here too, so every concrete path a converter
asks for is known before collisions are resolved.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from agentsync import templating
from agentsync.errors import ConverterError, PathResolutionError
from agentsync.sync.converters import (
    ConvertDecision,
    ConvertedOutput,
    Converter,
    DecisionKind,
)
from agentsync.sync.models import ItemKind, OutputContext, SourceItem, SourceType
from agentsync.sync.paths import compare_key, render_template, resolve_output_path
from agentsync.sync.renderers import render_item
from agentsync.sync.targets import (
    OutputDefinition,
    ResolvedTarget,
    TargetRegistry,
    resolve_effective_targets,
)
from agentsync.sync.writers import Writer, default_writer

logger = logging.getLogger(__name__)


class OutputCandidate(BaseModel):
    """One intended output of one item for one target (never persisted).

    Attributes:
        target_id: Canonical target id.
        item: Effective source item.
        render_kind: Kind rendered after fallback.
        output_path: Absolute default output path.
        compare_key: Normalised, case-folded ``output_path``.
        output_group: Sharing key; candidates of one group may resolve to
            a single physical file.
        content: Rendered content, ``None`` when a converter is attached
            or the candidate is satisfied.
        converter: Custom converter replacing default rendering.
        conversion: The converter's decision, with absolute output paths.
        writer: Writer used for the output.
        context: Context handed to the writer or converter.
        satisfied: Not written.  Set when the source file already is the
            output file, or when another candidate of the same output
            group covers it.
    """

    target_id: str
    item: SourceItem
    render_kind: ItemKind
    output_path: str
    compare_key: str
    output_group: str | None = None
    content: Any = None
    converter: Converter | None = None
    conversion: ConvertDecision | None = None
    writer: Writer
    context: OutputContext
    satisfied: bool = False

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def source_id(self) -> str:
        return self.item.identity

    def output_paths(self) -> list[str]:
        """Every concrete path this candidate would write.

        A converted candidate claims the paths its converter returned
        (none for skip, satisfy or error decisions); any other candidate
        claims its default ``output_path``.
        """
        if self.conversion is None:
            return [self.output_path]
        return [output.path for output in self.conversion.outputs]

    @property
    def is_shared(self) -> bool:
        return self.item.source_type == SourceType.SHARED

    def describe(self) -> str:
        """``<kind> '<name>' for target '<id>'`` used in messages."""
        return f"{self.item.kind.value} '{self.item.name}' for target '{self.target_id}'"


class BuildFailure(BaseModel):
    """A candidate that could not be built (unresolvable path or failing converter)."""

    target_id: str
    item: SourceItem
    message: str

    model_config = {"frozen": True}


class CandidateBatch(BaseModel):
    candidates: list[OutputCandidate] = []
    failures: list[BuildFailure] = []

    model_config = {"frozen": True}


class CandidateBuilder:
    """Turn effective items into ``OutputCandidate`` values.

    Args:
        repo_root: Absolute repository root.
        agents_dir: Absolute agents source directory.
        registry: Target registry for this run.
        home: Home directory for ``{home}`` (defaults to ``Path.home()``).
        dry_run: Propagated into every ``OutputContext``.
    """

    def __init__(
        self,
        repo_root: Path,
        agents_dir: Path,
        registry: TargetRegistry,
        home: Path | None = None,
        dry_run: bool = False,
    ) -> None:
        self.repo_root = repo_root
        self.agents_dir = agents_dir
        self.registry = registry
        self.home = home or Path.home()
        self.dry_run = dry_run

    def placeholder_values(
        self,
        item: SourceItem,
        target: ResolvedTarget,
        output: OutputDefinition,
    ) -> dict[str, str | None]:
        return {
            "repo": str(self.repo_root),
            "home": str(self.home),
            "agents_dir": str(self.agents_dir),
            "target": target.id,
            "target_name": target.display_name,
            "item": item.name,
            "item_kind": item.kind.value,
            "command_location": output.location,
            "output_dir": item.output_dir,
        }

    def build(
        self, item: SourceItem, target: ResolvedTarget
    ) -> OutputCandidate | None:
        """Build the candidate of *item* for *target*.

        Returns:
            The candidate, or ``None`` when the target supports neither
            the item kind nor a fallback for it.

        Raises:
            PathResolutionError: If the output path cannot be resolved.
            ConverterError: If the converter fails or returns an
                unsupported result.
            TemplatingError: If ``<agents>`` blocks are invalid.
        """
        resolved = target.output_for(item.kind)
        if resolved is None:
            logger.debug(
                "Target '%s' does not support %s; skipping '%s'",
                target.id,
                item.kind.category,
                item.name,
            )
            return None
        render_kind, output = resolved

        output_path = render_template(
            output.path,
            self.placeholder_values(item, target, output),
            self.repo_root,
        )
        context = OutputContext(
            repo_root=str(self.repo_root),
            home=str(self.home),
            agents_dir=str(self.agents_dir),
            target_id=target.id,
            target_name=target.display_name,
            render_kind=render_kind,
            default_output_path=str(output_path),
            dry_run=self.dry_run,
        )

        satisfied = compare_key(output_path) == compare_key(item.source_path)
        content = None
        conversion = None
        if satisfied:
            logger.debug(
                "%s '%s' is its own output for target '%s'",
                item.kind.value,
                item.name,
                target.id,
            )
        elif output.converter is not None:
            conversion = self.convert(output.converter, item, context)
        else:
            valid_agents = self.registry.valid_agents()

            def template(text: str, source_path: str) -> str:
                return templating.render(
                    text,
                    target.id,
                    valid_agents,
                    source_path,
                    target_aliases=target.aliases,
                )

            content = render_item(
                item,
                render_kind,
                output.format,
                template(item.raw_content, item.source_path),
                template,
            )

        group = None
        if output.group:
            group = f"{render_kind.value}:{output.group.casefold()}"

        return OutputCandidate(
            target_id=target.id,
            item=item,
            render_kind=render_kind,
            output_path=str(output_path),
            compare_key=compare_key(output_path),
            output_group=group,
            content=content,
            converter=output.converter,
            conversion=conversion,
            writer=output.writer or default_writer(render_kind),
            context=context,
            satisfied=satisfied,
        )

    def convert(
        self, converter: Converter, item: SourceItem, context: OutputContext
    ) -> ConvertDecision:
        """Run *converter* and anchor its output paths at the repo root."""
        decision = converter.convert(item, context)
        if decision.kind != DecisionKind.OUTPUTS:
            return decision
        outputs = tuple(
            ConvertedOutput(
                path=str(resolve_output_path(output.path, self.repo_root)),
                content=output.content,
            )
            for output in decision.outputs
        )
        return decision.model_copy(update={"outputs": outputs})

    def build_all(
        self,
        items: Iterable[SourceItem],
        only: Sequence[str] = (),
        skip: Sequence[str] = (),
    ) -> CandidateBatch:
        """Build candidates for every item and its effective targets.

        ``PathResolutionError`` and ``ConverterError`` are recorded as
        per-target failures; ``TemplatingError`` propagates so the caller
        can abort the category.
        """
        candidates: list[OutputCandidate] = []
        failures: list[BuildFailure] = []
        for item in items:
            target_ids = resolve_effective_targets(
                item.declared_targets, only, skip, self.registry
            )
            for target_id in target_ids:
                target = self.registry.require(target_id)
                try:
                    candidate = self.build(item, target)
                except (PathResolutionError, ConverterError) as exc:
                    failures.append(
                        BuildFailure(
                            target_id=target.id,
                            item=item,
                            message=(
                                f"{item.kind.value} '{item.name}' for target "
                                f"'{target.id}': {exc}"
                            ),
                        )
                    )
                    continue
                if candidate is not None:
                    candidates.append(candidate)
        return CandidateBatch(candidates=candidates, failures=failures)
