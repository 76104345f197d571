"""Materialise winning candidates onto disk.

For each candidate the ``Materializer`` either writes every
``{path, content}`` output its converter already returned (converters run
while candidates are built), or hands the rendered content to the
candidate's writer.  Every path present after the call is checksummed so
the caller can upsert a manifest record.  Write failures are caught per
candidate and reported on the result.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel

from agentsync.errors import WriteError
from agentsync.file_handler import checksum_path
from agentsync.sync.candidates import OutputCandidate
from agentsync.sync.converters import ConvertDecision, DecisionKind
from agentsync.sync.models import OutputStatus
from agentsync.sync.writers import CustomWriter, FileWriter, Writer, WriteOutcome

logger = logging.getLogger(__name__)


class MaterializedOutput(BaseModel):
    """One path written (or found identical) for a candidate."""

    output_path: str
    status: OutputStatus
    checksum: str | None = None
    writer_id: str | None = None

    model_config = {"frozen": True}


class MaterializeResult(BaseModel):
    """Everything that happened for one candidate.

    Attributes:
        candidate: The materialised candidate.
        outputs: Paths produced, in order.
        skipped: ``1`` when a converter chose skip or satisfy.
        error: Failure message naming item and target, if any.
    """

    candidate: OutputCandidate
    outputs: list[MaterializedOutput] = []
    skipped: int = 0
    error: str | None = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def failed(self) -> bool:
        return self.error is not None


class Materializer:
    """Write candidates through their converter or writer.

    Args:
        repo_root: Repository root of the run.
        dry_run: Compute statuses without writing.
    """

    def __init__(self, repo_root: Path, dry_run: bool = False) -> None:
        self.repo_root = repo_root
        self.dry_run = dry_run

    def _record(
        self, path: Path, outcome: WriteOutcome, writer: Writer
    ) -> MaterializedOutput:
        checksum = outcome.checksum
        if checksum is None and not self.dry_run:
            checksum = checksum_path(path)
        return MaterializedOutput(
            output_path=str(path),
            status=outcome.status,
            checksum=checksum,
            writer_id=writer.writer_id,
        )

    def materialize(self, candidate: OutputCandidate) -> MaterializeResult:
        """Materialise *candidate*; never raises for write errors."""
        outputs: list[MaterializedOutput] = []
        try:
            if candidate.conversion is not None:
                return self._write_conversion(
                    candidate, candidate.conversion, outputs
                )

            path = Path(candidate.output_path)
            outcome = candidate.writer.write(
                path, candidate.content, candidate.item, candidate.context
            )
            outputs.append(self._record(path, outcome, candidate.writer))
        except (WriteError, OSError) as exc:
            logger.error("%s: %s", candidate.describe(), exc)
            return MaterializeResult(
                candidate=candidate,
                outputs=outputs,
                error=f"{candidate.describe()}: {exc}",
            )
        return MaterializeResult(candidate=candidate, outputs=outputs)

    def _write_conversion(
        self,
        candidate: OutputCandidate,
        decision: ConvertDecision,
        outputs: list[MaterializedOutput],
    ) -> MaterializeResult:
        if decision.kind in (DecisionKind.SKIP, DecisionKind.SATISFY):
            logger.debug(
                "Converter %s: %s", decision.kind.value, candidate.describe()
            )
            return MaterializeResult(candidate=candidate, skipped=1)

        if decision.kind == DecisionKind.ERROR:
            message = f"{candidate.describe()}: {decision.error}"
            logger.error("%s", message)
            return MaterializeResult(candidate=candidate, error=message)

        # Converter outputs are files unless a custom writer is configured.
        writer = (
            candidate.writer
            if isinstance(candidate.writer, CustomWriter)
            else FileWriter()
        )
        for converted in decision.outputs:
            path = Path(converted.path)
            outcome = writer.write(
                path, converted.content, candidate.item, candidate.context
            )
            outputs.append(self._record(path, outcome, writer))
        return MaterializeResult(candidate=candidate, outputs=list(outputs))
