"""Writers: the last step that puts one output on disk.

Writers form a small closed set dispatched by ``WriterKind``:

- ``FileWriter``: single-file outputs, byte-compared before writing.
- ``DirectoryWriter``: directory-shaped outputs (skill bundles), compared
  file by file; only changed files are rewritten.
- ``CustomWriter``: wraps an opaque ``module:function`` callback from
  configuration.

Every writer classifies its result as ``created`` (nothing existed),
``updated`` (existed and differed) or ``skipped`` (existed and identical),
and honours ``OutputContext.dry_run`` by computing the classification
without touching the filesystem.

The ``create_writer()`` factory maps config strings to writer instances.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Union

from pydantic import BaseModel

from agentsync.errors import WriteError
from agentsync.file_handler import (
    checksum_bytes,
    checksum_path,
    write_bytes_atomic,
)
from agentsync.references import load_reference
from agentsync.sync.models import (
    ItemKind,
    OutputContext,
    OutputStatus,
    SourceItem,
)

logger = logging.getLogger(__name__)

OutputContent = Union[str, bytes, Mapping[str, bytes]]

_WRITE_STATUSES = (
    OutputStatus.CREATED,
    OutputStatus.UPDATED,
    OutputStatus.SKIPPED,
)


class WriteOutcome(BaseModel):
    """Result of one writer call.

    Attributes:
        status: ``created``, ``updated`` or ``skipped``.
        checksum: SHA-256 of what is on disk after the call, when known.
    """

    status: OutputStatus
    checksum: str | None = None

    model_config = {"frozen": True}


class WriterKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    CUSTOM = "custom"


def _as_bytes(content: OutputContent, output_path: Path) -> bytes:
    if isinstance(content, bytes):
        return content
    if isinstance(content, str):
        return content.encode("utf-8")
    raise WriteError(
        f"Failed to write {output_path}: expected file content, got a "
        f"directory bundle"
    )


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class Writer:
    """Base class for writers.

    Subclasses implement ``write(output_path, content, item, context)``.
    """

    kind: WriterKind
    writer_id: str

    def write(
        self,
        output_path: Path,
        content: OutputContent,
        item: SourceItem,
        context: OutputContext,
    ) -> WriteOutcome:
        raise NotImplementedError  # pragma: no cover


# ---------------------------------------------------------------------------
# Built-in writers
# ---------------------------------------------------------------------------


class FileWriter(Writer):
    """Write a single file when its bytes differ from what is on disk."""

    kind = WriterKind.FILE
    writer_id = "file"

    def write(
        self,
        output_path: Path,
        content: OutputContent,
        item: SourceItem,
        context: OutputContext,
    ) -> WriteOutcome:
        data = _as_bytes(content, output_path)
        checksum = checksum_bytes(data)

        if output_path.is_dir():
            raise WriteError(
                f"Failed to write {output_path}: path is a directory"
            )

        existing = output_path.read_bytes() if output_path.is_file() else None
        if existing == data:
            logger.debug("Unchanged: %s", output_path)
            return WriteOutcome(status=OutputStatus.SKIPPED, checksum=checksum)

        status = (
            OutputStatus.CREATED if existing is None else OutputStatus.UPDATED
        )
        if not context.dry_run:
            try:
                write_bytes_atomic(output_path, data)
            except OSError as exc:
                raise WriteError(
                    f"Failed to write {output_path}: {exc}"
                ) from exc
        logger.debug("%s %s", status.value.capitalize(), output_path)
        return WriteOutcome(status=status, checksum=checksum)


class DirectoryWriter(Writer):
    """Write a bundle of files below one output directory.

    Files already present in the directory but absent from the bundle are
    left alone.
    """

    kind = WriterKind.DIRECTORY
    writer_id = "directory"

    def write(
        self,
        output_path: Path,
        content: OutputContent,
        item: SourceItem,
        context: OutputContext,
    ) -> WriteOutcome:
        if not isinstance(content, Mapping):
            # A single file rendered for a directory output lands in SKILL.md.
            content = {"SKILL.md": _as_bytes(content, output_path)}

        if output_path.is_file():
            raise WriteError(
                f"Failed to write {output_path}: path is a file"
            )

        existed = output_path.is_dir()
        changed = False
        for rel, data in sorted(content.items()):
            rel_path = PurePosixPath(rel)
            if rel_path.is_absolute() or ".." in rel_path.parts:
                raise WriteError(
                    f"Failed to write {output_path}: bundle path '{rel}' "
                    f"escapes the output directory"
                )
            dest = output_path.joinpath(*rel_path.parts)
            payload = _as_bytes(data, dest)
            if dest.is_file() and dest.read_bytes() == payload:
                continue
            changed = True
            if not context.dry_run:
                try:
                    write_bytes_atomic(dest, payload)
                except OSError as exc:
                    raise WriteError(
                        f"Failed to write {dest}: {exc}"
                    ) from exc

        if not existed:
            status = OutputStatus.CREATED
        elif changed:
            status = OutputStatus.UPDATED
        else:
            status = OutputStatus.SKIPPED

        checksum = None
        if not (context.dry_run and changed):
            checksum = checksum_path(output_path)
        logger.debug("%s %s", status.value.capitalize(), output_path)
        return WriteOutcome(status=status, checksum=checksum)


# ---------------------------------------------------------------------------
# Custom writer
# ---------------------------------------------------------------------------


def normalize_write_result(result: Any, output_path: Path) -> WriteOutcome:
    """Coerce a custom writer's return value into a ``WriteOutcome``.

    Accepts a ``WriteOutcome``, a status string, or a mapping with a
    ``status`` key and an optional ``checksum``/``contentHash``.
    """
    if isinstance(result, WriteOutcome):
        return result
    if isinstance(result, (str, OutputStatus)):
        status = _coerce_status(result, output_path)
        return WriteOutcome(status=status)
    if isinstance(result, Mapping) and "status" in result:
        status = _coerce_status(result["status"], output_path)
        checksum = result.get("checksum") or result.get("contentHash")
        return WriteOutcome(status=status, checksum=checksum)
    raise WriteError(
        f"Failed to write {output_path}: writer returned an unsupported result."
    )


def _coerce_status(value: Any, output_path: Path) -> OutputStatus:
    try:
        status = OutputStatus(str(getattr(value, "value", value)).lower())
    except ValueError:
        status = None
    if status not in _WRITE_STATUSES:
        raise WriteError(
            f"Failed to write {output_path}: writer returned unknown "
            f"status '{value}'."
        )
    return status


class CustomWriter(Writer):
    """Delegate to a user callback ``func(output_path, content, item, context)``."""

    kind = WriterKind.CUSTOM

    def __init__(self, func: Callable[..., Any], writer_id: str) -> None:
        self.func = func
        self.writer_id = writer_id

    def write(
        self,
        output_path: Path,
        content: OutputContent,
        item: SourceItem,
        context: OutputContext,
    ) -> WriteOutcome:
        try:
            result = self.func(output_path, content, item, context)
        except WriteError:
            raise
        except Exception as exc:
            raise WriteError(f"Failed to write {output_path}: {exc}") from exc
        return normalize_write_result(result, output_path)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_writer(ref: str | None) -> Writer | None:
    """Create a writer from a config value.

    Args:
        ref: ``"file"``, ``"directory"``, a ``module:function`` reference,
            or ``None``.

    Returns:
        A writer instance, or ``None`` when *ref* is ``None``.

    Raises:
        ConfigError: If a reference cannot be imported.
    """
    if ref is None:
        return None
    if ref == WriterKind.FILE.value:
        return FileWriter()
    if ref == WriterKind.DIRECTORY.value:
        return DirectoryWriter()
    return CustomWriter(load_reference(ref), writer_id=ref)


def default_writer(render_kind: ItemKind) -> Writer:
    """Built-in writer for *render_kind*: skill bundles are directories."""
    if render_kind == ItemKind.SKILL:
        return DirectoryWriter()
    return FileWriter()
