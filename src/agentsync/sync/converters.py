"""Converter contract.

A converter replaces default rendering for one (item, target) pair with
fully custom output.  It is called as ``convert(item, context)`` and may
return:

- ``None`` or ``{"skip": True}`` -- nothing to write (counted as skipped).
- ``{"satisfy": True}`` -- the source already satisfies the target in
  place (counted as skipped).
- ``{"error": "message"}`` -- the item failed (counted as failed).
- a string -- content for the candidate's default output path.
- ``{"path": ..., "content": ...}`` or a list of them -- one file per
  entry; relative paths resolve against the repository root.

``normalize_convert_result()`` maps those shapes onto a ``ConvertDecision``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel

from agentsync.errors import ConverterError
from agentsync.references import load_reference
from agentsync.sync.models import OutputContext, SourceItem

logger = logging.getLogger(__name__)


class DecisionKind(str, Enum):
    SKIP = "skip"
    SATISFY = "satisfy"
    ERROR = "error"
    OUTPUTS = "outputs"


class ConvertedOutput(BaseModel):
    """One ``{path, content}`` pair produced by a converter."""

    path: str
    content: str

    model_config = {"frozen": True}


class ConvertDecision(BaseModel):
    """Normalised converter result."""

    kind: DecisionKind
    outputs: tuple[ConvertedOutput, ...] = ()
    error: str | None = None

    model_config = {"frozen": True}


def _output_from_mapping(entry: Any) -> ConvertedOutput:
    if (
        not isinstance(entry, Mapping)
        or not isinstance(entry.get("path"), str)
        or not entry.get("path")
        or not isinstance(entry.get("content"), str)
    ):
        raise ConverterError(
            "Converter returned an invalid output entry; expected "
            "{'path': str, 'content': str}."
        )
    return ConvertedOutput(path=entry["path"], content=entry["content"])


def normalize_convert_result(
    result: Any, default_path: str | None
) -> ConvertDecision:
    """Map a raw converter return value onto a ``ConvertDecision``.

    Args:
        result: Whatever the converter returned.
        default_path: Output path used for bare-string results.

    Raises:
        ConverterError: If the result shape is not supported.
    """
    if result is None:
        return ConvertDecision(kind=DecisionKind.SKIP)

    if isinstance(result, str):
        if not default_path:
            raise ConverterError(
                "Converter returned content but the target defines no "
                "default output path."
            )
        return ConvertDecision(
            kind=DecisionKind.OUTPUTS,
            outputs=(ConvertedOutput(path=default_path, content=result),),
        )

    if isinstance(result, (list, tuple)):
        outputs = tuple(_output_from_mapping(entry) for entry in result)
        if not outputs:
            return ConvertDecision(kind=DecisionKind.SKIP)
        return ConvertDecision(kind=DecisionKind.OUTPUTS, outputs=outputs)

    if isinstance(result, Mapping):
        if result.get("skip"):
            return ConvertDecision(kind=DecisionKind.SKIP)
        if result.get("satisfy"):
            return ConvertDecision(kind=DecisionKind.SATISFY)
        if "error" in result:
            error = result["error"]
            if not isinstance(error, str) or not error:
                raise ConverterError(
                    "Converter returned an error without a message."
                )
            return ConvertDecision(kind=DecisionKind.ERROR, error=error)
        if "path" in result or "content" in result:
            return ConvertDecision(
                kind=DecisionKind.OUTPUTS,
                outputs=(_output_from_mapping(result),),
            )

    raise ConverterError("Converter returned an unsupported result.")


# ---------------------------------------------------------------------------
# Converter implementations
# ---------------------------------------------------------------------------


class ConverterKind(str, Enum):
    CUSTOM = "custom"


class Converter:
    """Base class for converters."""

    kind: ConverterKind
    converter_id: str

    def convert(
        self, item: SourceItem, context: OutputContext
    ) -> ConvertDecision:
        raise NotImplementedError  # pragma: no cover


class CustomConverter(Converter):
    """Delegate to a user callback ``func(item, context)``."""

    kind = ConverterKind.CUSTOM

    def __init__(self, func: Callable[..., Any], converter_id: str) -> None:
        self.func = func
        self.converter_id = converter_id

    def convert(
        self, item: SourceItem, context: OutputContext
    ) -> ConvertDecision:
        try:
            result = self.func(item, context)
        except ConverterError:
            raise
        except Exception as exc:
            raise ConverterError(
                f"Converter {self.converter_id} failed for "
                f"{item.kind.value} '{item.name}': {exc}"
            ) from exc
        return normalize_convert_result(result, context.default_output_path)


def create_converter(ref: str | None) -> Converter | None:
    """Create a converter from a ``module:function`` config reference."""
    if ref is None:
        return None
    return CustomConverter(load_reference(ref), converter_id=ref)
