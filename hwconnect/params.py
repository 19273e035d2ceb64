"""Field-shape validation for raw method payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .errors import ValidationError

_TYPE_CHECKS = {
    "string": lambda value: isinstance(value, str),
    "number": lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
    "boolean": lambda value: isinstance(value, bool),
    "array": lambda value: isinstance(value, (list, tuple)),
    "object": lambda value: isinstance(value, Mapping),
}


@dataclass(frozen=True)
class Param:
    """One entry of a per-method payload schema."""

    name: str
    type: str | None = None
    required: bool = False

    def __post_init__(self) -> None:
        if self.type is not None and self.type not in _TYPE_CHECKS:
            raise ValueError(f"Unknown parameter type {self.type!r} for {self.name}")


def validate_params(values: Mapping[str, Any], schema: Sequence[Param]) -> None:
    """Check ``values`` against ``schema``.

    Missing optional fields and fields explicitly set to ``None`` are accepted.
    The first offending field raises :class:`ValidationError` naming it.
    """

    if not isinstance(values, Mapping):
        raise ValidationError("Parameters must be an object")
    for param in schema:
        value = values.get(param.name)
        if value is None:
            if param.required:
                raise ValidationError(f'Parameter "{param.name}" is missing.', field=param.name)
            continue
        if param.type is None:
            continue
        if not _TYPE_CHECKS[param.type](value):
            raise ValidationError(
                f'Parameter "{param.name}" has invalid type. "{param.type}" expected.',
                field=param.name,
            )
        if param.required and param.type in {"string", "array"} and len(value) == 0:
            raise ValidationError(f'Parameter "{param.name}" is empty.', field=param.name)


def normalize_bundle(payload: Mapping[str, Any]) -> tuple[list[Mapping[str, Any]], dict[str, Any]]:
    """Split ``payload`` into its raw bundle items and top-level options.

    A payload without a ``bundle`` key is treated as a bundle of one item.
    """

    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be an object")
    if "bundle" not in payload:
        options = {key: payload[key] for key in ("useEventListener",) if key in payload}
        return [payload], options

    validate_params(payload, [Param("bundle", "array", required=True)])
    items = list(payload["bundle"])
    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise ValidationError(f"Bundle item #{index} must be an object", field="bundle")
    options = {key: value for key, value in payload.items() if key != "bundle"}
    return items, options
