"""Transport encoding for the worker-process pipe.

Mappings are replaced by ``Pairs`` (an ordered tuple of key/value pairs) at
every depth; all other values, dataclasses included, keep their shape.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields, is_dataclass, replace
from typing import Any

from otplus.domain import CalculationSnapshot, DateRange, TimeEntry, UserAnalysisResult


@dataclass(frozen=True, slots=True)
class Pairs:
    items: tuple[tuple[Any, Any], ...] = ()


def _rebuild_dataclass(value: Any, convert) -> Any:
    changes: dict[str, Any] = {}
    for item in fields(value):
        current = getattr(value, item.name)
        converted = convert(current)
        if converted is not current:
            changes[item.name] = converted
    if not changes:
        return value
    return replace(value, **changes)


def _rebuild_tuple(value: tuple, convert) -> tuple:
    converted = tuple(convert(item) for item in value)
    if all(new is old for new, old in zip(converted, value)):
        return value
    return converted


def to_wire(value: Any) -> Any:
    if isinstance(value, Mapping):
        return Pairs(tuple((to_wire(key), to_wire(item)) for key, item in value.items()))
    if is_dataclass(value) and not isinstance(value, type):
        return _rebuild_dataclass(value, to_wire)
    if isinstance(value, tuple):
        return _rebuild_tuple(value, to_wire)
    if isinstance(value, list):
        return [to_wire(item) for item in value]
    return value


def from_wire(value: Any) -> Any:
    if isinstance(value, Pairs):
        return {from_wire(key): from_wire(item) for key, item in value.items}
    if is_dataclass(value) and not isinstance(value, type):
        return _rebuild_dataclass(value, from_wire)
    if isinstance(value, tuple):
        return _rebuild_tuple(value, from_wire)
    if isinstance(value, list):
        return [from_wire(item) for item in value]
    return value


def encode_request(
    entries: Iterable[TimeEntry | None],
    snapshot: CalculationSnapshot,
    date_range: DateRange | None,
) -> dict[str, Any]:
    return {
        "entries": to_wire(list(entries)),
        "snapshot": to_wire(snapshot),
        "date_range": date_range,
    }


def decode_request(payload: dict[str, Any]) -> tuple[list[TimeEntry | None], CalculationSnapshot, DateRange | None]:
    return (
        from_wire(payload["entries"]),
        from_wire(payload["snapshot"]),
        payload.get("date_range"),
    )


def encode_results(results: list[UserAnalysisResult]) -> list[Any]:
    return [to_wire(result) for result in results]


def decode_results(payload: list[Any]) -> list[UserAnalysisResult]:
    return [from_wire(result) for result in payload]
