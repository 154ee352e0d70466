"""
Sync Kernel — Diff Application

Pure function: (collection, diff) → collection
No side effects. No IO. Deterministic.

Given the same sequence of diffs, produces the same collection every time,
regardless of how the sequence was split into delivery batches.

Index-based diffs are checked against the collection's length at the time
they are applied. A bad index is a protocol violation: the diff stream and
the local collection no longer agree, so DiffProtocolError is raised and the
owning subscription is expected to fail rather than silently drift.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Sequence
from typing import Any, TypeVar

from sync_engine.kernel.types import (
    DIFF_KINDS,
    MULTI_VALUE_DIFF_KINDS,
    SINGLE_VALUE_DIFF_KINDS,
    VALUELESS_DIFF_KINDS,
    Diff,
)

T = TypeVar("T")
R = TypeVar("R")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DiffProtocolError(Exception):
    """A diff cannot be applied: unknown kind, malformed payload or bad index."""

    def __init__(self, message: str, diff: Any = None) -> None:
        super().__init__(message)
        self.diff = diff


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def apply_diff(collection: Sequence[T], diff: Diff[T]) -> list[T]:
    """
    Apply one diff to a collection.
    Returns a new list. The input collection is never modified.
    """
    handler = _HANDLERS.get(diff.kind)
    if handler is None:
        raise DiffProtocolError(f"UNKNOWN_DIFF_KIND: {diff.kind}", diff)
    return handler(list(collection), diff)


def apply_all(collection: Sequence[T], diffs: Iterable[Diff[T]]) -> list[T]:
    """
    Left fold of apply_diff over diffs, in delivery order.
    apply_all(c, [d1, d2]) == apply_diff(apply_diff(c, d1), d2)
    """
    result = list(collection)
    for diff in diffs:
        result = apply_diff(result, diff)
    return result


def map_diff(diff: Diff[T], f: Callable[[T], R]) -> Diff[R]:
    """
    Project a diff's values through f without changing its structure.

    Valueless diffs (remove, truncate, clear, pops) pass through unchanged.
    """
    if diff.kind in VALUELESS_DIFF_KINDS:
        return diff  # type: ignore[return-value]
    if diff.kind in MULTI_VALUE_DIFF_KINDS:
        return Diff(kind=diff.kind, values=tuple(f(v) for v in diff.values or ()))
    if diff.kind in SINGLE_VALUE_DIFF_KINDS:
        return Diff(kind=diff.kind, index=diff.index, value=f(diff.value))  # type: ignore[arg-type]
    raise DiffProtocolError(f"UNKNOWN_DIFF_KIND: {diff.kind}", diff)


def map_diffs(diffs: Iterable[Diff[T]], f: Callable[[T], R]) -> list[Diff[R]]:
    return [map_diff(d, f) for d in diffs]


def initial_reset(values: Iterable[T]) -> list[Diff[T]]:
    """Wrap an initial snapshot as a synthetic reset so it flows through apply_all."""
    return [Diff(kind="reset", values=tuple(values))]


def new_values(diffs: Iterable[Diff[T]], key: Callable[[T], Hashable | None]) -> list[Hashable]:
    """
    Keys of values introduced by a diff batch, deduplicated in first-seen order.

    Values whose key is falsy (loading placeholders, filtered items) are skipped.
    """
    seen: set[Hashable] = set()
    result: list[Hashable] = []
    for diff in diffs:
        if diff.kind in MULTI_VALUE_DIFF_KINDS:
            candidates: Iterable[T] = diff.values or ()
        elif diff.kind in SINGLE_VALUE_DIFF_KINDS:
            candidates = (diff.value,)  # type: ignore[assignment]
        else:
            continue
        for value in candidates:
            k = key(value)
            if k and k not in seen:
                seen.add(k)
                result.append(k)
    return result


def parse_diff(raw: Any) -> Diff[Any]:
    """
    Convert a wire diff ({"kind": ..., payload}) into a Diff.
    Raises DiffProtocolError for unknown kinds or missing payload keys.
    """
    if not isinstance(raw, dict):
        raise DiffProtocolError("MALFORMED_DIFF: diff must be an object", raw)

    kind = raw.get("kind")
    if kind not in DIFF_KINDS:
        raise DiffProtocolError(f"UNKNOWN_DIFF_KIND: {kind}", raw)

    try:
        if kind in MULTI_VALUE_DIFF_KINDS:
            values = raw["values"]
            if not isinstance(values, list):
                raise DiffProtocolError(f"MALFORMED_DIFF: {kind} values must be a list", raw)
            return Diff(kind=kind, values=tuple(values))
        if kind in ("insert", "set"):
            return Diff(kind=kind, index=_int_field(raw, "index"), value=raw["value"])
        if kind in ("pushFront", "pushBack"):
            return Diff(kind=kind, value=raw["value"])
        if kind == "remove":
            return Diff(kind=kind, index=_int_field(raw, "index"))
        if kind == "truncate":
            return Diff(kind=kind, length=_int_field(raw, "length"))
    except KeyError as e:
        raise DiffProtocolError(f"MALFORMED_DIFF: {kind} requires {e.args[0]!r}", raw) from e

    return Diff(kind=kind)


def parse_diffs(raw: Any) -> list[Diff[Any]]:
    """A diff batch is a list of wire diffs, applied in order."""
    if not isinstance(raw, list):
        raise DiffProtocolError("MALFORMED_DIFF: diff batch must be a list", raw)
    return [parse_diff(d) for d in raw]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _int_field(raw: dict, name: str) -> int:
    value = raw[name]
    if not isinstance(value, int) or isinstance(value, bool):
        raise DiffProtocolError(f"MALFORMED_DIFF: {name!r} must be an integer", raw)
    return value


def _check_index(items: list, diff: Diff, upper: int) -> int:
    """Index must satisfy 0 <= index <= upper."""
    index = diff.index
    if index is None or index < 0 or index > upper:
        raise DiffProtocolError(
            f"INDEX_OUT_OF_BOUNDS: {diff.kind} index={index} length={len(items)}",
            diff,
        )
    return index


# ---------------------------------------------------------------------------
# Per-kind handlers
# ---------------------------------------------------------------------------


def _apply_append(items: list, diff: Diff) -> list:
    items.extend(diff.values or ())
    return items


def _apply_insert(items: list, diff: Diff) -> list:
    index = _check_index(items, diff, len(items))
    items.insert(index, diff.value)
    return items


def _apply_remove(items: list, diff: Diff) -> list:
    index = _check_index(items, diff, len(items) - 1)
    del items[index]
    return items


def _apply_set(items: list, diff: Diff) -> list:
    index = _check_index(items, diff, len(items) - 1)
    items[index] = diff.value
    return items


def _apply_push_front(items: list, diff: Diff) -> list:
    items.insert(0, diff.value)
    return items


def _apply_push_back(items: list, diff: Diff) -> list:
    items.append(diff.value)
    return items


def _apply_pop_front(items: list, diff: Diff) -> list:
    if not items:
        raise DiffProtocolError("INDEX_OUT_OF_BOUNDS: popFront on empty collection", diff)
    del items[0]
    return items


def _apply_pop_back(items: list, diff: Diff) -> list:
    if not items:
        raise DiffProtocolError("INDEX_OUT_OF_BOUNDS: popBack on empty collection", diff)
    items.pop()
    return items


def _apply_truncate(items: list, diff: Diff) -> list:
    length = diff.length
    if length is None or length < 0:
        raise DiffProtocolError(f"MALFORMED_DIFF: truncate length={length}", diff)
    # Truncating to a length >= current length is a no-op
    del items[length:]
    return items


def _apply_clear(items: list, diff: Diff) -> list:
    return []


def _apply_reset(items: list, diff: Diff) -> list:
    return list(diff.values or ())


_HANDLERS: dict[str, Callable[[list, Diff], list]] = {
    "append": _apply_append,
    "insert": _apply_insert,
    "remove": _apply_remove,
    "set": _apply_set,
    "pushFront": _apply_push_front,
    "pushBack": _apply_push_back,
    "popFront": _apply_pop_front,
    "popBack": _apply_pop_back,
    "truncate": _apply_truncate,
    "clear": _apply_clear,
    "reset": _apply_reset,
}
