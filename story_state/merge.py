# story_state/merge.py
"""Deterministic merging of chapter deltas into cumulative story state.

Values are classified into four kinds (absent, scalar, list, record) and
``deep_merge`` is defined for every pair of kinds, so merging never raises.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any

import structlog
from config import settings

from .models import StateDict

logger = structlog.get_logger(__name__)


class ValueKind(Enum):
    ABSENT = "absent"
    SCALAR = "scalar"
    LIST = "list"
    RECORD = "record"


def value_kind(value: Any) -> ValueKind:
    """Return the merge kind of a JSON value."""
    if value is None:
        return ValueKind.ABSENT
    if isinstance(value, list | tuple):
        return ValueKind.LIST
    if isinstance(value, dict):
        return ValueKind.RECORD
    return ValueKind.SCALAR


def pick_key_field(record: Any, key_fields: Sequence[str]) -> str | None:
    """Return the first key-like field present on ``record``."""
    if not isinstance(record, dict):
        return None
    for field in key_fields:
        if field in record:
            return field
    return None


def _signature(item: Any) -> str:
    return json.dumps(item, sort_keys=True, ensure_ascii=False, default=str)


def merge_lists_by_key(
    base: Sequence[Any],
    delta: Sequence[Any],
    key_fields: Sequence[str] | None = None,
) -> list[Any]:
    """Merge two lists of records, matching records on a key-like field.

    Records sharing a key value are merged recursively; unmatched records are
    appended in delta order. Items without the key field, and every item when
    no key field is usable, are appended unless an identical item is already
    present.
    """
    fields = list(key_fields) if key_fields is not None else settings.MERGE_KEY_FIELDS
    out = [copy.deepcopy(item) for item in base]
    if not delta:
        return out

    key = pick_key_field(delta[0], fields) or pick_key_field(
        out[0] if out else None, fields
    )
    if key is None:
        seen = {_signature(item) for item in out}
        for item in delta:
            sig = _signature(item)
            if sig not in seen:
                out.append(copy.deepcopy(item))
                seen.add(sig)
        return out

    # Key values compare by signature so 1 and "1" stay distinct records.
    positions: dict[str, int] = {}
    seen: set[str] = set()
    for i, item in enumerate(out):
        if isinstance(item, dict) and key in item:
            positions.setdefault(_signature(item[key]), i)
        else:
            seen.add(_signature(item))

    for item in delta:
        if not isinstance(item, dict) or key not in item:
            sig = _signature(item)
            if sig not in seen:
                out.append(copy.deepcopy(item))
                seen.add(sig)
            continue
        item_key = _signature(item[key])
        if item_key in positions:
            i = positions[item_key]
            out[i] = deep_merge(out[i], item, fields)
        else:
            positions[item_key] = len(out)
            out.append(copy.deepcopy(item))
    return out


def deep_merge(
    base: Any, delta: Any, key_fields: Sequence[str] | None = None
) -> Any:
    """Merge ``delta`` over ``base`` without mutating either."""
    base_kind = value_kind(base)
    delta_kind = value_kind(delta)

    if base_kind is ValueKind.LIST and delta_kind is ValueKind.LIST:
        return merge_lists_by_key(base, delta, key_fields)
    # A list never gets replaced by, or coerced into, a non-list value.
    if base_kind is ValueKind.LIST:
        return copy.deepcopy(list(base))
    if delta_kind is ValueKind.LIST:
        return copy.deepcopy(list(delta))

    if base_kind is ValueKind.RECORD and delta_kind is ValueKind.RECORD:
        out = copy.deepcopy(base)
        for key, value in delta.items():
            if key in base:
                out[key] = deep_merge(base[key], value, key_fields)
            else:
                out[key] = copy.deepcopy(value)
        return out

    if delta_kind is ValueKind.ABSENT:
        return copy.deepcopy(base)
    return copy.deepcopy(delta)


def merge_chapter_stats(
    base: StateDict | None,
    delta: StateDict | None,
    key_fields: Sequence[str] | None = None,
) -> StateDict:
    """Fold one chapter delta into a cumulative state.

    ``merge_chapter_stats(x, None) == x`` and ``merge_chapter_stats(None, x) == x``.
    A base or delta that is not a record is treated as absent.
    """
    safe_base: StateDict = base if isinstance(base, dict) else {}
    if not isinstance(delta, dict):
        if delta is not None:
            logger.debug(
                "Ignoring non-record chapter delta", delta_type=type(delta).__name__
            )
        return copy.deepcopy(safe_base)
    return deep_merge(safe_base, delta, key_fields)


def fold_chapter_deltas(
    base: StateDict | None,
    deltas: Iterable[StateDict | None],
    key_fields: Sequence[str] | None = None,
) -> StateDict:
    """Left-fold ``deltas`` over ``base`` in the given order."""
    state = copy.deepcopy(base) if isinstance(base, dict) else {}
    for delta in deltas:
        if delta:
            state = merge_chapter_stats(state, delta, key_fields)
    return state
