"""Fill-missing merge used by backfill and post-call enrichment passes.

Primary research results always replace prior state outright; only the
enrichment passes go through here, and they may add to a record but never
overwrite or drop what is already populated.
"""

from __future__ import annotations

import json
from typing import Any


def is_empty_value(value: Any) -> bool:
    """None, blank string, empty list or empty dict."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _item_key(item: Any) -> str:
    if isinstance(item, str):
        return "s:" + item.strip().lower()
    return "j:" + json.dumps(item, sort_keys=True, default=str)


def _dedupe(items: list[Any]) -> list[Any]:
    seen: set[str] = set()
    out = []
    for item in items:
        if is_empty_value(item):
            continue
        key = _item_key(item)
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def _merge_value(existing: Any, patch: Any) -> Any:
    if is_empty_value(patch):
        return existing
    if is_empty_value(existing):
        return _dedupe(list(patch)) if isinstance(patch, list) else patch

    if isinstance(existing, list) and isinstance(patch, list):
        seen = {_item_key(item) for item in existing}
        merged = list(existing)
        for item in patch:
            if is_empty_value(item):
                continue
            key = _item_key(item)
            if key not in seen:
                seen.add(key)
                merged.append(item)
        return merged

    if isinstance(existing, dict) and isinstance(patch, dict):
        return merge_fill_missing(existing, patch)

    return existing


def merge_fill_missing(existing: dict[str, Any] | None, patch: dict[str, Any] | None) -> dict[str, Any]:
    """Combine ``patch`` into ``existing`` without overwriting populated values.

    Scalars are taken from the patch only where the existing value is empty.
    Lists keep every existing element and append unseen patch elements
    (strings compared trimmed and case-insensitively, objects by JSON equality).
    Dicts recurse with the same rules. Neither input is mutated.
    """
    merged = dict(existing or {})
    for key, value in (patch or {}).items():
        merged[key] = _merge_value(merged.get(key), value)
    return merged


def fill_missing_patch(existing: dict[str, Any] | None, patch: dict[str, Any] | None) -> dict[str, Any]:
    """Only the top-level fields that ``merge_fill_missing`` would change."""
    base = existing or {}
    merged = merge_fill_missing(base, patch)
    return {key: value for key, value in merged.items() if base.get(key) != value}
