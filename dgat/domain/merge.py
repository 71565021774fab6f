from __future__ import annotations

from copy import deepcopy
from typing import Any, Mapping


# Reserved top-level patch key carrying sync metadata such as base_version.
PATCH_META_KEY = "_meta"


def deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new document with `patch` merged over `base`.

    Objects merge recursively; arrays and scalars (including null) at a
    matching path replace the base value whole. Inputs are never mutated.
    """
    merged: dict[str, Any] = deepcopy(dict(base))
    for key, value in patch.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


def split_patch(patch: Mapping[str, Any]) -> tuple[dict[str, Any], int | None]:
    """Separate the changes of a sync patch from its optional base_version."""
    changes = {key: value for key, value in patch.items() if key != PATCH_META_KEY}
    meta = patch.get(PATCH_META_KEY)
    if not isinstance(meta, Mapping):
        return changes, None
    base_version = meta.get("base_version")
    # bool is an int subclass; a flag is never a version.
    if isinstance(base_version, bool) or not isinstance(base_version, int):
        return changes, None
    return changes, base_version
