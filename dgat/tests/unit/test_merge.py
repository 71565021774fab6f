from __future__ import annotations

from copy import deepcopy

from dgat.domain.merge import PATCH_META_KEY, deep_merge, split_patch


def test_deep_merge_recurses_into_objects() -> None:
    base = {"energy": {"solar": 10, "wind": 5}, "name": "site-a"}
    patch = {"energy": {"wind": 7, "hydro": 1}}

    assert deep_merge(base, patch) == {
        "energy": {"solar": 10, "wind": 7, "hydro": 1},
        "name": "site-a",
    }


def test_deep_merge_replaces_arrays_and_scalars() -> None:
    base = {"tags": ["a", "b"], "score": 1, "nested": {"items": [1, 2, 3]}}
    patch = {"tags": ["c"], "score": "high", "nested": {"items": []}}

    assert deep_merge(base, patch) == {"tags": ["c"], "score": "high", "nested": {"items": []}}


def test_deep_merge_object_replaces_scalar_and_scalar_replaces_object() -> None:
    assert deep_merge({"a": 1}, {"a": {"b": 2}}) == {"a": {"b": 2}}
    assert deep_merge({"a": {"b": 2}}, {"a": 3}) == {"a": 3}


def test_deep_merge_null_replaces_without_deleting_key() -> None:
    merged = deep_merge({"a": {"b": 1}, "c": 2}, {"a": None})

    assert merged == {"a": None, "c": 2}
    assert "a" in merged


def test_deep_merge_does_not_mutate_inputs() -> None:
    base = {"a": {"b": [1, 2]}}
    patch = {"a": {"c": {"d": 1}}}
    base_before, patch_before = deepcopy(base), deepcopy(patch)

    merged = deep_merge(base, patch)
    merged["a"]["b"].append(3)
    merged["a"]["c"]["d"] = 99

    assert base == base_before
    assert patch == patch_before


def test_sequential_patches_apply_in_order() -> None:
    data: dict = {}
    for patch in ({"x": 1}, {"x": 2, "y": 2}, {"y": 3}):
        data = deep_merge(data, patch)

    assert data == {"x": 2, "y": 3}


def test_split_patch_extracts_base_version() -> None:
    changes, base_version = split_patch({"x": 1, PATCH_META_KEY: {"base_version": 4}})

    assert changes == {"x": 1}
    assert base_version == 4


def test_split_patch_without_meta() -> None:
    assert split_patch({"x": 1}) == ({"x": 1}, None)


def test_split_patch_ignores_malformed_versions() -> None:
    for meta in ({"base_version": True}, {"base_version": "3"}, {"base_version": 1.5}, "v3", None):
        changes, base_version = split_patch({"x": 1, PATCH_META_KEY: meta})
        assert changes == {"x": 1}
        assert base_version is None
