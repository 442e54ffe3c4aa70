"""Tests for the key-set full join."""

from __future__ import annotations

from pgdiscovery.mapops import full_join


class TestFullJoin:
    def test_mixed_keys(self):
        left = {"a": 1, "b": 2}
        right = {"b": "x", "c": "y"}
        result = set(full_join(left, right))
        assert result == {("a", None), ("b", "b"), (None, "c")}

    def test_every_key_appears_once(self):
        left = {k: None for k in "abcdef"}
        right = {k: None for k in "defghi"}
        result = full_join(left, right)
        seen = [p.left if p.left is not None else p.right for p in result]
        assert sorted(seen) == sorted(set(left) | set(right))
        assert len(seen) == len(set(seen))

    def test_both_empty(self):
        assert full_join({}, {}) == []

    def test_left_only(self):
        assert set(full_join({"a": 1}, {})) == {("a", None)}

    def test_right_only(self):
        assert set(full_join({}, {"z": 1})) == {(None, "z")}

    def test_inputs_untouched(self):
        left = {"a": 1}
        right = {"b": 2}
        full_join(left, right)
        assert left == {"a": 1}
        assert right == {"b": 2}

    def test_pair_fields(self):
        (pair,) = full_join({"k": 1}, {"k": 2})
        assert pair.left == "k"
        assert pair.right == "k"
