"""Tests for field path parsing and nested tree access."""
import pytest

from formstate.errors import InvalidPathError
from formstate.paths import (
    MISSING,
    array_index,
    delete_in,
    flatten,
    format_path,
    get_in,
    has_path,
    is_under,
    iter_paths,
    normalize_path,
    normalize_paths,
    overlaps,
    parse_path,
    rebase,
    set_in,
)


class TestParsePath:
    """Test parse_path() and its error cases."""

    def test_dotted_string(self):
        assert parse_path("user.emails.2.address") == ("user", "emails", 2, "address")

    def test_segment_tuple(self):
        assert parse_path(("items", 0, "name")) == ("items", 0, "name")
        assert parse_path(("items", "0")) == ("items", 0)

    def test_list_is_not_a_single_path(self):
        with pytest.raises(InvalidPathError) as exc_info:
            parse_path(["items", 0])
        assert "tuple" in exc_info.value.reason

    def test_round_trip_to_canonical_text(self):
        assert normalize_path(("items", 3)) == "items.3"
        assert format_path(parse_path("a.b.10")) == "a.b.10"

    @pytest.mark.parametrize("bad", ["", "a..b", ".a", "a.", "a b", "tab\there"])
    def test_malformed_strings(self, bad):
        with pytest.raises(InvalidPathError):
            parse_path(bad)

    @pytest.mark.parametrize("bad", [(), ("a", -1), ("a.b",), ("a", True), ("a", 1.5), 42, None])
    def test_malformed_segments_and_types(self, bad):
        with pytest.raises(InvalidPathError):
            parse_path(bad)

    def test_invalid_path_error_is_value_error(self):
        with pytest.raises(ValueError) as exc_info:
            parse_path("a..b")
        assert exc_info.value.path == "a..b"
        assert "empty segment" in exc_info.value.reason


class TestNormalizePaths:
    """Test the one-or-many path argument convention."""

    def test_none_means_whole_tree(self):
        assert normalize_paths(None) is None

    def test_single_string(self):
        assert normalize_paths("a.b") == ("a.b",)

    def test_tuple_is_one_path(self):
        assert normalize_paths(("a", 0)) == ("a.0",)

    def test_list_is_many_paths(self):
        assert normalize_paths(["a", "b.0"]) == ("a", "b.0")
        assert normalize_paths([("items", 0), "name"]) == ("items.0", "name")

    def test_list_mixing_segments_is_rejected(self):
        with pytest.raises(InvalidPathError):
            normalize_paths(["items", 0])


class TestRelationships:
    """Test prefix relationships between paths."""

    def test_is_under_respects_segment_boundaries(self):
        assert is_under("items.1.name", "items.1")
        assert is_under("items.1", "items.1")
        assert not is_under("items.10", "items.1")

    def test_overlaps_is_symmetric(self):
        assert overlaps("user", "user.name")
        assert overlaps("user.name", "user")
        assert not overlaps("user.name", "user.age")

    def test_rebase(self):
        assert rebase("items.3.name", "items.3", "items.2") == "items.2.name"
        assert rebase("items.3", "items.3", "items.0") == "items.0"

    def test_array_index(self):
        assert array_index("items.2.name", "items") == 2
        assert array_index("items", "items") is None
        assert array_index("other.2", "items") is None


class TestTreeAccess:
    """Test get_in / set_in / delete_in on nested dicts and lists."""

    def test_get_in_reads_nested_values(self):
        tree = {"user": {"emails": ["a@x.io", "b@x.io"]}}
        assert get_in(tree, ("user", "emails", 1)) == "b@x.io"

    def test_get_in_missing_is_distinct_from_none(self):
        tree = {"a": None}
        assert get_in(tree, ("a",)) is None
        assert get_in(tree, ("b",)) is MISSING
        assert get_in(tree, ("a", "b"), default="fallback") == "fallback"
        assert not MISSING

    def test_has_path(self):
        assert has_path({"a": [1]}, ("a", 0))
        assert not has_path({"a": [1]}, ("a", 1))

    def test_set_in_creates_dicts_and_padded_lists(self):
        tree = {}
        set_in(tree, ("a", 2, "b"), 1)
        assert tree == {"a": [None, None, {"b": 1}]}

    def test_set_in_replaces_scalar_with_container(self):
        tree = {"a": 5}
        set_in(tree, ("a", "b"), 1)
        assert tree == {"a": {"b": 1}}

    def test_set_in_rejects_key_on_list(self):
        with pytest.raises(InvalidPathError):
            set_in({"a": [1]}, ("a", "name"), 1)

    def test_delete_in_pops_list_items(self):
        tree = {"items": ["a", "b", "c"]}
        assert delete_in(tree, ("items", 1))
        assert tree == {"items": ["a", "c"]}

    def test_delete_in_missing_returns_false(self):
        tree = {"a": {}}
        assert not delete_in(tree, ("a", "b"))
        assert not delete_in(tree, ("x",))

    def test_iter_paths_is_pre_order(self):
        tree = {"a": {"b": 1}, "c": [10, {"d": 2}]}
        assert list(iter_paths(tree)) == ["a", "a.b", "c", "c.0", "c.1", "c.1.d"]

    def test_flatten(self):
        tree = {"user": {"name": "x", "tags": ["a", "b"]}, "empty": {}}
        assert flatten(tree) == {
            "user.name": "x",
            "user.tags.0": "a",
            "user.tags.1": "b",
            "empty": {},
        }

    def test_flatten_with_leaf_predicate(self):
        tree = {"a": {"kind": "x"}, "b": {"c": {"kind": "y"}}}
        flat = flatten(tree, is_leaf=lambda node: isinstance(node, dict) and "kind" in node)
        assert flat == {"a": {"kind": "x"}, "b.c": {"kind": "y"}}
