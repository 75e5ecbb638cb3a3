"""
FieldPath parsing and nested value-tree access.

All path handling for the framework lives here so that no other module
does ad-hoc string splitting or reflective attribute access.

Path format:
    - Text form: dot-separated segments, e.g. "user.emails.2.address"
    - Segment form: tuple of str/int, e.g. ("user", "emails", 2, "address")
    - A list is never a path; arguments taking several paths take a list
    - Purely numeric text segments are list indices

The value tree is a plain nested structure of dicts and lists. Paths are
resolved against it directly; there is no fixed schema.
"""
import logging
import re
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union

from formstate.errors import InvalidPathError

logger = logging.getLogger(__name__)

Segment = Union[str, int]
Segments = Tuple[Segment, ...]
PathLike = Union[str, Segments]

SEPARATOR = "."

_INVALID_SEGMENT = re.compile(r"\s")


class _Missing:
    """Sentinel for "no entry at this path" (distinct from a stored None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def _coerce_segment(segment: Any, raw: Any) -> Segment:
    if isinstance(segment, bool):
        raise InvalidPathError(raw, f"boolean segment {segment!r}")
    if isinstance(segment, int):
        if segment < 0:
            raise InvalidPathError(raw, f"negative index {segment}")
        return segment
    if not isinstance(segment, str):
        raise InvalidPathError(raw, f"segment {segment!r} is not a string or index")
    if segment == "":
        raise InvalidPathError(raw, "empty segment")
    if _INVALID_SEGMENT.search(segment):
        raise InvalidPathError(raw, f"whitespace in segment {segment!r}")
    if SEPARATOR in segment:
        raise InvalidPathError(raw, f"separator inside segment {segment!r}")
    if segment.isdigit():
        return int(segment)
    return segment


def parse_path(path: PathLike) -> Segments:
    """Parse a path into its segment tuple.

    Args:
        path: Dotted string or tuple of segments.

    Returns:
        Tuple of segments, integers for list indices.

    Raises:
        InvalidPathError: If the path is empty or malformed.
    """
    if isinstance(path, str):
        if not path:
            raise InvalidPathError(path, "empty path")
        raw_segments = path.split(SEPARATOR)
    elif isinstance(path, tuple):
        if not path:
            raise InvalidPathError(path, "empty path")
        raw_segments = list(path)
    elif isinstance(path, list):
        raise InvalidPathError(path, "a list is several paths; pass segments as a tuple")
    else:
        raise InvalidPathError(path, f"unsupported path type {type(path).__name__}")

    return tuple(_coerce_segment(segment, path) for segment in raw_segments)


def format_path(segments: Iterable[Segment]) -> str:
    """Join segments into the canonical text form."""
    return SEPARATOR.join(str(segment) for segment in segments)


def normalize_path(path: PathLike) -> str:
    """Validate a path and return its canonical text form."""
    return format_path(parse_path(path))


def normalize_paths(paths: Union[None, PathLike, Iterable[PathLike]]) -> Optional[Tuple[str, ...]]:
    """Normalize "one path, many paths or None" arguments.

    None means the whole tree and is passed through unchanged.
    """
    if paths is None:
        return None
    if isinstance(paths, (str, tuple)):
        return (normalize_path(paths),)
    return tuple(normalize_path(p) for p in paths)


# ==================== PATH RELATIONSHIPS ====================

def is_under(path: str, prefix: str) -> bool:
    """True if path equals prefix or lies below it."""
    return path == prefix or path.startswith(prefix + SEPARATOR)


def overlaps(a: str, b: str) -> bool:
    """True if either path is an ancestor of (or equal to) the other."""
    return is_under(a, b) or is_under(b, a)


def rebase(path: str, old_prefix: str, new_prefix: str) -> str:
    """Move path from below old_prefix to below new_prefix."""
    if path == old_prefix:
        return new_prefix
    return new_prefix + path[len(old_prefix):]


def array_index(path: str, array_path: str) -> Optional[int]:
    """Return the item index of path within the array at array_path.

    "items.2.name" within "items" -> 2. None if path is not inside an item.
    """
    if not path.startswith(array_path + SEPARATOR):
        return None
    head = path[len(array_path) + 1:].split(SEPARATOR, 1)[0]
    return int(head) if head.isdigit() else None


# ==================== TREE ACCESS ====================

def get_in(tree: Any, segments: Segments, default: Any = MISSING) -> Any:
    """Read the value at segments, or default if any step is absent."""
    node = tree
    for segment in segments:
        if isinstance(segment, int) and isinstance(node, list):
            if segment >= len(node):
                return default
            node = node[segment]
        elif isinstance(node, Mapping):
            if segment in node:
                node = node[segment]
            elif str(segment) in node:
                node = node[str(segment)]
            else:
                return default
        else:
            return default
    return node


def has_path(tree: Any, segments: Segments) -> bool:
    return get_in(tree, segments) is not MISSING


def _empty_container_for(next_segment: Segment) -> Any:
    return [] if isinstance(next_segment, int) else {}


def set_in(tree: Dict[str, Any], segments: Segments, value: Any) -> None:
    """Write value at segments, creating intermediate containers.

    Integer segments create lists (padded with None), string segments
    create dicts. A scalar sitting where a container is needed is replaced.
    """
    node: Any = tree
    for position, segment in enumerate(segments):
        last = position == len(segments) - 1
        if isinstance(node, list):
            if not isinstance(segment, int):
                raise InvalidPathError(format_path(segments), f"key {segment!r} used on a list")
            while len(node) <= segment:
                node.append(None)
            if last:
                node[segment] = value
                return
            child = node[segment]
            if not isinstance(child, (dict, list)):
                child = _empty_container_for(segments[position + 1])
                node[segment] = child
            node = child
        else:
            key: Segment = segment
            if isinstance(segment, int) and segment not in node and str(segment) in node:
                key = str(segment)
            if last:
                node[key] = value
                return
            child = node.get(key)
            if not isinstance(child, (dict, list)):
                child = _empty_container_for(segments[position + 1])
                node[key] = child
            node = child


def delete_in(tree: Any, segments: Segments) -> bool:
    """Remove the entry at segments.

    A dict key is deleted; a list element is popped so later items shift.

    Returns:
        True if something was removed.
    """
    parent = get_in(tree, segments[:-1]) if len(segments) > 1 else tree
    leaf = segments[-1]
    if isinstance(parent, list) and isinstance(leaf, int):
        if leaf < len(parent):
            parent.pop(leaf)
            return True
        return False
    if isinstance(parent, dict):
        for key in (leaf, str(leaf)):
            if key in parent:
                del parent[key]
                return True
    return False


def iter_paths(tree: Any, prefix: Segments = ()) -> Iterator[str]:
    """Yield every node path of the tree in pre-order.

    Dict keys are visited in insertion order, list items by index.
    """
    if isinstance(tree, Mapping):
        for key, child in tree.items():
            segments = prefix + (key,)
            yield format_path(segments)
            yield from iter_paths(child, segments)
    elif isinstance(tree, list):
        for index, child in enumerate(tree):
            segments = prefix + (index,)
            yield format_path(segments)
            yield from iter_paths(child, segments)


def flatten(tree: Mapping[str, Any], is_leaf=None, prefix: Segments = ()) -> Dict[str, Any]:
    """Flatten a nested mapping into {dotted_path: leaf}.

    Args:
        tree: Nested mapping (lists are descended by index).
        is_leaf: Predicate deciding whether a node stops descent.
    """
    flat: Dict[str, Any] = {}
    items: Iterable[Tuple[Segment, Any]]
    if isinstance(tree, Mapping):
        items = tree.items()
    elif isinstance(tree, list):
        items = enumerate(tree)
    else:
        return {format_path(prefix): tree} if prefix else {}

    for key, child in items:
        segments = prefix + (key,)
        if is_leaf is not None and is_leaf(child):
            flat[format_path(segments)] = child
        elif isinstance(child, (Mapping, list)) and child:
            flat.update(flatten(child, is_leaf, segments))
        else:
            flat[format_path(segments)] = child
    return flat
