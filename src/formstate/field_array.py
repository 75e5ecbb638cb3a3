"""
FieldArray: ordered, resizable group of field subtrees under one path.

Each item carries an identity key that is independent of its index, so
reordering never corrupts per-item state. Keys come from a per-group
counter and are never reused, even after removal.

All mutations are committed through the container, which moves errors,
meta and registrations along with their item and purges the state of
removed items.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

if TYPE_CHECKING:
    from formstate.form_state import FormStateContainer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArrayItem:
    """One item of a field array as seen by a renderer."""
    key: str
    index: int
    value: Any

    def path(self, array_path: str, field: Optional[str] = None) -> str:
        """Path of this item (or of a field inside it) under array_path."""
        base = f"{array_path}.{self.index}"
        return f"{base}.{field}" if field else base


class FieldArray:
    """Array group controller bound to one container path."""

    def __init__(self, container: 'FormStateContainer', path: str):
        self._container = container
        self.path = path
        self._counter = itertools.count()
        self._keys: List[str] = [self._allocate_key() for _ in container._read_list(path)]
        logger.debug(f"Created FieldArray: {path} ({len(self._keys)} item(s))")

    def _allocate_key(self) -> str:
        return f"item-{next(self._counter)}"

    # ==================== READS ====================

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def keys(self) -> List[str]:
        return list(self._keys)

    @property
    def fields(self) -> List[ArrayItem]:
        """Items in order, each with its identity key and current value."""
        values = self._container._read_list(self.path)
        return [ArrayItem(key=key, index=i, value=values[i]) for i, key in enumerate(self._keys)]

    def index_of(self, key: str) -> int:
        """Current index of an identity key.

        Raises:
            KeyError: If no live item has this key
        """
        try:
            return self._keys.index(key)
        except ValueError:
            raise KeyError(f"No item with key {key!r} in field array {self.path!r}") from None

    def _check_index(self, index: int, allow_end: bool = False) -> None:
        upper = len(self._keys) if allow_end else len(self._keys) - 1
        if not 0 <= index <= upper:
            raise IndexError(f"Index {index} out of range for field array {self.path!r} (length {len(self._keys)})")

    def _resolve(self, key_or_index: Union[str, int]) -> int:
        if isinstance(key_or_index, int):
            self._check_index(key_or_index)
            return key_or_index
        return self.index_of(key_or_index)

    # ==================== MUTATIONS ====================

    def append(self, item: Any) -> str:
        """Add an item at the end. Returns its new identity key."""
        return self.insert(len(self._keys), item)

    def prepend(self, item: Any) -> str:
        """Add an item at the front. Returns its new identity key."""
        return self.insert(0, item)

    def insert(self, index: int, item: Any) -> str:
        """Insert an item before index. Returns its new identity key."""
        self._check_index(index, allow_end=True)
        items = self._container._read_list(self.path)
        keys = list(self._keys)
        key = self._allocate_key()
        items.insert(index, item)
        keys.insert(index, key)
        self._commit(items, keys)
        return key

    def remove(self, key_or_index: Union[None, str, int] = None) -> None:
        """Remove one item (by identity key or index), or all items if None.

        Every value, error, meta and registration under the removed prefix
        is purged.
        """
        if key_or_index is None:
            self._commit([], [])
            return
        index = self._resolve(key_or_index)
        items = self._container._read_list(self.path)
        keys = list(self._keys)
        del items[index]
        del keys[index]
        self._commit(items, keys)

    def move(self, from_index: int, to_index: int) -> None:
        """Move an item; identity and per-item state travel with it."""
        self._check_index(from_index)
        self._check_index(to_index)
        if from_index == to_index:
            return
        items = self._container._read_list(self.path)
        keys = list(self._keys)
        items.insert(to_index, items.pop(from_index))
        keys.insert(to_index, keys.pop(from_index))
        self._commit(items, keys)

    def swap(self, index_a: int, index_b: int) -> None:
        self._check_index(index_a)
        self._check_index(index_b)
        if index_a == index_b:
            return
        items = self._container._read_list(self.path)
        keys = list(self._keys)
        items[index_a], items[index_b] = items[index_b], items[index_a]
        keys[index_a], keys[index_b] = keys[index_b], keys[index_a]
        self._commit(items, keys)

    def update(self, index: int, item: Any) -> None:
        """Replace the value of one item, keeping its identity."""
        self._check_index(index)
        items = self._container._read_list(self.path)
        items[index] = item
        self._commit(items, list(self._keys))

    def replace(self, items: Iterable[Any]) -> None:
        """Replace every item. All items get fresh identity keys."""
        new_items = list(items)
        self._commit(new_items, [self._allocate_key() for _ in new_items])

    def _commit(self, items: List[Any], keys: List[str]) -> None:
        """Hand the new ordering to the container.

        The old-index -> new-index map is derived from identity keys, so
        every kind of mutation shares one code path.
        """
        new_positions = {key: index for index, key in enumerate(keys)}
        index_map: Dict[int, Optional[int]] = {
            old_index: new_positions.get(key) for old_index, key in enumerate(self._keys)
        }
        self._keys = keys
        self._container._apply_array_change(self.path, items, index_map)

    def _resync(self, fresh: bool = False) -> None:
        """Realign keys with the container's list after an external write or reset.

        Surviving indices keep their keys (unless fresh), extra items get new ones.
        """
        length = len(self._container._read_list(self.path))
        if fresh:
            self._keys = [self._allocate_key() for _ in range(length)]
            return
        kept = self._keys[:length]
        self._keys = kept + [self._allocate_key() for _ in range(length - len(kept))]
