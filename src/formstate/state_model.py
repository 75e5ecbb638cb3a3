"""
Dataclasses for form state: errors, per-field meta and the aggregate snapshot.

Design:
- FieldError and FormState are immutable (frozen) so snapshots handed to
  callers cannot reach back into the container
- FieldMeta is the mutable per-path record owned by the container
- Derived flags (is_dirty, is_valid, ...) are computed, never stored
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional


@dataclass(frozen=True)
class FieldError:
    """Error descriptor for one path.

    kind identifies the failed rule ("required", "pattern", "server", ...),
    message is the user-facing text.
    """
    kind: str
    message: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {'kind': self.kind, 'message': self.message}


@dataclass
class FieldMeta:
    """Interaction flags for one path."""
    touched: bool = False
    dirty: bool = False
    registered: bool = False

    def copy(self) -> 'FieldMeta':
        return replace(self)


@dataclass(frozen=True)
class FieldState:
    """Everything a renderer needs to know about one path."""
    value: Any
    error: Optional[FieldError]
    touched: bool
    dirty: bool

    @property
    def invalid(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class FormState:
    """Snapshot of a container's state at one point in time.

    values/errors/meta are copies; mutating them has no effect on the form.
    """
    values: Dict[str, Any]
    errors: Dict[str, FieldError]
    meta: Dict[str, FieldMeta]
    is_submitting: bool = False
    submit_count: int = 0
    is_submitted: bool = False
    is_submit_successful: bool = False
    out_of_schema: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_dirty(self) -> bool:
        return any(m.dirty for m in self.meta.values())

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def dirty_fields(self) -> FrozenSet[str]:
        return frozenset(path for path, m in self.meta.items() if m.dirty)

    @property
    def touched_fields(self) -> FrozenSet[str]:
        return frozenset(path for path, m in self.meta.items() if m.touched)
