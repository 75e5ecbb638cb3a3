"""
FieldRegistry: maps field paths to their registration descriptors.

Leaf component: knows nothing about values, errors or subscriptions. The
container consults it for validation rules, schema membership and the
mounted renderer of a path.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from formstate.paths import is_under, normalize_path, overlaps, rebase

logger = logging.getLogger(__name__)


class Focusable(Protocol):
    """Imperative hook a mounted renderer exposes for set_focus()."""

    def focus(self) -> None:
        ...


FieldRule = Callable[[Any, Dict[str, Any]], Any]


@dataclass
class FieldDescriptor:
    """Registration record for one path.

    Attributes:
        path: Canonical dotted path
        validate: Optional rule called as validate(value, all_values)
        required: Presentation hint for renderers (asterisk marking)
        deps: Paths whose writes also re-validate this field
        metadata: Free-form registration data for renderers
        registered: False for paths only known because they were written
        out_of_schema: True if the path was written without being registered
        renderer: Currently mounted renderer, if any
    """
    path: str
    validate: Optional[FieldRule] = None
    required: bool = False
    deps: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    registered: bool = True
    out_of_schema: bool = False
    renderer: Optional[Focusable] = None


class FieldRegistry:
    """Path -> FieldDescriptor registry for one form.

    Thread safety: Not thread-safe (all operations expected on one thread).
    """

    def __init__(self):
        self._descriptors: Dict[str, FieldDescriptor] = {}

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        descriptor = self._descriptors.get(path)
        return descriptor is not None and descriptor.registered

    def __len__(self) -> int:
        return sum(1 for d in self._descriptors.values() if d.registered)

    def register(
        self,
        path: str,
        validate: Optional[FieldRule] = None,
        required: bool = False,
        deps: Iterable[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FieldDescriptor:
        """Register (or re-register) a path.

        Re-registering keeps the mounted renderer and replaces the rules.
        """
        key = normalize_path(path)
        existing = self._descriptors.get(key)
        if existing is not None and existing.registered:
            logger.debug(f"Re-registering field: {key}")

        descriptor = FieldDescriptor(
            path=key,
            validate=validate,
            required=required,
            deps=tuple(normalize_path(d) for d in deps),
            metadata=dict(metadata or {}),
            renderer=existing.renderer if existing is not None else None,
        )
        self._descriptors[key] = descriptor
        logger.debug(f"Registered field: {key} (validate={validate is not None}, required={required})")
        return descriptor

    def get(self, path: str) -> Optional[FieldDescriptor]:
        return self._descriptors.get(path)

    def paths(self) -> List[str]:
        """Registered paths in registration order."""
        return [p for p, d in self._descriptors.items() if d.registered]

    # ========== OUT-OF-SCHEMA DIAGNOSTICS ==========

    def mark_out_of_schema(self, path: str) -> FieldDescriptor:
        """Record that path was written without being registered."""
        descriptor = self._descriptors.get(path)
        if descriptor is None:
            descriptor = FieldDescriptor(path=path, registered=False, out_of_schema=True)
            self._descriptors[path] = descriptor
        elif not descriptor.registered:
            descriptor.out_of_schema = True
        return descriptor

    def out_of_schema_paths(self) -> List[str]:
        return [p for p, d in self._descriptors.items() if d.out_of_schema]

    # ========== RENDERERS ==========

    def attach_renderer(self, path: str, renderer: Focusable) -> None:
        key = normalize_path(path)
        descriptor = self._descriptors.get(key)
        if descriptor is None:
            descriptor = self.mark_out_of_schema(key)
        if descriptor.renderer is not None and descriptor.renderer is not renderer:
            logger.warning(f"Replacing mounted renderer for field: {key}")
        descriptor.renderer = renderer

    def detach_renderer(self, path: str, renderer: Optional[Focusable] = None) -> None:
        """Detach the mounted renderer (only if it is `renderer`, when given)."""
        descriptor = self._descriptors.get(normalize_path(path))
        if descriptor is None:
            return
        if renderer is None or descriptor.renderer is renderer:
            descriptor.renderer = None

    def renderer_for(self, path: str) -> Optional[Focusable]:
        descriptor = self._descriptors.get(path)
        return descriptor.renderer if descriptor is not None else None

    # ========== VALIDATION RULES ==========

    def rules_for(self, paths: Optional[Tuple[str, ...]]) -> List[FieldDescriptor]:
        """Descriptors with a validate rule that fall inside the checked paths.

        Fields declaring a checked path in their deps are included as well.
        None checks every registered rule.
        """
        result = []
        for descriptor in self._descriptors.values():
            if descriptor.validate is None or not descriptor.registered:
                continue
            if paths is None:
                result.append(descriptor)
            elif any(is_under(descriptor.path, p) for p in paths):
                result.append(descriptor)
            elif any(overlaps(dep, p) for dep in descriptor.deps for p in paths):
                result.append(descriptor)
        return result

    # ========== PREFIX OPERATIONS (field arrays) ==========

    def remove_under(self, prefix: str) -> List[str]:
        """Drop every descriptor at or below prefix. Returns removed paths."""
        removed = [p for p in self._descriptors if is_under(p, prefix)]
        for path in removed:
            del self._descriptors[path]
        return removed

    def remap(self, mapper: Callable[[str], Optional[str]]) -> None:
        """Re-key descriptors; mapper returns the new path or None to drop.

        Used when array items shift so registrations follow their item.
        """
        remapped: Dict[str, FieldDescriptor] = {}
        for path, descriptor in self._descriptors.items():
            new_path = mapper(path)
            if new_path is None:
                continue
            if new_path != path:
                descriptor.path = new_path
                descriptor.deps = tuple(mapper(d) or d for d in descriptor.deps)
            remapped[new_path] = descriptor
        self._descriptors = remapped


def rebase_mapper(moves: Dict[str, Optional[str]]) -> Callable[[str], Optional[str]]:
    """Build a remap() function from {old_prefix: new_prefix_or_None}."""

    def mapper(path: str) -> Optional[str]:
        for old_prefix, new_prefix in moves.items():
            if is_under(path, old_prefix):
                return None if new_prefix is None else rebase(path, old_prefix, new_prefix)
        return path

    return mapper
