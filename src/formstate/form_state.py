"""
FormStateContainer: single source of truth for one form session.

Owns the value tree, the error tree, per-path meta (touched/dirty/registered),
submission flags and field-array groups. Every mutation goes through a
container method; every read returns a copy.

Lifecycle: created with the form, mutated by control writes and handle
operations, discarded by close() when the owning UI subtree goes away.

Invariants:
- Every registered path has a value-tree entry (possibly None)
- A path is in the error tree only if its latest validation failed
- meta[p].dirty == (value(p) != initial(p)) for writes with should_dirty=True
- dirty/touched are reset only by reset() / reset_field()
"""
import asyncio
import copy
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from formstate.errors import StaleResultDiscarded
from formstate.field_array import FieldArray
from formstate.field_registry import FieldDescriptor, FieldRegistry, FieldRule, rebase_mapper
from formstate.options import FormOptions, ValidationMode
from formstate.paths import (
    MISSING,
    PathLike,
    array_index,
    delete_in,
    format_path,
    get_in,
    is_under,
    iter_paths,
    normalize_path,
    normalize_paths,
    overlaps,
    parse_path,
    set_in,
)
from formstate.state_model import FieldMeta, FieldState, FormState
from formstate.subscription import WHOLE_TREE, ChangeSubscriptionChannel, SnapshotCallback, Subscription
from formstate.validation import ErrorTree, ValidationEpoch, coerce_error, restrict_errors, run_validation

logger = logging.getLogger(__name__)


class FormStateContainer:
    """
    Canonical state of one form.

    Thread safety: Not thread-safe. All operations run synchronously on the
    caller's thread; the only suspension point is an asynchronous validation
    collaborator.
    """

    def __init__(
        self,
        options: Union[None, FormOptions, Dict[str, Any]] = None,
        registry: Optional[FieldRegistry] = None,
    ):
        """
        Args:
            options: FormOptions or a mapping of option names
            registry: Existing registry to adopt (when a form is reconfigured,
                      registrations and mounted renderers carry over)
        """
        self.options = FormOptions.coerce(options)
        self.registry = registry if registry is not None else FieldRegistry()

        # === Value trees ===
        self._initial_values: Dict[str, Any] = self.options.initial_tree()
        self._values: Dict[str, Any] = copy.deepcopy(self._initial_values)

        # === Errors and meta (flat, keyed by canonical path) ===
        self._errors: ErrorTree = {}
        self._meta: Dict[str, FieldMeta] = {}

        # === Submission ===
        self._is_submitting = False
        self._submit_count = 0
        self._is_submitted = False
        self._is_submit_successful = False
        # Set by the first failed submission; switches to re_validate_mode
        self._revalidating = False

        # === Async validation ===
        self._epoch = ValidationEpoch()
        self._pending_tasks: Set['asyncio.Task'] = set()

        # === Field arrays ===
        self._arrays: Dict[str, FieldArray] = {}

        self.channel = ChangeSubscriptionChannel(self.get_values)
        self._closed = False

        for path in self.registry.paths():
            self._seed_registered(path)

        logger.debug(
            f"Created FormStateContainer: mode={self.options.mode.value}, "
            f"re_validate_mode={self.options.re_validate_mode.value}, "
            f"initial_paths={len(self._initial_values)}"
        )

    # ==================== REGISTRATION ====================

    def register(
        self,
        path: PathLike,
        validate: Optional[FieldRule] = None,
        required: bool = False,
        deps: Iterable[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FieldDescriptor:
        """Register a control's path, seeding its value from initial values."""
        key = normalize_path(path)
        descriptor = self.registry.register(key, validate=validate, required=required, deps=deps, metadata=metadata)
        self._seed_registered(key)
        return descriptor

    def _seed_registered(self, key: str) -> None:
        segments = parse_path(key)
        if get_in(self._values, segments) is MISSING:
            initial = get_in(self._initial_values, segments)
            set_in(self._values, segments, None if initial is MISSING else copy.deepcopy(initial))
        meta = self._meta.setdefault(key, FieldMeta())
        meta.registered = True

    def unregister(self, path: PathLike) -> None:
        """Remove a path's registration, value, error and meta in one step.

        Any validation still outstanding is invalidated.
        """
        key = normalize_path(path)
        segments = parse_path(key)
        parent = get_in(self._values, segments[:-1]) if len(segments) > 1 else None
        if isinstance(parent, list) and isinstance(segments[-1], int) and segments[-1] < len(parent):
            self._unregister_item(format_path(segments[:-1]), segments[-1])
            return

        with self.channel.batch():
            purged = self.registry.remove_under(key)
            removed_value = delete_in(self._values, parse_path(key))
            self._drop_state_under(key)
            for array_path in [p for p in self._arrays if is_under(p, key)]:
                del self._arrays[array_path]
            self._epoch.bump(f"unregister {key}")
            if removed_value:
                self.channel.publish([key])
        if len(purged) > 1:
            logger.info(f"Unregistered {key} and {len(purged) - 1} descendant registration(s)")
        logger.debug(f"Unregistered field: {key}")

    def _unregister_item(self, list_path: str, index: int) -> None:
        """Remove one list item; later items and their state shift down."""
        key = f"{list_path}.{index}"
        purged = [p for p in self.registry.paths() if is_under(p, key)]
        group = self._arrays.get(list_path)
        if group is not None:
            group.remove(index)
        else:
            items = self._read_list(list_path)
            index_map = {old: (old if old < index else old - 1) for old in range(len(items))}
            index_map[index] = None
            del items[index]
            self._apply_array_change(list_path, items, index_map)
        if len(purged) > 1:
            logger.info(f"Unregistered {key} and {len(purged) - 1} descendant registration(s)")
        logger.debug(f"Unregistered list item: {key}")

    def _drop_state_under(self, prefix: str) -> None:
        for path in [p for p in self._errors if is_under(p, prefix)]:
            del self._errors[path]
        for path in [p for p in self._meta if is_under(p, prefix)]:
            del self._meta[path]

    # ==================== VALUES ====================

    def get_values(self, path: Optional[PathLike] = None) -> Any:
        """Return the full value tree or the subtree at path (a deep copy).

        Pure read: no side effects. A missing path reads as None.
        """
        if path is None:
            return copy.deepcopy(self._values)
        value = get_in(self._values, parse_path(path))
        return None if value is MISSING else copy.deepcopy(value)

    def get_initial_values(self, path: Optional[PathLike] = None) -> Any:
        if path is None:
            return copy.deepcopy(self._initial_values)
        value = get_in(self._initial_values, parse_path(path))
        return None if value is MISSING else copy.deepcopy(value)

    def set_value(
        self,
        path: PathLike,
        value: Any,
        should_dirty: bool = True,
        should_touch: bool = False,
        should_validate: Optional[bool] = None,
    ) -> None:
        """Write value at path.

        Never fails for unregistered paths: the entry is created and the path
        is flagged out-of-schema for diagnostics.

        Args:
            path: Field path
            value: New value (copied; later caller mutation has no effect)
            should_dirty: Recompute the dirty flag of the affected paths
            should_touch: Mark the path as touched
            should_validate: Validate the path (and fields depending on it);
                             None defers to the mode for registered paths

        Raises:
            InvalidPathError: If path is malformed
        """
        segments = parse_path(path)
        key = format_path(segments)

        if not self._is_known_path(key):
            self.registry.mark_out_of_schema(key)
            logger.warning(f"set_value({key!r}) on a path no control registered (flagged out-of-schema)")

        current = get_in(self._values, segments)
        changed = current is MISSING or current != value

        if changed:
            set_in(self._values, segments, copy.deepcopy(value))
            logger.debug(f"Set value: {key} = {value!r}")

        meta = self._meta_for(key)
        if should_touch:
            meta.touched = True
        if changed and should_dirty:
            self._refresh_dirty(key)

        if changed:
            self._sync_arrays_touched_by(key)
            self.channel.publish([key])

        if should_validate is None:
            should_validate = changed and key in self.registry and self.validates_on(ValidationMode.ON_CHANGE)
        if should_validate:
            self._auto_validate((key,))

    def set_values(self, values: Dict[str, Any], **options) -> None:
        """Write several paths; subscribers see one coalesced delivery."""
        with self.channel.batch():
            for path, value in values.items():
                self.set_value(path, value, **options)

    def _is_known_path(self, key: str) -> bool:
        """Registered, inside a field array, or an ancestor/descendant of a registered path."""
        if key in self.registry:
            return True
        if any(is_under(key, array_path) for array_path in self._arrays):
            return True
        return any(overlaps(key, registered) for registered in self.registry.paths())

    def _meta_for(self, key: str) -> FieldMeta:
        meta = self._meta.get(key)
        if meta is None:
            meta = FieldMeta(registered=key in self.registry)
            self._meta[key] = meta
        return meta

    def _refresh_dirty(self, key: str) -> None:
        """Recompute dirty for key and every tracked path overlapping it."""
        self._meta_for(key)
        for path, meta in self._meta.items():
            if overlaps(path, key):
                meta.dirty = self._compute_dirty(path)

    def _compute_dirty(self, path: str) -> bool:
        segments = parse_path(path)
        current = get_in(self._values, segments, None)
        initial = get_in(self._initial_values, segments, None)
        return current != initial

    def is_dirty(self, path: Optional[PathLike] = None) -> bool:
        """Dirty flag for one path, or whether any tracked path is dirty."""
        if path is None:
            return any(m.dirty for m in self._meta.values())
        key = normalize_path(path)
        meta = self._meta.get(key)
        return meta.dirty if meta is not None else self._compute_dirty(key)

    def mark_touched(self, path: PathLike) -> None:
        """Record a blur/interaction. Touched never reverts until reset."""
        key = normalize_path(path)
        self._meta_for(key).touched = True

    # ==================== ERRORS ====================

    @property
    def errors(self) -> ErrorTree:
        return dict(self._errors)

    def set_error(self, path: PathLike, error: Any, should_focus: bool = False) -> None:
        """Inject an error outside the validation pipeline (e.g. server errors).

        Args:
            path: Field path ("root" style paths are fine)
            error: FieldError, {"kind", "message"} mapping or message string
            should_focus: Also focus the field's renderer
        """
        key = normalize_path(path)
        field_error = coerce_error(error, default_kind='manual')
        if field_error is None:
            self._errors.pop(key, None)
            return
        self._errors[key] = field_error
        logger.debug(f"Set error: {key} -> {field_error}")
        if should_focus:
            self.focus(key)

    def clear_errors(self, paths: Union[None, PathLike, Iterable[PathLike]] = None) -> None:
        """Remove errors at (and below) the given path(s), or all errors."""
        keys = normalize_paths(paths)
        if keys is None:
            self._errors.clear()
            return
        for path in [p for p in self._errors if any(is_under(p, k) for k in keys)]:
            del self._errors[path]

    # ==================== FIELD STATE ====================

    def get_field_state(self, path: PathLike) -> FieldState:
        key = normalize_path(path)
        meta = self._meta.get(key)
        return FieldState(
            value=self.get_values(key),
            error=self._errors.get(key),
            touched=meta.touched if meta is not None else False,
            dirty=meta.dirty if meta is not None else self._compute_dirty(key),
        )

    @property
    def form_state(self) -> FormState:
        return FormState(
            values=self.get_values(),
            errors=dict(self._errors),
            meta={p: m.copy() for p, m in self._meta.items()},
            is_submitting=self._is_submitting,
            submit_count=self._submit_count,
            is_submitted=self._is_submitted,
            is_submit_successful=self._is_submit_successful,
            out_of_schema=frozenset(self.registry.out_of_schema_paths()),
        )

    @property
    def is_submitting(self) -> bool:
        return self._is_submitting

    @property
    def submit_count(self) -> int:
        return self._submit_count

    @property
    def epoch(self) -> int:
        return self._epoch.current

    # ==================== RESET ====================

    def reset(self, next_initial_values: Optional[Dict[str, Any]] = None, keep_errors: bool = False) -> None:
        """Replace the value tree and clear errors and all meta.

        The only operation (with reset_field) that clears dirty/touched.
        submit_count is preserved. Outstanding validation is invalidated.

        Args:
            next_initial_values: New initial tree (becomes the dirty baseline);
                                 defaults to the last known initial values
            keep_errors: Keep the current error tree
        """
        if next_initial_values is not None:
            self._initial_values = copy.deepcopy(dict(next_initial_values))

        with self.channel.batch():
            self._values = copy.deepcopy(self._initial_values)
            if not keep_errors:
                self._errors.clear()
            self._meta.clear()
            for path in self.registry.paths():
                self._seed_registered(path)
            self._is_submitted = False
            self._is_submit_successful = False
            self._revalidating = False
            self._epoch.bump("reset")
            for group in self._arrays.values():
                group._resync(fresh=True)
            self.channel.publish([WHOLE_TREE])

        logger.debug(f"Reset form (new_initial={next_initial_values is not None}, keep_errors={keep_errors})")

    def reset_field(self, path: PathLike, default_value: Any = MISSING) -> None:
        """Restore one field to its initial value and clear its error and meta.

        Args:
            path: Field path
            default_value: If given, becomes the field's new initial value
        """
        key = normalize_path(path)
        segments = parse_path(key)
        if default_value is not MISSING:
            set_in(self._initial_values, segments, copy.deepcopy(default_value))

        initial = get_in(self._initial_values, segments)
        with self.channel.batch():
            set_in(self._values, segments, None if initial is MISSING else copy.deepcopy(initial))
            self._drop_state_under(key)
            if key in self.registry:
                self._meta_for(key)
            self._sync_arrays_touched_by(key)
            self.channel.publish([key])

    # ==================== FOCUS ====================

    def focus(self, path: PathLike, should_select: bool = False) -> bool:
        """Ask the renderer mounted at path to take input focus.

        Returns:
            False (and logs a warning) if no renderer is mounted there.
        """
        key = normalize_path(path)
        renderer = self.registry.renderer_for(key)
        if renderer is None:
            logger.warning(f"Cannot focus {key!r}: no renderer is mounted for it")
            return False
        renderer.focus()
        if should_select and hasattr(renderer, 'select'):
            renderer.select()
        return True

    def first_error_path(self, errors: Optional[ErrorTree] = None) -> Optional[str]:
        """First path of errors in value-tree pre-order.

        Errors at paths absent from the tree (e.g. "root") come last, in
        registration order and then insertion order.
        """
        errors = self._errors if errors is None else errors
        if not errors:
            return None
        for path in iter_paths(self._values):
            if path in errors:
                return path
        for path in self.registry.paths():
            if path in errors:
                return path
        return next(iter(errors))

    # ==================== VALIDATION ====================

    def trigger(self, paths: Union[None, PathLike, Iterable[PathLike]] = None) -> bool:
        """Validate the given path(s), or the whole tree.

        Returns:
            True if the checked subset is error-free. A path without any
            validation rule is a no-op that reports success.

        Raises:
            RuntimeError: If the collaborator is asynchronous and an event
                          loop is already running (use trigger_async())
        """
        outcome = self._start_validation(normalize_paths(paths))
        if not inspect.isawaitable(outcome):
            return outcome
        return self._drive(outcome, "trigger")

    async def trigger_async(self, paths: Union[None, PathLike, Iterable[PathLike]] = None) -> bool:
        """Awaitable trigger(); works with synchronous and asynchronous collaborators."""
        outcome = self._start_validation(normalize_paths(paths))
        if inspect.isawaitable(outcome):
            return await outcome
        return outcome

    @staticmethod
    def _drive(coroutine, operation: str) -> Any:
        """Run an awaitable to completion from synchronous code."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            if not inspect.iscoroutine(coroutine):
                coroutine = _await(coroutine)
            return asyncio.run(coroutine)
        if inspect.iscoroutine(coroutine):
            coroutine.close()
        raise RuntimeError(
            f"{operation}() cannot block inside a running event loop with an "
            f"asynchronous validator; await {operation}_async() instead"
        )

    def _start_validation(self, checked: Optional[Tuple[str, ...]]):
        """Begin validation of checked paths.

        Returns:
            bool when the collaborator answered synchronously, otherwise a
            coroutine resolving to bool.
        """
        rules = self.registry.rules_for(checked)
        # Nothing to run: injected errors stay as they are
        if self.options.resolver is None and not rules:
            logger.debug(f"No validation rule for {checked or 'all'}; reporting success")
            return True

        # Fields that depend on a checked path are part of the checked subset
        if checked is not None:
            checked = tuple(dict.fromkeys(checked + tuple(r.path for r in rules)))

        started = self._epoch.current
        result = run_validation(self.get_values(), checked, self.options.resolver, rules)
        if inspect.isawaitable(result):
            return self._finish_async_validation(result, checked, started)
        return self._apply_validation(result, checked, started)

    async def _finish_async_validation(self, pending, checked, started: int) -> bool:
        errors = await pending
        return self._apply_validation(errors, checked, started)

    def _apply_validation(self, errors: ErrorTree, checked: Optional[Tuple[str, ...]], started: int) -> bool:
        try:
            self._epoch.guard(started)
        except StaleResultDiscarded as e:
            logger.debug(str(e))
            return self._is_error_free(checked)

        errors = restrict_errors(errors, checked)
        if checked is None:
            self._errors = dict(errors)
        else:
            for path in [p for p in self._errors if any(is_under(p, c) for c in checked)]:
                del self._errors[path]
            self._errors.update(errors)
        logger.debug(f"Validated {checked or 'all'}: {len(errors)} error(s)")
        return self._is_error_free(checked)

    def _is_error_free(self, checked: Optional[Tuple[str, ...]]) -> bool:
        if checked is None:
            return not self._errors
        return not any(is_under(p, c) for p in self._errors for c in checked)

    def _auto_validate(self, checked: Tuple[str, ...]) -> None:
        """Validation triggered by a write or blur (mode-driven)."""
        outcome = self._start_validation(checked)
        if not inspect.isawaitable(outcome):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            outcome.close()
            logger.warning(f"Skipping asynchronous validation of {checked}: no running event loop")
            return
        task = loop.create_task(outcome)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    def validates_on(self, trigger: ValidationMode) -> bool:
        """Whether a control event of this kind auto-validates right now."""
        return self.options.validates_on(trigger, self._revalidating)

    # ==================== SUBMISSION BOOKKEEPING (used by FormHandle) ====================

    def _begin_submit(self) -> int:
        self._is_submitting = True
        self._is_submitted = True
        return self._epoch.current

    def _record_submit(self, success: bool) -> None:
        """Record the outcome of a submission's validation pass."""
        self._is_submit_successful = success
        if success:
            self._submit_count += 1
        else:
            self._revalidating = True

    def _end_submit(self) -> None:
        self._is_submitting = False

    # ==================== WATCH ====================

    def watch(
        self,
        path: Union[None, PathLike, Iterable[PathLike]] = None,
        callback: Optional[SnapshotCallback] = None,
    ) -> Tuple[Any, Subscription]:
        """Return the current snapshot and a subscription for later changes.

        Does not push anything itself; deliveries come from later writes.

        Returns:
            (value, subscription) where value is the subtree at path, a list
            of subtrees for several paths, or the whole tree for None.
        """
        keys = normalize_paths(path)
        if keys is None:
            value = self.get_values()
        elif len(keys) == 1 and not isinstance(path, list):
            value = self.get_values(keys[0])
        else:
            value = [self.get_values(k) for k in keys]
        return value, self.channel.subscribe(callback, keys)

    # ==================== FIELD ARRAYS ====================

    def field_array(self, path: PathLike) -> FieldArray:
        """Get (or create) the array group controller for path."""
        key = normalize_path(path)
        group = self._arrays.get(key)
        if group is None:
            group = FieldArray(self, key)
            self._arrays[key] = group
        return group

    def _sync_arrays_touched_by(self, key: str) -> None:
        """Keep identity keys aligned after a direct write into an array path.

        A write inside an item past the end pads the list, so groups holding
        the written path are realigned as well as groups below it.
        """
        for array_path, group in self._arrays.items():
            if is_under(array_path, key) or array_index(key, array_path) is not None:
                group._resync()

    def _read_list(self, key: str) -> List[Any]:
        value = get_in(self._values, parse_path(key))
        if value is MISSING or value is None:
            return []
        if not isinstance(value, list):
            raise TypeError(f"Field array {key!r} holds {type(value).__name__}, not a list")
        return copy.deepcopy(value)

    def _apply_array_change(self, key: str, items: List[Any], index_map: Dict[int, Optional[int]]) -> None:
        """Commit a new item list for an array group.

        Args:
            key: Array path
            items: New item list
            index_map: old index -> new index (None = item removed). Errors,
                       meta and registrations follow their item.
        """
        removed = [old for old, new in index_map.items() if new is None]
        moves: Dict[str, Optional[str]] = {}
        for old, new in index_map.items():
            if new != old:
                moves[f"{key}.{old}"] = None if new is None else f"{key}.{new}"

        with self.channel.batch():
            set_in(self._values, parse_path(key), copy.deepcopy(items))
            if moves:
                mapper = rebase_mapper(moves)
                self._errors = self._remap(self._errors, mapper)
                self._meta = self._remap(self._meta, mapper)
                self.registry.remap(mapper)
                self._arrays = self._remap(self._arrays, mapper)
                for array_path, group in self._arrays.items():
                    group.path = array_path
            if removed:
                self._epoch.bump(f"array remove {key} {removed}")
                logger.info(f"Purged state of {len(removed)} removed item(s) under {key}")
            for path, meta in self._meta.items():
                if is_under(path, key) or is_under(key, path):
                    meta.dirty = self._compute_dirty(path)
            self._meta_for(key).dirty = self._compute_dirty(key)
            self.channel.publish([key])

    @staticmethod
    def _remap(mapping: Dict[str, Any], mapper: Callable[[str], Optional[str]]) -> Dict[str, Any]:
        remapped = {}
        for path, entry in mapping.items():
            new_path = mapper(path)
            if new_path is not None:
                remapped[new_path] = entry
        return remapped

    # ==================== TEARDOWN ====================

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Tear down: release subscribers and cancel pending validation."""
        if self._closed:
            return
        self._closed = True
        self._epoch.bump("close")
        for task in list(self._pending_tasks):
            task.cancel()
        self._pending_tasks.clear()
        self.channel.close()
        logger.debug("Closed FormStateContainer")


async def _await(awaitable) -> Any:
    return await awaitable
