"""
Field binding: the contract between a form and one Field Renderer.

A renderer never touches the container directly. It gets a FieldController
for its path, reads FieldProps, calls write() on input and blur() when it
loses focus, and attaches itself so the form can move focus to it.

Lifecycle mirrors a mounted control: construction registers the path,
unmount() detaches the renderer and, when should_unregister is in effect,
removes the path's value and state from the form.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from formconf.context_manager import ConfigNode, FormConfig, get_form_config
from formstate.field_registry import Focusable, FieldRule
from formstate.options import ValidationMode
from formstate.paths import PathLike, normalize_path
from formstate.state_model import FieldError, FieldState
from formstate.subscription import SnapshotCallback, Subscription

if TYPE_CHECKING:
    from formstate.handle import FormHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldProps:
    """Everything a renderer needs to paint one control."""
    path: str
    value: Any
    error: Optional[FieldError]
    touched: bool
    dirty: bool
    required: bool
    show_asterisk: bool

    @property
    def invalid(self) -> bool:
        return self.error is not None


class FieldController:
    """
    Binding of one renderer to one field path.

    Always resolves the container through the form's handle, so a controller
    keeps working after the form is reconfigured.

    Thread safety: Not thread-safe (same model as the container).
    """

    def __init__(
        self,
        handle: 'FormHandle',
        path: PathLike,
        validate: Optional[FieldRule] = None,
        required: bool = False,
        deps: Iterable[str] = (),
        should_unregister: Optional[bool] = None,
        config_node: Optional[ConfigNode] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            handle: Handle of the owning form
            path: Field path this control is bound to
            validate: Per-field rule, validate(value, values) -> error or None
            required: Whether the field is required (drives the asterisk)
            deps: Paths whose writes re-validate this field
            should_unregister: Override the form's should_unregister option
            config_node: Composition node to read FormConfig from; when
                         omitted, the ambient config_provider() is used
            metadata: Free-form renderer metadata stored in the registry
        """
        self._handle = handle
        self.path = normalize_path(path)
        self.required = required
        self.config_node = config_node
        self._should_unregister = should_unregister
        self._renderer: Optional[Focusable] = None
        self._mounted = True

        handle.container.register(self.path, validate=validate, required=required, deps=deps, metadata=metadata)
        logger.debug(f"Mounted control: {self.path} (required={required})")

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def should_unregister(self) -> bool:
        if self._should_unregister is not None:
            return self._should_unregister
        return self._handle.container.options.should_unregister

    def _check_mounted(self) -> None:
        if not self._mounted:
            raise RuntimeError(f"Control {self.path!r} is unmounted")

    # ==================== READS ====================

    @property
    def config(self) -> FormConfig:
        """FormConfig in effect for this control.

        Raises:
            MissingProviderError: If no provider is reachable
        """
        if self.config_node is not None:
            return self.config_node.config
        return get_form_config()

    @property
    def field_state(self) -> FieldState:
        return self._handle.get_field_state(self.path)

    @property
    def props(self) -> FieldProps:
        """Current props; reading them requires a reachable provider."""
        config = self.config
        state = self.field_state
        return FieldProps(
            path=self.path,
            value=state.value,
            error=state.error,
            touched=state.touched,
            dirty=state.dirty,
            required=self.required,
            show_asterisk=self.required and config.show_asterisk,
        )

    # ==================== RENDERER EVENTS ====================

    def write(self, value: Any) -> None:
        """Renderer input: store value, auto-validating per the form's mode."""
        self._check_mounted()
        container = self._handle.container
        container.set_value(
            self.path,
            value,
            should_validate=container.validates_on(ValidationMode.ON_CHANGE),
        )

    def blur(self) -> None:
        """Renderer lost focus: mark touched and validate in onBlur mode."""
        self._check_mounted()
        container = self._handle.container
        container.mark_touched(self.path)
        if container.validates_on(ValidationMode.ON_BLUR):
            container._auto_validate((self.path,))

    def subscribe(self, callback: SnapshotCallback) -> Subscription:
        """Subscribe to changes affecting this field."""
        _, subscription = self._handle.watch(self.path, callback)
        return subscription

    # ==================== MOUNTING ====================

    def attach(self, renderer: Focusable) -> None:
        """Attach the renderer that takes focus for this path."""
        self._check_mounted()
        self._handle.container.registry.attach_renderer(self.path, renderer)
        self._renderer = renderer

    def detach(self) -> None:
        if self._renderer is None:
            return
        self._handle.container.registry.detach_renderer(self.path, self._renderer)
        self._renderer = None

    def unmount(self) -> None:
        """Release the control. Idempotent."""
        if not self._mounted:
            return
        self.detach()
        self._mounted = False
        if self.should_unregister:
            self._handle.unregister(self.path)
        logger.debug(f"Unmounted control: {self.path} (unregistered={self.should_unregister})")

    def __enter__(self) -> 'FieldController':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unmount()

    def __repr__(self) -> str:
        state = "mounted" if self._mounted else "unmounted"
        return f"FieldController({self.path!r}, {state})"
