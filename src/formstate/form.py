"""
Form: composition root wiring a container, its handle, the change channel
and the configuration node together.

    form = create_form(
        {'mode': 'onChange', 'initial_values': {'email': ''}},
        on_submit=save,
        on_error=show_errors,
        on_change=autosave,
        show_asterisk=True,
    )
    email = form.control('email', required=True, validate=check_email)
    email.attach(widget)
    ...
    form.handle.submit()
    form.close()

The handle keeps its identity for the form's whole lifetime. reconfigure()
swaps the container underneath it.
"""
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Union

from formconf.context_manager import ConfigNode, FormConfig
from formstate.binding import FieldController
from formstate.field_array import FieldArray
from formstate.field_registry import FieldRule
from formstate.form_state import FormStateContainer
from formstate.handle import ErrorCallback, FormHandle, SubmitCallback
from formstate.options import FormOptions
from formstate.paths import PathLike
from formstate.subscription import Subscription

logger = logging.getLogger(__name__)

OptionsLike = Union[None, FormOptions, Dict[str, Any]]
ChangeCallback = Callable[[Dict[str, Any]], Any]


class Form:
    """
    One form session.

    Owns exactly one FormStateContainer at a time and one FormHandle for
    its whole lifetime. Usable as a context manager; close() on exit.
    """

    def __init__(
        self,
        options: OptionsLike = None,
        on_submit: Optional[SubmitCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_change: Optional[ChangeCallback] = None,
        show_asterisk: bool = False,
        config_parent: Optional[ConfigNode] = None,
    ):
        """
        Args:
            options: FormOptions or a mapping (snake_case or camelCase keys)
            on_submit: Called with the value tree after a successful submit
            on_error: Called with the error tree after a failed submit
            on_change: Called with the value tree after every change
            show_asterisk: Mark required controls with an asterisk
            config_parent: Enclosing composition node, if the form is nested
        """
        self._container = FormStateContainer(options)
        self.handle = FormHandle(self._container, on_submit=on_submit, on_error=on_error)
        self.config_node = ConfigNode.provide(FormConfig(show_asterisk=show_asterisk), parent=config_parent)
        self._on_change = on_change
        self._change_subscription: Optional[Subscription] = None
        self._controls: Dict[str, FieldController] = {}
        self._closed = False
        self._wire_change_callback()

    def _wire_change_callback(self) -> None:
        if self._on_change is None:
            return
        _, self._change_subscription = self._container.watch(None, self._on_change)

    # ==================== ACCESSORS ====================

    @property
    def container(self) -> FormStateContainer:
        return self._container

    @property
    def options(self) -> FormOptions:
        return self._container.options

    @property
    def config(self) -> FormConfig:
        return self.config_node.config

    @property
    def closed(self) -> bool:
        return self._closed

    # ==================== CONTROLS ====================

    def control(
        self,
        path: PathLike,
        validate: Optional[FieldRule] = None,
        required: bool = False,
        deps: Iterable[str] = (),
        should_unregister: Optional[bool] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FieldController:
        """Mount a control at path and return its binding.

        The control reads its configuration from a child of this form's
        configuration node.
        """
        controller = FieldController(
            self.handle,
            path,
            validate=validate,
            required=required,
            deps=deps,
            should_unregister=should_unregister,
            config_node=self.config_node.child(),
            metadata=metadata,
        )
        previous = self._controls.get(controller.path)
        if previous is not None and previous.mounted:
            logger.warning(f"Control {controller.path!r} mounted twice; the newer binding wins")
        self._controls[controller.path] = controller
        return controller

    def field_array(self, path: PathLike) -> FieldArray:
        return self._container.field_array(path)

    # ==================== RECONFIGURATION ====================

    def reconfigure(self, options: OptionsLike) -> FormHandle:
        """Replace the container with one built from new options.

        Registrations and mounted renderers carry over; values start from the
        new options' initial values. The handle is re-pointed, not recreated.

        Returns:
            The same handle object as before.
        """
        old = self._container
        if self._change_subscription is not None:
            self._change_subscription.release()
            self._change_subscription = None

        self._container = FormStateContainer(options, registry=old.registry)
        self.handle._bind(self._container)
        self._wire_change_callback()
        old.close()
        logger.debug(f"Reconfigured form (mode={self._container.options.mode.value})")
        return self.handle

    def update_config(self, **changes) -> FormConfig:
        """Re-provision the form's configuration with some fields replaced."""
        from dataclasses import replace

        config = replace(self.config_node.config, **changes)
        self.config_node.reprovision(config)
        return config

    # ==================== TEARDOWN ====================

    def close(self) -> None:
        """Unmount every control and release the container. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for controller in list(self._controls.values()):
            controller.detach()
        self._controls.clear()
        if self._change_subscription is not None:
            self._change_subscription.release()
            self._change_subscription = None
        self._container.close()
        logger.debug("Closed form")

    def __enter__(self) -> 'Form':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def create_form(
    options: OptionsLike = None,
    on_submit: Optional[SubmitCallback] = None,
    on_error: Optional[ErrorCallback] = None,
    on_change: Optional[ChangeCallback] = None,
    show_asterisk: bool = False,
) -> Form:
    """Instantiate a form; options default to onSubmit / onChange / focus errors."""
    return Form(
        options,
        on_submit=on_submit,
        on_error=on_error,
        on_change=on_change,
        show_asterisk=show_asterisk,
    )
