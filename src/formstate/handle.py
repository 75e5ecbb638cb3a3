"""
FormHandle: stable imperative facade over a FormStateContainer.

The handle is constructed once per form and keeps its identity for the
form's whole lifetime. When the underlying container is replaced (the form
is reconfigured), the handle is re-pointed with _bind(), never recreated, so
callers may hold on to it indefinitely.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from formstate.form_state import FormStateContainer
from formstate.paths import MISSING, PathLike
from formstate.state_model import FieldError, FieldState, FormState
from formstate.subscription import SnapshotCallback, Subscription
from formstate.validation import ErrorTree

logger = logging.getLogger(__name__)

SubmitCallback = Callable[[Dict[str, Any]], Any]
ErrorCallback = Callable[[ErrorTree], Any]


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of one submission.

    discarded is True when a reset()/unregister() superseded the validation
    while it was outstanding; no callback ran in that case.
    """
    success: bool
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, FieldError] = field(default_factory=dict)
    discarded: bool = False


class FormHandle:
    """Imperative control surface handed to the code that owns the form."""

    def __init__(
        self,
        container: FormStateContainer,
        on_submit: Optional[SubmitCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self._container = container
        self.on_submit = on_submit
        self.on_error = on_error
        self._inflight: Optional['asyncio.Future'] = None

    def _bind(self, container: FormStateContainer) -> None:
        """Re-point the handle at a replacement container."""
        logger.debug(f"Re-pointing FormHandle {id(self):#x} to a new container")
        self._container = container
        self._inflight = None

    @property
    def container(self) -> FormStateContainer:
        return self._container

    # ==================== FORWARDED OPERATIONS ====================

    def set_value(self, path: PathLike, value: Any, **options) -> None:
        self._container.set_value(path, value, **options)

    def set_values(self, values: Dict[str, Any], **options) -> None:
        self._container.set_values(values, **options)

    def get_values(self, path: Optional[PathLike] = None) -> Any:
        return self._container.get_values(path)

    def set_error(self, path: PathLike, error: Any, should_focus: bool = False) -> None:
        self._container.set_error(path, error, should_focus=should_focus)

    def clear_errors(self, paths: Union[None, PathLike, Iterable[PathLike]] = None) -> None:
        self._container.clear_errors(paths)

    def reset(self, next_initial_values: Optional[Dict[str, Any]] = None, keep_errors: bool = False) -> None:
        self._container.reset(next_initial_values, keep_errors=keep_errors)

    def reset_field(self, path: PathLike, default_value: Any = MISSING) -> None:
        self._container.reset_field(path, default_value=default_value)

    def trigger(self, paths: Union[None, PathLike, Iterable[PathLike]] = None) -> bool:
        return self._container.trigger(paths)

    async def trigger_async(self, paths: Union[None, PathLike, Iterable[PathLike]] = None) -> bool:
        return await self._container.trigger_async(paths)

    def unregister(self, path: PathLike) -> None:
        self._container.unregister(path)

    def watch(
        self,
        path: Union[None, PathLike, Iterable[PathLike]] = None,
        callback: Optional[SnapshotCallback] = None,
    ) -> Tuple[Any, Subscription]:
        return self._container.watch(path, callback)

    def get_field_state(self, path: PathLike) -> FieldState:
        return self._container.get_field_state(path)

    @property
    def form_state(self) -> FormState:
        return self._container.form_state

    # ==================== FOCUS ====================

    def set_focus(self, path: PathLike, should_select: bool = False) -> bool:
        """Focus the renderer mounted at path.

        Not fatal when nothing is mounted there: a warning is logged and
        False is returned.
        """
        return self._container.focus(path, should_select=should_select)

    # ==================== SUBMIT ====================

    def submit(self) -> Optional[SubmitResult]:
        """Validate the whole form and dispatch to on_submit / on_error.

        A call made while a submission is outstanding (e.g. from inside a
        callback) is coalesced and returns None.

        Raises:
            RuntimeError: If the validator or callback is asynchronous and an
                          event loop is already running (use submit_async())
        """
        container = self._container
        if container.is_submitting:
            logger.debug("submit() while submitting: coalesced")
            return None

        started = container._begin_submit()
        try:
            outcome = container._start_validation(None)
            if inspect.isawaitable(outcome):
                outcome = container._drive(outcome, "submit")
            result, returned = self._dispatch(container, outcome, started)
            if inspect.isawaitable(returned):
                container._drive(returned, "submit")
            return result
        finally:
            container._end_submit()

    async def submit_async(self) -> Optional[SubmitResult]:
        """Awaitable submit().

        Concurrent calls while a submission is outstanding share it: exactly
        one validation pass and one callback run, and every caller receives
        the same SubmitResult. A call made from inside the submission's own
        callback is coalesced and returns None.
        """
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            if inflight is asyncio.current_task():
                logger.debug("submit_async() re-entered from a callback: coalesced")
                return None
            logger.debug("submit_async() while submitting: awaiting in-flight result")
            return await inflight

        container = self._container
        if container.is_submitting:
            logger.debug("submit_async() during a synchronous submit: coalesced")
            return None

        self._inflight = asyncio.ensure_future(self._submit_once(container))
        return await self._inflight

    async def _submit_once(self, container: FormStateContainer) -> SubmitResult:
        started = container._begin_submit()
        try:
            outcome = container._start_validation(None)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            result, returned = self._dispatch(container, outcome, started)
            if inspect.isawaitable(returned):
                await returned
            return result
        finally:
            container._end_submit()

    def _dispatch(self, container: FormStateContainer, ok: bool, started: int) -> Tuple[SubmitResult, Any]:
        """Record a finished validation pass and invoke the matching callback.

        Returns the SubmitResult and whatever the callback returned, so the
        caller can await an asynchronous callback while still submitting.
        """
        if started != container.epoch:
            logger.debug(f"Submission from epoch {started} discarded (now {container.epoch})")
            return SubmitResult(success=False, discarded=True), None

        values = container.get_values()
        errors = container.errors
        container._record_submit(ok)

        if ok:
            logger.debug(f"Submit succeeded (submit_count={container.submit_count})")
            returned = self.on_submit(values) if self.on_submit is not None else None
            return SubmitResult(success=True, values=values, errors=errors), returned

        logger.debug(f"Submit failed with {len(errors)} error(s)")
        returned = self.on_error(errors) if self.on_error is not None else None
        if container.options.should_focus_error:
            first = container.first_error_path(errors)
            if first is not None:
                container.focus(first)
        return SubmitResult(success=False, values=values, errors=errors), returned
