"""
Validation collaborator contract.

The framework does not define rule syntax. It calls:
- a form-level resolver: resolver(values, paths) -> ErrorTree
- per-field rules registered with a control: validate(value, values) -> error

Either may return its result directly or as an awaitable. Results are
normalized into a flat {path: FieldError} tree restricted to the checked
paths. An empty tree means success.

Stale-result suppression uses a monotonically increasing epoch: a result is
applied only if no reset()/unregister() happened since it was requested.
"""
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from formstate.errors import StaleResultDiscarded
from formstate.paths import MISSING, flatten, format_path, get_in, is_under, parse_path
from formstate.state_model import FieldError

logger = logging.getLogger(__name__)

ErrorTree = Dict[str, FieldError]
RawErrors = Mapping[str, Any]
Resolver = Callable[[Dict[str, Any], Optional[Tuple[str, ...]]], Union[RawErrors, Awaitable[RawErrors]]]

DEFAULT_RULE_KIND = 'validate'


def _is_error_leaf(node: Any) -> bool:
    if isinstance(node, FieldError):
        return True
    return isinstance(node, Mapping) and ('kind' in node or 'type' in node or 'message' in node)


def coerce_error(raw: Any, default_kind: str = DEFAULT_RULE_KIND) -> Optional[FieldError]:
    """Turn a rule/resolver result into a FieldError, or None for success.

    Accepted shapes:
        None, True, ""            -> success
        False                     -> FieldError(default_kind)
        "message"                 -> FieldError(default_kind, "message")
        FieldError                -> itself
        {"kind"|"type", "message"} -> FieldError
    """
    if raw is None or raw is True or raw == "":
        return None
    if raw is False:
        return FieldError(kind=default_kind)
    if isinstance(raw, FieldError):
        return raw
    if isinstance(raw, str):
        return FieldError(kind=default_kind, message=raw)
    if isinstance(raw, Mapping):
        kind = raw.get('kind', raw.get('type', default_kind))
        return FieldError(kind=str(kind), message=str(raw.get('message', '')))
    raise TypeError(f"Unsupported validation result: {raw!r}")


def normalize_errors(raw: Optional[RawErrors]) -> ErrorTree:
    """Normalize a flat or nested error mapping into {canonical_path: FieldError}."""
    if not raw:
        return {}
    errors: ErrorTree = {}
    for path, leaf in flatten(raw, is_leaf=_is_error_leaf).items():
        error = coerce_error(leaf)
        if error is not None:
            errors[format_path(parse_path(path))] = error
    return errors


def restrict_errors(errors: ErrorTree, paths: Optional[Tuple[str, ...]]) -> ErrorTree:
    """Keep only errors at or below the checked paths (None keeps all)."""
    if paths is None:
        return dict(errors)
    return {p: e for p, e in errors.items() if any(is_under(p, checked) for checked in paths)}


def merge_errors(*trees: ErrorTree) -> ErrorTree:
    """Merge error trees; the first tree reporting a path wins."""
    merged: ErrorTree = {}
    for tree in trees:
        for path, error in tree.items():
            merged.setdefault(path, error)
    return merged


def run_validation(
    values: Dict[str, Any],
    paths: Optional[Tuple[str, ...]],
    resolver: Optional[Resolver],
    rules: List[Any],
) -> Union[ErrorTree, Awaitable[ErrorTree]]:
    """Run the resolver and the per-field rules against a value snapshot.

    Args:
        values: Snapshot of the whole value tree
        paths: Checked paths (None = whole tree)
        resolver: Form-level collaborator, or None
        rules: FieldDescriptors carrying a validate rule

    Returns:
        The combined ErrorTree, or an awaitable of it if any part is asynchronous.
    """
    parts: List[Tuple[Optional[str], Any]] = []
    if resolver is not None:
        parts.append((None, resolver(values, paths)))
    for descriptor in rules:
        value = get_in(values, parse_path(descriptor.path))
        parts.append((descriptor.path, descriptor.validate(None if value is MISSING else value, values)))

    if any(inspect.isawaitable(result) for _, result in parts):
        return _gather(parts)
    return _combine(parts)


def _combine(parts: List[Tuple[Optional[str], Any]]) -> ErrorTree:
    resolver_errors: ErrorTree = {}
    rule_errors: ErrorTree = {}
    for path, result in parts:
        if path is None:
            resolver_errors = normalize_errors(result)
        else:
            error = coerce_error(result)
            if error is not None:
                rule_errors[path] = error
    return merge_errors(resolver_errors, rule_errors)


async def _gather(parts: List[Tuple[Optional[str], Any]]) -> ErrorTree:
    resolved = []
    for path, result in parts:
        if inspect.isawaitable(result):
            result = await result
        resolved.append((path, result))
    return _combine(resolved)


class ValidationEpoch:
    """Monotonic counter invalidating in-flight validation results.

    Same idea as a cache-invalidation token: capture current before starting
    work, call guard() when the result arrives.
    """

    def __init__(self):
        self._epoch = 0

    @property
    def current(self) -> int:
        return self._epoch

    def bump(self, reason: str = "") -> int:
        self._epoch += 1
        logger.debug(f"Validation epoch -> {self._epoch} ({reason})")
        return self._epoch

    def guard(self, started: int) -> None:
        """Raise StaleResultDiscarded if the epoch moved since started."""
        if started != self._epoch:
            raise StaleResultDiscarded(started, self._epoch)


def pydantic_resolver(model: Any) -> Resolver:
    """Build a resolver from a pydantic model class.

    Each entry of the model's ValidationError becomes a FieldError keyed by
    its location ("emails.0.address"); the pydantic error type is the kind.
    Model-level errors (empty location) are reported under "root".

    Example:
        class Signup(BaseModel):
            email: EmailLike
            age: int = Field(ge=18)

        form = create_form({'resolver': pydantic_resolver(Signup)})
    """
    from pydantic import ValidationError

    def resolve(values: Dict[str, Any], paths: Optional[Tuple[str, ...]] = None) -> ErrorTree:
        try:
            model.model_validate(values)
        except ValidationError as exc:
            errors: ErrorTree = {}
            for entry in exc.errors():
                location = format_path(entry['loc']) if entry['loc'] else 'root'
                errors.setdefault(location, FieldError(kind=entry['type'], message=entry['msg']))
            return restrict_errors(errors, paths)
        return {}

    return resolve
