"""
Form-state orchestration: one consistent state container per form.

Binds a tree of input controls to a single source of truth (values,
validation errors, dirty/touched flags), exposes that state to controls
through field bindings, and gives the code owning the form a stable
imperative handle.

Key Features:
- Path-indexed value tree with centralized path parsing
- Synchronous, coalesced change subscriptions with disposable tokens
- Field arrays with stable identity keys
- Pluggable validation (sync or async resolver, per-field rules, pydantic)
- Stale async validation results discarded after reset/unregister
- Contextual presentation configuration (see the formconf package)

Quick Start:
    >>> from formstate import create_form
    >>>
    >>> def check(values, paths):
    ...     if '@' not in values.get('email', ''):
    ...         return {'email': {'kind': 'pattern', 'message': 'Invalid email'}}
    ...     return {}
    >>>
    >>> form = create_form({'initial_values': {'email': ''}, 'resolver': check})
    >>> form.handle.set_value('email', 'bad')
    >>> form.handle.submit().success
    False
    >>> form.handle.set_value('email', 'a@b.co')
    >>> form.handle.submit().success
    True

Modules:
    - paths: FieldPath parsing and nested tree access
    - form_state: FormStateContainer (the single source of truth)
    - handle: FormHandle imperative facade and SubmitResult
    - subscription: Change subscription channel
    - field_array: Field arrays with identity keys
    - validation: Validation collaborator contract and pydantic adapter
    - options: FormOptions / ValidationMode
    - binding: FieldController / FieldProps for renderers
    - form: Form composition root
"""

# Paths
from formstate.paths import (
    MISSING,
    parse_path,
    format_path,
    normalize_path,
    get_in,
    set_in,
    flatten,
)

# Errors
from formstate.errors import (
    FormStateError,
    InvalidPathError,
    MissingProviderError,
    StaleResultDiscarded,
)

# State model
from formstate.state_model import FieldError, FieldMeta, FieldState, FormState

# Registry
from formstate.field_registry import FieldDescriptor, FieldRegistry, Focusable

# Container
from formstate.form_state import FormStateContainer

# Subscriptions
from formstate.subscription import ChangeSubscriptionChannel, Subscription

# Field arrays
from formstate.field_array import ArrayItem, FieldArray

# Handle
from formstate.handle import FormHandle, SubmitResult

# Validation
from formstate.validation import (
    ValidationEpoch,
    coerce_error,
    normalize_errors,
    pydantic_resolver,
)

# Options
from formstate.options import FormOptions, ValidationMode

# Binding
from formstate.binding import FieldController, FieldProps

# Form
from formstate.form import Form, create_form

__all__ = [
    # Paths
    'MISSING',
    'parse_path',
    'format_path',
    'normalize_path',
    'get_in',
    'set_in',
    'flatten',
    # Errors
    'FormStateError',
    'InvalidPathError',
    'MissingProviderError',
    'StaleResultDiscarded',
    # State model
    'FieldError',
    'FieldMeta',
    'FieldState',
    'FormState',
    # Registry
    'FieldDescriptor',
    'FieldRegistry',
    'Focusable',
    # Container
    'FormStateContainer',
    # Subscriptions
    'ChangeSubscriptionChannel',
    'Subscription',
    # Field arrays
    'ArrayItem',
    'FieldArray',
    # Handle
    'FormHandle',
    'SubmitResult',
    # Validation
    'ValidationEpoch',
    'coerce_error',
    'normalize_errors',
    'pydantic_resolver',
    # Options
    'FormOptions',
    'ValidationMode',
    # Binding
    'FieldController',
    'FieldProps',
    # Form
    'Form',
    'create_form',
]

__version__ = '1.0.0'
__description__ = 'Form-state orchestration with a single state container per form'
