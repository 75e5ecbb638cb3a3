"""Instantiation configuration for a form."""

import copy
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from formstate.validation import Resolver


class ValidationMode(Enum):
    """When a registered control auto-triggers validation on write."""
    ON_SUBMIT = 'onSubmit'
    ON_CHANGE = 'onChange'
    ON_BLUR = 'onBlur'


# camelCase option names accepted in mapping form
_OPTION_ALIASES = {
    'reValidateMode': 're_validate_mode',
    'shouldFocusError': 'should_focus_error',
    'initialValues': 'initial_values',
    'defaultValues': 'initial_values',
    'shouldUnregister': 'should_unregister',
}


@dataclass(frozen=True)
class FormOptions:
    """Options recognized when instantiating a form.

    Attributes:
        mode: Auto-validation trigger before the first failed submission
        re_validate_mode: Auto-validation trigger after a failed submission
        should_focus_error: Focus the first invalid field when submit fails
        initial_values: Initial value tree (also the dirty baseline)
        resolver: Form-level validation collaborator
        should_unregister: Unmounting a control removes its value
    """
    mode: ValidationMode = ValidationMode.ON_SUBMIT
    re_validate_mode: ValidationMode = ValidationMode.ON_CHANGE
    should_focus_error: bool = True
    initial_values: Optional[Dict[str, Any]] = None
    resolver: Optional[Resolver] = None
    should_unregister: bool = False

    def __post_init__(self):
        # Accept plain strings ("onBlur") for the enum fields
        object.__setattr__(self, 'mode', ValidationMode(self.mode))
        object.__setattr__(self, 're_validate_mode', ValidationMode(self.re_validate_mode))
        if self.initial_values is not None and not isinstance(self.initial_values, Mapping):
            raise TypeError(f"initial_values must be a mapping, got {type(self.initial_values).__name__}")

    @classmethod
    def coerce(cls, options: Union[None, 'FormOptions', Mapping[str, Any]]) -> 'FormOptions':
        """Build FormOptions from None, an instance, or a mapping.

        Mapping keys may be snake_case or camelCase (reValidateMode,
        shouldFocusError, initialValues/defaultValues, shouldUnregister).
        """
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        if not isinstance(options, Mapping):
            raise TypeError(f"Unsupported form options: {type(options).__name__}")

        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown form option: {key!r}")
            kwargs[name] = value
        return cls(**kwargs)

    def initial_tree(self) -> Dict[str, Any]:
        """Deep copy of the initial values (empty tree if none were given)."""
        return copy.deepcopy(dict(self.initial_values or {}))

    def active_mode(self, revalidating: bool) -> ValidationMode:
        return self.re_validate_mode if revalidating else self.mode

    def validates_on(self, trigger: ValidationMode, revalidating: bool) -> bool:
        """Whether a control event (ON_CHANGE / ON_BLUR) auto-validates."""
        return self.active_mode(revalidating) is trigger
