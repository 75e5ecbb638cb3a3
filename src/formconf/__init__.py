"""
Contextual configuration provider for form controls.

Propagates presentation policy to every control below a provider, either
through ambient context (contextvars) or through an explicit ConfigNode tree.

Quick Start:
    >>> from formconf import config_provider, get_form_config
    >>> with config_provider(show_asterisk=True):
    ...     get_form_config().show_asterisk
    True
"""

from formconf.context_manager import (
    FormConfig,
    ConfigNode,
    MissingProviderError,
    config_provider,
    get_form_config,
    has_form_config,
)

__all__ = [
    'FormConfig',
    'ConfigNode',
    'MissingProviderError',
    'config_provider',
    'get_form_config',
    'has_form_config',
]
