"""
Contextvars-based provisioning of cross-cutting form presentation policy.

This module propagates presentation policy (e.g. whether required fields
are marked with an asterisk) down a tree of controls without threading it
through every intermediate layer.

Key components:
- FormConfig: Immutable policy object, replaced wholesale, never mutated
- current_form_config: ContextVar holding the innermost provisioned config
- config_provider(): Context manager that provisions a subtree
- get_form_config(): Read the provisioned config, failing loudly if absent
- ConfigNode: Explicit composition-tree node for callers that pass the
  configuration by reference instead of relying on ambient context

Reading configuration outside a provisioned subtree is a wiring mistake and
raises MissingProviderError instead of falling back to a default.
"""

import contextvars
import dataclasses
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

logger = logging.getLogger(__name__)


class MissingProviderError(LookupError):
    """Raised when form configuration is read outside of any provider."""


@dataclass(frozen=True)
class FormConfig:
    """Presentation policy shared by every control below a provider.

    Attributes:
        show_asterisk: Mark required fields with an asterisk
    """
    show_asterisk: bool = False


# Innermost provisioned config. None means "no provider" and is never
# replaced by a default on read.
current_form_config: contextvars.ContextVar[Optional[FormConfig]] = contextvars.ContextVar(
    'current_form_config', default=None
)

# Provider nesting depth, for debugging wiring problems
provider_depth: contextvars.ContextVar[int] = contextvars.ContextVar('provider_depth', default=0)


def _build_config(config: Optional[FormConfig], overrides: dict) -> FormConfig:
    if config is None:
        return FormConfig(**overrides)
    if overrides:
        return dataclasses.replace(config, **overrides)
    return config


@contextmanager
def config_provider(config: Optional[FormConfig] = None, **overrides) -> Iterator[FormConfig]:
    """
    Provision a subtree with a form configuration.

    Nested providers replace the outer configuration wholesale for their
    subtree; the outer one is restored on exit.

    Args:
        config: Configuration to provision. Built from overrides if omitted.
        **overrides: Field values applied on top of config (producing a new object)

    Usage:
        with config_provider(show_asterisk=True):
            render_fields()      # get_form_config().show_asterisk is True

        with config_provider(FormConfig(show_asterisk=True)):
            with config_provider(show_asterisk=False):
                ...              # inner subtree sees False
    """
    provisioned = _build_config(config, overrides)
    config_token = current_form_config.set(provisioned)
    depth_token = provider_depth.set(provider_depth.get() + 1)
    logger.debug(f"Provisioned {provisioned} (depth={provider_depth.get()})")
    try:
        yield provisioned
    finally:
        current_form_config.reset(config_token)
        provider_depth.reset(depth_token)


def get_form_config() -> FormConfig:
    """
    Get the configuration of the innermost active provider.

    Raises:
        MissingProviderError: If called outside of any config_provider()
    """
    config = current_form_config.get()
    if config is None:
        raise MissingProviderError("get_form_config() must be used within a config_provider()")
    return config


def has_form_config() -> bool:
    """Check whether a provider is active (for diagnostics, not for defaulting)."""
    return current_form_config.get() is not None


class ConfigNode:
    """
    Node of an explicit composition tree carrying configuration by reference.

    A node either provisions its own FormConfig or inherits its parent's.
    Children never copy the configuration; they read through the parent
    chain, so re-provisioning an ancestor is seen by every descendant.

    Example:
        root = ConfigNode.provide(FormConfig(show_asterisk=True))
        field_node = root.child().child()
        field_node.config.show_asterisk      # True
        root.reprovision(FormConfig(show_asterisk=False))
        field_node.config.show_asterisk      # False

        ConfigNode().config                  # MissingProviderError
    """

    def __init__(self, parent: Optional['ConfigNode'] = None, config: Optional[FormConfig] = None):
        self._parent = parent
        self._config = config
        self.revision = 0
        self._on_reprovision_callbacks: List[Callable[[FormConfig], None]] = []

    @classmethod
    def provide(cls, config: FormConfig, parent: Optional['ConfigNode'] = None) -> 'ConfigNode':
        """Create a node that provisions config for its subtree."""
        return cls(parent=parent, config=config)

    @property
    def parent(self) -> Optional['ConfigNode']:
        return self._parent

    @property
    def is_provider(self) -> bool:
        return self._config is not None

    def child(self) -> 'ConfigNode':
        """Create a descendant that inherits this node's configuration."""
        return ConfigNode(parent=self)

    def provide_child(self, config: FormConfig) -> 'ConfigNode':
        """Create a descendant that re-provisions its own subtree."""
        return ConfigNode.provide(config, parent=self)

    @property
    def config(self) -> FormConfig:
        """Configuration of the nearest provisioning ancestor (or self).

        Raises:
            MissingProviderError: If no node on the path to the root provisions one
        """
        node: Optional[ConfigNode] = self
        while node is not None:
            if node._config is not None:
                return node._config
            node = node._parent
        raise MissingProviderError("ConfigNode has no provisioning ancestor")

    def reprovision(self, config: FormConfig) -> bool:
        """Replace this node's configuration wholesale.

        Only a change of identity re-provisions; passing the same object is a no-op.

        Returns:
            True if descendants were re-provisioned.
        """
        if config is self._config:
            return False
        self._config = config
        self.revision += 1
        logger.debug(f"Re-provisioned ConfigNode (revision={self.revision}): {config}")
        for callback in list(self._on_reprovision_callbacks):
            try:
                callback(config)
            except Exception as e:
                logger.warning(f"Error in reprovision callback: {e}")
        return True

    def on_reprovision(self, callback: Callable[[FormConfig], None]) -> None:
        """Subscribe to wholesale configuration replacement on this node."""
        if callback not in self._on_reprovision_callbacks:
            self._on_reprovision_callbacks.append(callback)

    def off_reprovision(self, callback: Callable[[FormConfig], None]) -> None:
        """Unsubscribe from configuration replacement."""
        if callback in self._on_reprovision_callbacks:
            self._on_reprovision_callbacks.remove(callback)

    @contextmanager
    def activate(self) -> Iterator[FormConfig]:
        """Expose this node's configuration as ambient context for a block."""
        with config_provider(self.config) as config:
            yield config
