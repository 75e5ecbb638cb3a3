"""Tests for the contextual configuration provider (formconf)."""
import asyncio
import contextvars
import dataclasses
import logging

import pytest

from formconf import (
    ConfigNode,
    FormConfig,
    MissingProviderError,
    config_provider,
    get_form_config,
    has_form_config,
)
from formconf.context_manager import provider_depth


class TestConfigProvider:
    """Test ambient provisioning with config_provider()."""

    def test_read_outside_provider_raises(self):
        assert not has_form_config()
        with pytest.raises(MissingProviderError):
            get_form_config()

    def test_missing_provider_is_lookup_error(self):
        with pytest.raises(LookupError):
            get_form_config()

    def test_provider_yields_config(self):
        config = FormConfig(show_asterisk=True)
        with config_provider(config) as provisioned:
            assert provisioned is config
            assert get_form_config() is config
            assert has_form_config()
        assert not has_form_config()

    def test_overrides_build_a_new_object(self):
        base = FormConfig(show_asterisk=False)
        with config_provider(base, show_asterisk=True) as provisioned:
            assert provisioned is not base
            assert provisioned.show_asterisk
        assert base.show_asterisk is False

    def test_nested_providers_replace_and_restore(self):
        with config_provider(show_asterisk=True):
            with config_provider(show_asterisk=False):
                assert get_form_config().show_asterisk is False
                assert provider_depth.get() == 2
            assert get_form_config().show_asterisk is True
            assert provider_depth.get() == 1

    def test_restored_after_exception(self):
        with pytest.raises(RuntimeError):
            with config_provider(show_asterisk=True):
                raise RuntimeError("boom")
        assert not has_form_config()

    def test_config_is_immutable(self):
        config = FormConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.show_asterisk = True

    def test_copied_context_sees_provider(self):
        with config_provider(show_asterisk=True):
            context = contextvars.copy_context()
        assert context.run(get_form_config).show_asterisk

    def test_tasks_inherit_provider(self):
        async def read():
            return get_form_config().show_asterisk

        async def scenario():
            with config_provider(show_asterisk=True):
                return await asyncio.ensure_future(read())

        assert asyncio.run(scenario()) is True


class TestConfigNode:
    """Test explicit by-reference propagation."""

    def test_children_inherit_parent_config(self):
        config = FormConfig(show_asterisk=True)
        root = ConfigNode.provide(config)
        leaf = root.child().child()
        assert leaf.config is config
        assert not leaf.is_provider
        assert leaf.parent.parent is root

    def test_node_without_provider_raises(self):
        with pytest.raises(MissingProviderError):
            ConfigNode().child().config

    def test_provide_child_overrides_subtree(self):
        root = ConfigNode.provide(FormConfig(show_asterisk=True))
        section = root.provide_child(FormConfig(show_asterisk=False))
        assert section.child().config.show_asterisk is False
        assert root.child().config.show_asterisk is True

    def test_reprovision_reaches_descendants(self):
        root = ConfigNode.provide(FormConfig(show_asterisk=True))
        leaf = root.child()
        replacement = FormConfig(show_asterisk=False)
        assert root.reprovision(replacement)
        assert leaf.config is replacement
        assert root.revision == 1

    def test_reprovision_same_object_is_noop(self):
        config = FormConfig()
        root = ConfigNode.provide(config)
        seen = []
        root.on_reprovision(seen.append)
        assert not root.reprovision(config)
        assert seen == []
        assert root.revision == 0

    def test_reprovision_callbacks(self, caplog):
        root = ConfigNode.provide(FormConfig())
        seen = []

        def broken(config):
            raise ValueError("bad listener")

        root.on_reprovision(broken)
        root.on_reprovision(seen.append)
        root.on_reprovision(seen.append)
        with caplog.at_level(logging.WARNING, logger="formconf.context_manager"):
            root.reprovision(FormConfig(show_asterisk=True))
        assert len(seen) == 1
        assert "bad listener" in caplog.text

        root.off_reprovision(seen.append)
        root.reprovision(FormConfig())
        assert len(seen) == 1

    def test_activate_exposes_node_config(self):
        root = ConfigNode.provide(FormConfig(show_asterisk=True))
        with root.child().activate() as config:
            assert get_form_config() is config
        assert not has_form_config()
