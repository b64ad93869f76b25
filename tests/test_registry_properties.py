"""Property-based tests for the model registry."""

import pytest
import structlog
from hypothesis import given
from hypothesis import strategies as st

from feedsync.models.descriptor import ModelDescriptor
from feedsync.sync.errors import ConfigurationError
from feedsync.sync.registry import ModelRegistry

log = structlog.stdlib.get_logger()

names = st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz", min_size=1, max_size=20)


class TestRegistryLookup:
    """Property: every registered name resolves to its own descriptor."""

    @given(model_names=st.lists(names, min_size=1, max_size=10, unique=True))
    def test_registered_models_resolve(self, model_names: list[str]) -> None:
        descriptors = [ModelDescriptor(name=n, entity_set=f"crm/{n}") for n in model_names]
        registry = ModelRegistry(descriptors)

        assert len(registry) == len(model_names)
        assert registry.names() == model_names
        assert list(registry) == descriptors
        for descriptor in descriptors:
            assert descriptor.name in registry
            assert registry.get(descriptor.name) is descriptor
            assert registry.resolve(descriptor.name) is descriptor

    def test_unknown_model_is_a_configuration_error(self) -> None:
        registry = ModelRegistry([ModelDescriptor(name="Item", entity_set="logistics/Items")])

        with pytest.raises(ConfigurationError, match="Account"):
            registry.get("Account")
        assert "Account" not in registry

    def test_descriptor_resolves_to_itself(self) -> None:
        descriptor = ModelDescriptor(name="Adhoc", entity_set="adhoc/Things")

        assert ModelRegistry().resolve(descriptor) is descriptor


class TestRegistration:
    """Property: a name maps to exactly one descriptor."""

    def test_registering_an_equal_descriptor_again_is_allowed(self) -> None:
        registry = ModelRegistry()
        registry.register(ModelDescriptor(name="Item", entity_set="logistics/Items"))
        registry.register(ModelDescriptor(name="Item", entity_set="logistics/Items"))

        assert len(registry) == 1

    def test_conflicting_descriptor_is_rejected(self) -> None:
        registry = ModelRegistry([ModelDescriptor(name="Item", entity_set="logistics/Items")])

        with pytest.raises(ConfigurationError, match="Item"):
            registry.register(
                ModelDescriptor(name="Item", entity_set="logistics/Items", supports_sync_feed=True)
            )

        assert not registry.get("Item").supports_sync_feed
