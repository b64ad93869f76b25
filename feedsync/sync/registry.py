"""Registry of model descriptors, keyed by model name."""

from collections.abc import Iterable, Iterator

import structlog

from feedsync.models.descriptor import ModelDescriptor
from feedsync.sync.errors import ConfigurationError

log = structlog.stdlib.get_logger()


class ModelRegistry:
    """Explicit mapping from model name to its descriptor.

    Populated once at startup, from code or from configuration, and then
    only read.
    """

    def __init__(self, descriptors: Iterable[ModelDescriptor] = ()):
        self._descriptors: dict[str, ModelDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: ModelDescriptor) -> ModelDescriptor:
        """
        Register a model descriptor.

        Args:
            descriptor: Descriptor to register

        Returns:
            The registered descriptor

        Raises:
            ConfigurationError: If a different descriptor is already registered under the name
        """
        existing = self._descriptors.get(descriptor.name)
        if existing is not None and existing != descriptor:
            raise ConfigurationError(
                f"Model already registered with a different descriptor: {descriptor.name}"
            )

        self._descriptors[descriptor.name] = descriptor
        log.debug("model_registered", model=descriptor.name, entity_set=descriptor.entity_set)
        return descriptor

    def get(self, name: str) -> ModelDescriptor:
        """
        Look up a descriptor by model name.

        Raises:
            ConfigurationError: If no descriptor is registered for the name
        """
        try:
            return self._descriptors[name]
        except KeyError:
            raise ConfigurationError(f"No descriptor registered for model: {name}") from None

    def resolve(self, model: str | ModelDescriptor) -> ModelDescriptor:
        """Return the descriptor for a model name, or the descriptor itself."""
        if isinstance(model, ModelDescriptor):
            return model
        return self.get(model)

    def names(self) -> list[str]:
        return list(self._descriptors)

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)
