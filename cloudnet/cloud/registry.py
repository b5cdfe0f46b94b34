"""Provider name -> handlers lookup used by the dispatcher."""

import logging

from cloudnet.cloud.base import ProviderHandlers
from cloudnet.errors import NotSupportedError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, ProviderHandlers] = {}

    def register(self, provider: str, handlers: ProviderHandlers) -> None:
        if provider in self._handlers:
            logger.warning("Replacing handlers registered for provider %s", provider)
        self._handlers[provider] = handlers

    def get(self, provider: str) -> ProviderHandlers:
        handlers = self._handlers.get(provider)
        if handlers is None:
            raise NotSupportedError(
                f"Unsupported provider: {provider}", details={"provider": provider}
            )
        return handlers

    def providers(self) -> list[str]:
        return sorted(self._handlers)
