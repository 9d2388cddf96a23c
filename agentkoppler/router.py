"""Model-id based dispatch across backend adapters."""

from __future__ import annotations

import logging
from typing import Sequence

from .adapters import Adapter
from .errors import GatewayError, UnsupportedModelError
from .models import ModelInfo

LOG = logging.getLogger(__name__)


class Router:
    """Pick the first adapter that claims a model id."""

    def __init__(self, adapters: Sequence[Adapter]) -> None:
        self.adapters = list(adapters)

    async def adapter_for_model(self, model: str) -> Adapter:
        for adapter in self.adapters:
            try:
                supported = await adapter.supports_model(model)
            except GatewayError as exc:
                raise GatewayError(f"failed checking {adapter.backend} models: {exc}") from exc
            if supported:
                LOG.debug("routing model=%s backend=%s", model, adapter.backend)
                return adapter
        raise UnsupportedModelError(f"unsupported model id: {model}")

    async def list_models(self) -> list[ModelInfo]:
        """Concatenate every adapter's models in adapter order."""
        out: list[ModelInfo] = []
        for adapter in self.adapters:
            out.extend(await adapter.list_models())
        return out
