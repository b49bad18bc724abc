# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import asyncio
import threading
import time
from typing import Dict, Iterable, List, NamedTuple, Optional

from framesense_pipeline.exceptions import ProviderError, ValidationError
from framesense_pipeline.models import ModelDefinition, ProviderKind, Quality, ServiceKind, Speed, Tier
from framesense_pipeline.providers.base import AnalysisProvider, check_conformance
from framesense_pipeline.registry import ModelRegistry
from framesense_pipeline.utils.logger import logger


class PluginInfo(NamedTuple):
    plugin_id: str
    provider: AnalysisProvider
    tier: Tier
    registered_at: float


class ProviderRegistry:
    """
    Maps services to the providers that execute them.

    Built-in services are registered with `register`. Third-party plugins go
    through `register_plugin`, which checks conformance and health before the
    plugin is enabled and published to the model registry, where the router can
    select it like any other model.
    """

    def __init__(self, model_registry: ModelRegistry) -> None:
        self.model_registry = model_registry
        self._lock = threading.Lock()
        self._providers: Dict[ServiceKind, AnalysisProvider] = {}
        self._plugins: Dict[str, PluginInfo] = {}

    def register(self, service: ServiceKind, provider: AnalysisProvider) -> None:
        if service == ServiceKind.PLUGIN:
            raise ValidationError("Plugins must be registered with register_plugin()")
        check_conformance(provider)
        with self._lock:
            self._providers[service] = provider
        logger.info(f"Registered provider {provider.name} for {service.value}")

    async def register_plugin(
        self,
        plugin_id: str,
        provider: AnalysisProvider,
        tier: Tier = Tier.PRO,
        quality: Quality = Quality.MEDIUM,
        speed: Speed = Speed.MEDIUM,
    ) -> ModelDefinition:
        """
        Validates, health-checks and enables a plugin.

        Raises:
            ValidationError: If the id is taken or the provider does not conform.
            ProviderError: If the plugin's health check fails.
        """
        if not plugin_id:
            raise ValidationError("Plugin id must not be empty")
        with self._lock:
            taken = plugin_id in self._plugins or self.model_registry.get_model(plugin_id) is not None
        if taken:
            raise ValidationError(f"Plugin {plugin_id} is already registered")

        check_conformance(provider)

        try:
            healthy = await provider.health_check()
        except Exception as e:
            logger.warning(f"Plugin {plugin_id} health check raised: {e}")
            healthy = False
        if not healthy:
            raise ProviderError(f"Plugin {plugin_id} failed its health check", service=ServiceKind.PLUGIN.value)

        model = ModelDefinition(
            id=plugin_id,
            provider=ProviderKind.PLUGIN,
            tier=tier,
            capabilities=frozenset(provider.capabilities),
            quality=quality,
            speed=speed,
            cost_per_request=provider.cost_per_request,
            avg_response_time_ms=int(provider.average_response_time_ms),
        )
        with self._lock:
            self._plugins[plugin_id] = PluginInfo(
                plugin_id=plugin_id, provider=provider, tier=tier, registered_at=time.time()
            )
        self.model_registry.register_model(model)
        logger.info(f"Plugin enabled: {plugin_id} ({tier.value}, capabilities: {sorted(model.capabilities)})")
        return model

    def unregister_plugin(self, plugin_id: str) -> bool:
        with self._lock:
            info = self._plugins.pop(plugin_id, None)
        if info is None:
            return False
        self.model_registry.unregister_model(plugin_id)
        logger.info(f"Plugin removed: {plugin_id}")
        return True

    def plugins(self) -> List[str]:
        with self._lock:
            return list(self._plugins)

    def find_plugins_by_capabilities(self, required: Iterable[str]) -> List[str]:
        needed = set(required)
        with self._lock:
            return [pid for pid, info in self._plugins.items() if needed <= set(info.provider.capabilities)]

    def get_plugin_cost(self, plugin_id: str) -> Optional[float]:
        with self._lock:
            info = self._plugins.get(plugin_id)
        return info.provider.cost_per_request if info else None

    def resolve(self, service: ServiceKind, model: Optional[str] = None) -> AnalysisProvider:
        """
        Returns the provider for `service`. The plugin service resolves by model
        id, falling back to the first enabled plugin.

        Raises:
            ProviderError: If nothing is registered for the service.
        """
        with self._lock:
            if service == ServiceKind.PLUGIN:
                info = self._plugins.get(model) if model else None
                if info is None and self._plugins:
                    info = next(iter(self._plugins.values()))
                if info is not None:
                    return info.provider
            elif service in self._providers:
                return self._providers[service]
        raise ProviderError(f"No provider registered for {service.value}", service=service.value)

    def has_provider(self, service: ServiceKind) -> bool:
        with self._lock:
            if service == ServiceKind.PLUGIN:
                return bool(self._plugins)
            return service in self._providers

    async def health_report(self) -> Dict[str, bool]:
        """Runs every health check concurrently; a raising check counts as unhealthy."""
        with self._lock:
            targets = {service.value: p for service, p in self._providers.items()}
            targets.update({f"plugin:{pid}": info.provider for pid, info in self._plugins.items()})

        names = list(targets)
        results = await asyncio.gather(*(targets[n].health_check() for n in names), return_exceptions=True)
        report = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning(f"Health check for {name} raised: {result}")
                report[name] = False
            else:
                report[name] = bool(result)
        return report
