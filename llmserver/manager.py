"""Starts, tracks and stops model instances, grouped by model type and name."""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from llmserver.tts import SimpleToneTts, SimpleTtsConfig
from llmserver.utils import ModelConfig, ModelType

logger = logging.getLogger(__name__)

ModelFactory = Callable[[ModelConfig], Any]


class ModelManagerError(Exception):
    """Base class for model manager failures."""


class UnknownModelError(ModelManagerError):
    """No configuration exists for the requested repository."""

    def __init__(self, repo_id: str) -> None:
        super().__init__(f"unknown model repo: {repo_id}")
        self.repo_id = repo_id


class ActorError(ModelManagerError):
    """A model backend could not be initialised."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"actor init error: {reason}")
        self.reason = reason


class InstanceNotFoundError(ModelManagerError):
    """No running instance has the given id."""

    def __init__(self) -> None:
        super().__init__("model instance not found")


def _tone_tts_factory(config: ModelConfig) -> SimpleToneTts:
    return SimpleToneTts(SimpleTtsConfig(model_name=config.model_name))


DEFAULT_FACTORIES: dict[ModelType, ModelFactory] = {
    ModelType.TTS: _tone_tts_factory,
}


@dataclass(frozen=True)
class ModelInstance:
    """One running model backend and where it came from."""

    id: uuid.UUID
    repo_id: str
    model_name: str
    model_type: ModelType
    created_at: datetime
    backend: Any = field(repr=False, compare=False)

    def _backend_if(self, model_type: ModelType) -> Any:
        return self.backend if self.model_type is model_type else None

    def llm_recipient(self) -> Any:
        """The backend when this instance generates text, else None."""
        return self._backend_if(ModelType.LLM)

    def asr_recipient(self) -> Any:
        """The backend when this instance recognises speech, else None."""
        return self._backend_if(ModelType.ASR)

    def tts_recipient(self) -> Any:
        """The backend when this instance synthesises speech, else None."""
        return self._backend_if(ModelType.TTS)


async def _shutdown(instance: ModelInstance) -> None:
    hook = getattr(instance.backend, "shutdown", None)
    if hook is None:
        return
    try:
        result = hook()
        if inspect.isawaitable(result):
            await result
    except Exception:  # a failing shutdown must not stop the others
        logger.exception("Shutting down instance %s failed", instance.id)


class ModelManager:
    """Keeps the configured models and the instances running for each."""

    def __init__(
        self,
        configs: Mapping[str, ModelConfig],
        factories: Optional[Mapping[ModelType, ModelFactory]] = None,
    ) -> None:
        self._configs: dict[str, ModelConfig] = dict(configs)
        self._factories: dict[ModelType, ModelFactory] = dict(DEFAULT_FACTORIES)
        if factories:
            self._factories.update(factories)
        self._pools: dict[ModelType, dict[str, list[ModelInstance]]] = {
            model_type: {} for model_type in ModelType
        }
        self._lookup: dict[uuid.UUID, tuple[ModelType, str]] = {}
        self._lock = asyncio.Lock()

    def _spawn_instance(self, config: ModelConfig) -> ModelInstance:
        factory = self._factories.get(config.model_type)
        if factory is None:
            raise ActorError(f"no backend available for {config.model_type.value} models")
        created_at = datetime.now(timezone.utc)
        try:
            backend = factory(config)
        except Exception as exc:
            raise ActorError(str(exc)) from exc
        return ModelInstance(
            id=uuid.uuid4(),
            repo_id=config.model_repo,
            model_name=config.model_name,
            model_type=config.model_type,
            created_at=created_at,
            backend=backend,
        )

    async def start_instances(self, repo_id: str, instances: int = 1) -> list[ModelInstance]:
        """Start instances of a configured model; at least one is started."""
        async with self._lock:
            config = self._configs.get(repo_id)
        if config is None:
            raise UnknownModelError(repo_id)

        started: list[ModelInstance] = []
        for _ in range(max(instances, 1)):
            instance = self._spawn_instance(config)
            async with self._lock:
                self._lookup[instance.id] = (config.model_type, config.model_name)
                self._pools[config.model_type].setdefault(config.model_name, []).append(instance)
            started.append(instance)
        return started

    async def stop_instance(self, instance_id: uuid.UUID) -> None:
        """Stop one instance; its model group goes once it is empty."""
        async with self._lock:
            entry = self._lookup.pop(instance_id, None)
            if entry is None:
                raise InstanceNotFoundError()
            model_type, model_name = entry
            pool = self._pools[model_type]
            group = pool.get(model_name, [])
            removed = next((i for i in group if i.id == instance_id), None)
            if removed is not None:
                group.remove(removed)
            if model_name in pool and not pool[model_name]:
                del pool[model_name]
        if removed is not None:
            await _shutdown(removed)

    def _pool_of(self, model_type: ModelType) -> dict[str, list[Any]]:
        return {
            name: [instance.backend for instance in group]
            for name, group in self._pools[model_type].items()
        }

    async def llm_pool(self) -> dict[str, list[Any]]:
        """Text-generation backends by model name."""
        async with self._lock:
            return self._pool_of(ModelType.LLM)

    async def asr_pool(self) -> dict[str, list[Any]]:
        """Speech-recognition backends by model name."""
        async with self._lock:
            return self._pool_of(ModelType.ASR)

    async def tts_pool(self) -> dict[str, list[Any]]:
        """Speech-synthesis backends by model name."""
        async with self._lock:
            return self._pool_of(ModelType.TTS)

    async def list_instances(self) -> list[ModelInstance]:
        """All running instances: text generation, then ASR, then TTS."""
        async with self._lock:
            return [
                instance
                for model_type in (ModelType.LLM, ModelType.ASR, ModelType.TTS)
                for group in self._pools[model_type].values()
                for instance in group
            ]

    async def configs(self) -> dict[str, ModelConfig]:
        """A copy of the known configurations, keyed by repository."""
        async with self._lock:
            return dict(self._configs)

    async def shutdown_all(self) -> None:
        """Stop every instance and clear the registry."""
        instances = await self.list_instances()
        async with self._lock:
            for pool in self._pools.values():
                pool.clear()
            self._lookup.clear()
        for instance in instances:
            await _shutdown(instance)