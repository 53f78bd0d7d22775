"""Registry of running model handles, looked up by model name."""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Optional


@dataclass(frozen=True)
class LlmHandle:
    """A running language-model instance: its processor and its shutdown hook."""

    processor: Any
    shutdown: Any


@dataclass(frozen=True)
class AsrHandle:
    """A running speech-recognition instance: its processor and its shutdown hook."""

    processor: Any
    shutdown: Any


class HandleRegistry:
    """Thread-safe map of model names to running instance handles."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._llm: dict[str, list[LlmHandle]] = {}
        self._asr: dict[str, list[AsrHandle]] = {}
        self._lock = threading.Lock()
        self._rng = rng or random.Random()

    def register_llm(self, model_name: str, handles: Iterable[LlmHandle]) -> None:
        """Replace the handles registered for a model."""
        with self._lock:
            self._llm[model_name] = list(handles)

    def add_llm_instances(self, model_name: str, handles: Iterable[LlmHandle]) -> None:
        """Append handles to those already registered for a model."""
        with self._lock:
            self._llm.setdefault(model_name, []).extend(handles)

    def register_asr(self, model_name: str, handles: Iterable[AsrHandle]) -> None:
        with self._lock:
            self._asr[model_name] = list(handles)

    def add_asr_instances(self, model_name: str, handles: Iterable[AsrHandle]) -> None:
        with self._lock:
            self._asr.setdefault(model_name, []).extend(handles)

    def remove_llm(self, model_name: str) -> list[LlmHandle]:
        """Unregister a model and return its handles (empty if none)."""
        with self._lock:
            return self._llm.pop(model_name, [])

    def remove_asr(self, model_name: str) -> list[AsrHandle]:
        with self._lock:
            return self._asr.pop(model_name, [])

    def choose_llm(self, model_name: str) -> Any:
        """Pick a random instance's processor, or None if there is none."""
        with self._lock:
            handles = self._llm.get(model_name)
            return self._rng.choice(handles).processor if handles else None

    def choose_asr(self, model_name: str) -> Any:
        with self._lock:
            handles = self._asr.get(model_name)
            return self._rng.choice(handles).processor if handles else None

    def list_llm_models(self) -> list[str]:
        with self._lock:
            return list(self._llm)

    def list_asr_models(self) -> list[str]:
        with self._lock:
            return list(self._asr)