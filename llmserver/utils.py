"""Model configuration files."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class ModelType(str, Enum):
    """Kind of model a configuration describes."""

    LLM = "LLM"
    ASR = "ASR"
    TTS = "TTS"


def _required_str(data: dict[str, Any], key: str) -> str:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


def _optional(data: dict[str, Any], key: str, kind: type) -> Any:
    value = data.get(key)
    if value is not None and not isinstance(value, kind):
        raise ValueError(f"field `{key}` must be a {kind.__name__}")
    return value


@dataclass
class ModelConfig:
    """Settings for one model, read from a JSON file."""

    model_repo: str = ""
    model_name: str = ""
    model_type: ModelType = ModelType.LLM
    model_path: Optional[str] = None
    asserts_path: str = ""
    cache_path: Optional[str] = None
    think: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], asserts_path: str = "") -> "ModelConfig":
        """Build a configuration; asserts_path records where it came from."""
        if not isinstance(data, dict):
            raise ValueError("model config must be an object")
        if "model_type" not in data:
            raise ValueError("missing field `model_type`")
        try:
            model_type = ModelType(data["model_type"])
        except ValueError as exc:
            raise ValueError(f"unknown model type: {data['model_type']!r}") from exc
        return cls(
            model_repo=_required_str(data, "model_repo"),
            model_name=_required_str(data, "model_name"),
            model_type=model_type,
            model_path=_optional(data, "model_path", str),
            asserts_path=asserts_path,
            cache_path=_optional(data, "cache_path", str),
            think=_optional(data, "think", bool),
        )


def load_model_configs(directory: Union[str, Path] = "assets/config") -> dict[str, ModelConfig]:
    """Read every *.json file in a directory, keyed by model repository."""
    configs: dict[str, ModelConfig] = {}
    for path in sorted(Path(directory).iterdir()):
        if not (path.is_file() and path.suffix == ".json"):
            continue
        data = json.loads(path.read_text(encoding="utf-8"))
        config = ModelConfig.from_dict(data, asserts_path=str(path))
        logger.info("Loaded model config: %s", path)
        configs[config.model_repo] = config
    return configs