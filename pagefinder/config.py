from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .utils import load_json


@dataclass(frozen=True)
class ResolverConfig:
    matcher: dict[str, Any] = field(default_factory=dict)
    delta: dict[str, Any] = field(default_factory=dict)
    ocr: dict[str, Any] = field(default_factory=dict)
    gateway: dict[str, Any] = field(default_factory=dict)


def default_config() -> ResolverConfig:
    # Consumers fall back to their own defaults for every missing key.
    return ResolverConfig()


def load_config(config_path: str | Path | None) -> ResolverConfig:
    if config_path is None or not Path(config_path).exists():
        return default_config()
    data = load_json(config_path)
    return ResolverConfig(
        matcher=data.get("matcher", {}),
        delta=data.get("delta", {}),
        ocr=data.get("ocr", {}),
        gateway=data.get("gateway", {}),
    )
