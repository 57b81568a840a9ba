from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator


class SPRTConfig(BaseModel):
    elo0: float = 0.0
    elo1: float = 10.0
    alpha: float = Field(0.05, gt=0.0, lt=1.0)
    beta: float = Field(0.05, gt=0.0, lt=1.0)

    @model_validator(mode="after")
    def _ordered(self) -> SPRTConfig:
        if self.elo1 <= self.elo0:
            raise ValueError(f"elo1 ({self.elo1}) must exceed elo0 ({self.elo0})")
        return self


class GeneratorConfig(BaseModel):
    min_nodes: int = Field(10, ge=2)
    max_nodes: int = 60
    min_edge_probability: float = Field(0.05, ge=0.0, le=1.0)
    max_edge_probability: float = Field(0.3, ge=0.0, le=1.0)
    coordinate_limit: int = Field(1000, ge=1)
    width: int = 1_000_000
    height: int = 1_000_000
    max_attempts: int = Field(100, ge=1)

    @model_validator(mode="after")
    def _consistent(self) -> GeneratorConfig:
        if self.max_nodes <= self.min_nodes:
            raise ValueError("max_nodes must exceed min_nodes")
        if self.max_edge_probability < self.min_edge_probability:
            raise ValueError("max_edge_probability must be >= min_edge_probability")
        if self.coordinate_limit ** 2 < self.max_nodes:
            raise ValueError("coordinate_limit too small to place max_nodes distinct nodes")
        if self.coordinate_limit - 1 > min(self.width, self.height):
            raise ValueError("coordinate_limit exceeds the drawing width/height")
        return self


class SessionConfig(BaseModel):
    reap_timeout: float = Field(5.0, gt=0.0)
    shutdown_timeout: float = Field(2.0, gt=0.0)


class CompareConfig(BaseModel):
    sprt: SPRTConfig = Field(default_factory=SPRTConfig)
    generator: GeneratorConfig = Field(default_factory=GeneratorConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    max_rounds: int = Field(1000, ge=1)
    seed: int | None = None


class GraphsConfig(BaseModel):
    sprt: SPRTConfig = Field(default_factory=SPRTConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    graphs_dir: Path = Path("graphs")
    filter: str | None = None
    skip_to: str | None = None
    save: bool = False
    saved_dir: Path = Path("saved")
    stats_dir: Path = Path("stats")
    compare_to_leaderboard: bool = True
    stop_on_decision: bool = False


def _coerce_scalar(val: str) -> int | float | bool | str | None:
    lower = val.lower()
    if lower in ("true", "false"):
        return lower == "true"
    if lower in ("null", "none"):
        return None
    try:
        if "." in val or "e" in lower:
            return float(val)
        return int(val)
    except ValueError:
        return val


def set_dotted(cfg: dict[str, Any], key: str, value: Any) -> None:
    *parents, leaf = key.split(".")
    cursor = cfg
    for part in parents:
        nested = cursor.get(part)
        if not isinstance(nested, dict):
            nested = {}
            cursor[part] = nested
        cursor = nested
    cursor[leaf] = value


def load_config(config_path: Path | None, inline_kv: Sequence[str] | None = None) -> dict[str, Any]:
    """Read a YAML/JSON config file and apply `key=value` overrides.

    Dotted keys address nested sections, e.g. `sprt.elo1=20`.
    """
    cfg: dict[str, Any] = {}
    if config_path:
        text = config_path.read_text(encoding="utf-8")
        if config_path.suffix.lower() in (".yaml", ".yml"):
            import yaml  # lazy

            try:
                cfg = dict(yaml.safe_load(text) or {})
            except yaml.YAMLError as e:
                raise ValueError(f"Failed to parse YAML config {config_path}: {e}") from e
        else:
            cfg = dict(json.loads(text))
    for item in inline_kv or ():
        if "=" not in item:
            raise ValueError(f"config override must be key=value, got {item!r}")
        k, v = item.split("=", 1)
        set_dotted(cfg, k.strip(), _coerce_scalar(v.strip()))
    return cfg
