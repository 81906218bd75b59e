from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


def _resolve_project_root() -> Path:
    override = os.getenv("PITCHMATCH_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


def _resolve_database_path() -> Path:
    override = os.getenv("PITCHMATCH_DB", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return _resolve_project_root() / "data" / "pitchmatch.db"


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    data_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "data")
    database_path: Path = Field(default_factory=_resolve_database_path)
    weights_file: Path = Field(
        default_factory=lambda: _resolve_project_root() / "config" / "dimension_weights.yaml"
    )

    freshness_days: int = 7
    expiry_days: int = 30
    history_min_matches: int = 3
    history_top_k: int = 10
    history_blend_cap: float = 0.3
    list_limit: int = 20

    model_version: str = "1.0.0"
    algorithm_type: str = "rule-based"

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    def load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return data

    def load_weight_overrides(self) -> dict[str, int]:
        raw = self.load_yaml(self.weights_file)
        payload = raw.get("weights", {})
        if not isinstance(payload, dict):
            return {}
        out: dict[str, int] = {}
        for key, value in payload.items():
            if not isinstance(key, str) or isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            out[key] = int(value)
        return out


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
