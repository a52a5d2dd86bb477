"""Configuration loader that keeps all runtime constants centralized."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml


CONFIG_PATH = Path(__file__).resolve().parent / "app_config.yaml"


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed wrapper over the raw YAML document."""

    raw: Dict[str, Any]

    @property
    def version(self) -> str:
        return str(self.raw.get("version", "v1"))

    @property
    def billing(self) -> Dict[str, Any]:
        return self.raw.get("billing", {})

    @property
    def storage(self) -> Dict[str, Any]:
        return self.raw.get("storage", {})

    @property
    def reconciliation(self) -> Dict[str, Any]:
        return self.raw.get("reconciliation", {})

    @property
    def notifications(self) -> Dict[str, Any]:
        return self.raw.get("notifications", {})

    @property
    def logging(self) -> Dict[str, Any]:
        return self.raw.get("logging", {})

    @property
    def server(self) -> Dict[str, Any]:
        return self.raw.get("server", {})

    @property
    def database_backend(self) -> str:
        return os.getenv("STORAGE") or str(self.storage.get("database", "sqlite"))

    @property
    def database_url(self) -> str:
        return os.getenv("DATABASE_URL") or str(
            self.storage.get("url", "sqlite:///venue.db")
        )

    @property
    def default_rates(self) -> Dict[str, Any]:
        return self.billing.get("default_rates", {})

    @property
    def default_organization(self) -> str:
        return str(self.raw.get("organization", "default"))

    @property
    def cors_origins(self) -> list:
        return list(self.server.get("cors_origins", ["http://localhost:5173"]))


@lru_cache(maxsize=1)
def get_settings(path: Path | None = None) -> AppConfig:
    """Load configuration once per process."""

    config_path = path or Path(os.getenv("VENUE_CONFIG", CONFIG_PATH))
    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):  # pragma: no cover - invalid file guard
        raise ValueError("Configuration file must define a mapping at the top level.")
    return AppConfig(raw=data)
