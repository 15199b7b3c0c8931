"""Configuration management for the reachability monitor."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from reachability_checks.models import Target


DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")


class TargetConfig(BaseModel):
    """One entry of the static target registry."""
    name: str = Field(min_length=1, description="Display name")
    url: str = Field(min_length=1, description="Endpoint probed with HTTP GET; also the target identity")
    kind: str = Field(default="WEBSITE", description="Free-form category tag")

    @field_validator("url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        url = value.strip()
        if not url.lower().startswith(("http://", "https://")):
            raise ValueError(f"target url must start with http:// or https://, got {value!r}")
        return url

    def to_target(self) -> Target:
        return Target(url=self.url, name=self.name, kind=self.kind)


class MonitorConfig(BaseModel):
    """Main configuration for the reachability monitor."""

    # Scheduling
    refresh_interval_seconds: float = Field(default=120.0, gt=0, description="Base delay between periodic cycles")
    jitter_max_seconds: float = Field(default=1.5, ge=0, description="Upper bound of the random delay added per cycle")
    allow_overlap: bool = Field(default=True, description="Let manual and periodic cycles run at the same time")

    # Probing
    timeout_seconds: float = Field(default=8.0, gt=0, description="Deadline shared by both probe phases")
    concurrency: int = Field(default=6, ge=1, description="Probes in flight at once")
    slow_threshold_ms: float = Field(default=1200.0, gt=0, description="Successful probes slower than this are SLOW")
    fallback: Literal["tcp", "insecure_http", "none"] = Field(
        default="tcp", description="Reduced-visibility attempt used when the direct request fails"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    targets: list[TargetConfig] = Field(default_factory=list, validate_default=True, description="Static target registry")

    @field_validator("targets")
    @classmethod
    def _require_unique_targets(cls, value: list[TargetConfig]) -> list[TargetConfig]:
        if not value:
            raise ValueError("config must contain a non-empty 'targets' list")
        seen: set[str] = set()
        for entry in value:
            if entry.url in seen:
                raise ValueError(f"duplicate target url {entry.url!r}")
            seen.add(entry.url)
        return value

    def registry(self) -> list[Target]:
        return [entry.to_target() for entry in self.targets]


def load_config_data(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data


def load_config(config_path: Optional[str] = None) -> MonitorConfig:
    """Load configuration from file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("REACHABILITY_CONFIG") or str(DEFAULT_CONFIG_PATH)

    path = Path(config_path)
    if not path.exists():
        raise ValueError(f"Config file not found: {path}")
    config_data = load_config_data(path)

    env_overrides = {
        "refresh_interval_seconds": os.getenv("REACHABILITY_REFRESH_SECONDS"),
        "timeout_seconds": os.getenv("REACHABILITY_TIMEOUT_SECONDS"),
        "concurrency": os.getenv("REACHABILITY_CONCURRENCY"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    for key, value in env_overrides.items():
        if value is not None and value.strip():
            config_data[key] = value.strip()

    return MonitorConfig(**config_data)
