# === FILE: listing_scout/config.py ===
"""
Loading and validation of the ListingScout configuration.
Pydantic describes the schema; YAML and JSON files are both accepted.
"""
from __future__ import annotations

import errno
import json
import os
from pathlib import Path
from typing import Any, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DISABLED: Literal["disabled"] = "disabled"


class CrawlSettings(BaseModel):
    """Politeness and extraction limits for discovery crawls."""
    model_config = ConfigDict(extra="forbid")

    max_pages: int = Field(200, ge=1, description="Pages with content to keep per crawl.")
    user_agent: str = Field(
        "ListingScoutBot/1.0 (business directory discovery)",
        min_length=1,
        description="User-Agent header sent with every request.",
    )
    timeout: float = Field(30.0, gt=0, description="Receive timeout per request (seconds).")
    retry_times: int = Field(0, ge=0, description="Retries on 5xx/429 and transport errors.")
    concurrency: int = Field(4, ge=1, description="Number of fetch workers per crawl.")
    per_host_concurrency: int = Field(1, ge=1, description="Concurrent requests per host.")
    max_redirects: int = Field(5, ge=0, description="Redirects followed per request.")
    max_body_bytes: int = Field(5 * 1024 * 1024, ge=1024, description="Response body cap.")
    crawl_timeout: Union[float, Literal["disabled"]] = Field(
        DISABLED, description="Hard crawl timeout in seconds, or 'disabled'."
    )
    min_content_length: int = Field(50, ge=0, description="Pages shorter than this are empty.")
    max_content_chars: int = Field(50_000, ge=1, description="Body text truncation bound.")
    max_headings: int = Field(30, ge=0)
    max_links: int = Field(30, ge=0, description="Links followed from a single page.")
    respect_robots: bool = Field(True, description="Consult robots.txt of every allowed host.")

    @field_validator("crawl_timeout", mode="before")
    def _coerce_timeout(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and v.strip().lower() in ("", "disabled", "none", "off")):
            return DISABLED
        if isinstance(v, (int, float)) and v <= 0:
            raise ValueError("crawl_timeout must be > 0 or 'disabled'")
        return v

    @property
    def hard_timeout(self) -> float | None:
        """Numeric crawl timeout, or None when disabled."""
        return None if self.crawl_timeout == DISABLED else float(self.crawl_timeout)


class OverpassSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = "https://overpass-api.de/api/interpreter"
    timeout: float = Field(60.0, gt=0)
    user_agent: str = "ListingScoutBot/1.0 (business directory)"


class MonitorSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    poll_interval: float = Field(5.0, gt=0, description="Seconds between completion checks.")


class PathSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    crawl_dir: Path = Path("tmp/discovery_crawls")
    batch_dir: Path = Path("tmp/discovery_batches")
    content_dir: Path = Path("tmp/content_batches")
    sync_timestamp_file: Path = Path("tmp/prod_sync/last_sync.txt")


class ScoutConfig(BaseModel):
    """Complete configuration for one ListingScout process."""
    model_config = ConfigDict(extra="forbid")

    database_url: str = Field("sqlite:///listing_scout.db", min_length=1)
    crawl: CrawlSettings = Field(default_factory=CrawlSettings)
    overpass: OverpassSettings = Field(default_factory=OverpassSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    paths: PathSettings = Field(default_factory=PathSettings)


_DEFAULT_CFG = Path("configs/default.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of YAML must be a mapping, got {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of JSON must be a mapping, got {type(data).__name__}")
    return data


def load_config(path: Union[str, Path, None]) -> ScoutConfig:
    """
    Read YAML or JSON and return a validated ScoutConfig.

    Without an explicit path, ``configs/default.yaml`` is used when it exists
    and the built-in defaults otherwise. An explicit path that does not exist
    raises FileNotFoundError.
    """
    if path is None:
        if not _DEFAULT_CFG.exists():
            return ScoutConfig()
        path_obj = _DEFAULT_CFG
    else:
        path_obj = Path(path).expanduser().resolve()
        if not path_obj.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(path_obj)
    elif suffix == ".json":
        data = _read_json(path_obj)
    else:
        raise ValueError(f"Unsupported config format: {suffix}")

    return ScoutConfig(**data)


__all__ = [
    "DISABLED",
    "CrawlSettings",
    "OverpassSettings",
    "MonitorSettings",
    "PathSettings",
    "ScoutConfig",
    "load_config",
]
