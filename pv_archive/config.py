"""Archiver client configuration.

Configuration is layered, lowest priority first:

1. the defaults declared on :class:`ArchiverConfig`
2. a YAML file, given explicitly or through the ``PV_ARCHIVE_CONFIG``
   environment variable
3. the ``PV_ARCHIVE_BASE_URL`` environment variable

Typical file::

    base_url: http://archiver.example.org/retrieval/data
    timezone: America/Los_Angeles
    timeouts:
      default: 30
    batch_sizes:
      default: 5
"""

import os
from typing import ClassVar, List, Optional

import yaml
from omegaconf import OmegaConf
from omegaconf.errors import OmegaConfBaseException
from pydantic import BaseModel, Field, ValidationError, field_validator

from pv_archive.operators import get_bin_operator
from pv_archive.utils.exceptions import ConfigError

CONFIG_ENV_VAR = "PV_ARCHIVE_CONFIG"
BASE_URL_ENV_VAR = "PV_ARCHIVE_BASE_URL"

DEFAULT_BASE_URL = "http://lcls-archapp.slac.stanford.edu/retrieval/data"
DEFAULT_LADDER = [1, 5, 10, 30, 60, 300, 900, 1800, 3600, 7200, 14400, 86400]


class TimeoutConfig(BaseModel):
    default: float = Field(30.0, gt=0, description="Per-request deadline in seconds")
    long: float = Field(60.0, gt=0, description="Deadline for long time ranges")
    extended: float = Field(120.0, gt=0, description="Deadline for very long time ranges")


class BatchSizeConfig(BaseModel):
    default: int = Field(5, ge=1, description="Concurrent PV requests per batch")
    large: int = Field(10, ge=1, description="Batch size for short time ranges")
    small: int = Field(3, ge=1, description="Batch size for long time ranges")


class TargetPointsConfig(BaseModel):
    default: int = Field(1000, ge=1)
    high_res: int = Field(2000, ge=1)
    low_res: int = Field(500, ge=1)


class BinningConfig(BaseModel):
    raw_threshold_seconds: int = Field(3600, ge=0, description="Ranges up to this length are fetched raw")
    ladder: List[int] = Field(default_factory=lambda: list(DEFAULT_LADDER),
                              description="Ascending canonical bin sizes in seconds")
    default_operator: str = Field("mean", description="Aggregation operator used for binned ranges")

    @field_validator("ladder")
    @classmethod
    def _check_ladder(cls, ladder: List[int]) -> List[int]:
        if not ladder:
            raise ValueError("ladder must not be empty")
        if any(step < 1 for step in ladder):
            raise ValueError("ladder entries must be >= 1 second")
        if any(b <= a for a, b in zip(ladder, ladder[1:])):
            raise ValueError("ladder must be strictly ascending")
        return ladder

    @field_validator("default_operator")
    @classmethod
    def _check_operator(cls, name: str) -> str:
        get_bin_operator(name)
        return name


class RealtimeConfig(BaseModel):
    interval_seconds: float = Field(5.0, gt=0, description="Polling period")
    window_seconds: int = Field(300, ge=1, description="Trailing window fetched on every tick")


class ArchiverConfig(BaseModel):
    """
    Schema for the archiver client configuration.
    """

    CONFIG_HELP: ClassVar[dict] = {
        "base_url": "Base URL of the archiver retrieval service (ends in /retrieval/data)",
        "timezone": "IANA timezone used for outgoing timestamps (optional, default UTC)",
        "donotchunk": "Ask the archiver not to chunk responses (bool)",
        "log_level": "Logging level for the retrieval API process",
        "timeouts": "Request deadlines in seconds: default, long, extended",
        "batch_sizes": "Concurrent requests per batch: default, large, small",
        "target_points": "Points per series requested from the resolver: default, high_res, low_res",
        "binning": "raw_threshold_seconds, ladder (list of seconds), default_operator",
        "realtime": "interval_seconds and window_seconds of the real-time poller",
    }

    CONFIG_EXAMPLE: ClassVar[dict] = {
        "base_url": DEFAULT_BASE_URL,
        "timezone": "America/Los_Angeles",
        "donotchunk": False,
        "log_level": "INFO",
        "timeouts": {"default": 30, "long": 60, "extended": 120},
        "batch_sizes": {"default": 5, "large": 10, "small": 3},
        "target_points": {"default": 1000, "high_res": 2000, "low_res": 500},
        "binning": {
            "raw_threshold_seconds": 3600,
            "ladder": DEFAULT_LADDER,
            "default_operator": "mean",
        },
        "realtime": {"interval_seconds": 5, "window_seconds": 300},
    }

    base_url: str = Field(DEFAULT_BASE_URL, description="Archiver retrieval base URL")
    timezone: Optional[str] = Field(None, description="IANA timezone name, None for UTC")
    donotchunk: bool = False
    log_level: str = "INFO"
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    batch_sizes: BatchSizeConfig = Field(default_factory=BatchSizeConfig)
    target_points: TargetPointsConfig = Field(default_factory=TargetPointsConfig)
    binning: BinningConfig = Field(default_factory=BinningConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, url: str) -> str:
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {url!r}")
        return url.rstrip("/")


def load_config(path: Optional[str] = None) -> ArchiverConfig:
    """
    Load the archiver configuration.

    Args:
        path (str, optional): YAML file to read. Falls back to the file named
            by PV_ARCHIVE_CONFIG; with neither set, only defaults and
            environment overrides apply.

    Raises:
        ConfigError: If the file is missing, unreadable or fails validation.
    """
    layers = [OmegaConf.create(ArchiverConfig().model_dump())]

    path = path or os.getenv(CONFIG_ENV_VAR)
    if path:
        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigError(f"CONFIG NOT FOUND. ENSURE THE FILE EXISTS: {os.path.abspath(path)}")
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        layers.append(OmegaConf.create(raw))

    base_url = os.getenv(BASE_URL_ENV_VAR)
    if base_url:
        layers.append(OmegaConf.create({"base_url": base_url}))

    try:
        merged = OmegaConf.to_container(OmegaConf.merge(*layers), resolve=True)
    except OmegaConfBaseException as exc:
        raise ConfigError(f"Cannot merge archiver configuration: {exc}") from exc
    try:
        return ArchiverConfig.model_validate(merged)
    except ValidationError as ve:
        raise ConfigError(f"Invalid archiver configuration: {ve}") from ve
