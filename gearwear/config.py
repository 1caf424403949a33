"""Startup configuration, passed explicitly to the coordinator."""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional, Union

import yaml

ENV_PREFIX = "GEARWEAR_"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Config:
    """Settings of one gearwear process."""

    max_retries: int = 3  # commit attempts before StaleVersion becomes Conflict
    log_level: str = "INFO"
    store_path: Optional[str] = None  # garage YAML file; None = in-memory

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")


def load_config(
    filename: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """
    Build a Config from an optional YAML file plus environment overrides.

    Environment variables win, e.g. GEARWEAR_MAX_RETRIES=5.
    """
    values = {}
    if filename is not None:
        with open(filename, "r") as fp:
            values.update(yaml.load(fp, Loader=yaml.SafeLoader) or {})

    environ = os.environ if environ is None else environ
    for f in fields(Config):
        raw = environ.get(ENV_PREFIX + f.name.upper())
        if raw is not None:
            values[f.name] = int(raw) if f.name == "max_retries" else raw

    known = {f.name for f in fields(Config)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(sorted(unknown))}")
    return Config(**values)


def configure_logging(config: Config) -> None:
    logging.basicConfig(level=config.log_level.upper(), format=LOG_FORMAT)
