"""
settings.py - YAML configuration loader

Parses lnsim configuration from a YAML file. Every section is optional;
missing values fall back to the dataclass defaults.

Design philosophy:
- Keep it simple: dataclasses validated in __post_init__, no schema framework
- Fail fast: raise clear exceptions on errors

Example YAML:
    orchestrator:
      data_dir: ~/.lnsim
      readiness_retries: 10
      readiness_initial_delay_s: 0.5
      readiness_max_delay_s: 8.0
      readiness_backoff_factor: 2.0
      stop_timeout_s: 10

    operations:
      confirmation_blocks: 6
      auto_fund_sats: 100000
      deposit_sats: 1000000

    logging:
      level: INFO

    node_images:
      managed:
        - implementation: LND
          version: 0.18.0-beta
          command: lnd --debuglevel=trace
      custom:
        - id: "123"
          name: My Test Image
          implementation: c-lightning
          docker_image: custom:image
          command: test-command
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import yaml

from lnsim.network.models import CustomImage, ManagedImage
from lnsim.services.registry import DEFAULT_IMPLEMENTATIONS

KNOWN_IMPLEMENTATIONS = {spec.name for spec in DEFAULT_IMPLEMENTATIONS}


@dataclass
class OrchestratorConfig:
    """
    Lifecycle settings.

    Attributes:
        data_dir: Folder holding the networks file and per-network folders
        readiness_retries: Readiness attempts per node before giving up
        readiness_initial_delay_s: Delay after the first failed attempt
        readiness_max_delay_s: Upper bound for the backoff delay
        readiness_backoff_factor: Multiplier applied to the delay after each failure
        stop_timeout_s: Seconds docker waits for a container to stop
    """
    data_dir: str = "~/.lnsim"
    readiness_retries: int = 10
    readiness_initial_delay_s: float = 0.5
    readiness_max_delay_s: float = 8.0
    readiness_backoff_factor: float = 2.0
    stop_timeout_s: int = 10

    def __post_init__(self):
        if self.readiness_retries < 1:
            raise ValueError(f"readiness_retries must be >= 1, got {self.readiness_retries}")
        if self.readiness_initial_delay_s < 0:
            raise ValueError(
                f"readiness_initial_delay_s must be non-negative, got {self.readiness_initial_delay_s}"
            )
        if self.readiness_max_delay_s < self.readiness_initial_delay_s:
            raise ValueError("readiness_max_delay_s must be >= readiness_initial_delay_s")
        if self.readiness_backoff_factor < 1.0:
            raise ValueError(
                f"readiness_backoff_factor must be >= 1.0, got {self.readiness_backoff_factor}"
            )
        if self.stop_timeout_s < 0:
            raise ValueError(f"stop_timeout_s must be non-negative, got {self.stop_timeout_s}")

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def networks_path(self) -> Path:
        return self.data_path / "networks" / "networks.json"


@dataclass
class OperationsConfig:
    """
    Composite operation settings.

    Attributes:
        confirmation_blocks: Blocks mined to confirm an on-chain action
        auto_fund_sats: Amount deposited before a mint with auto_fund
        deposit_sats: Default amount for deposit_funds
    """
    confirmation_blocks: int = 6
    auto_fund_sats: int = 100_000
    deposit_sats: int = 1_000_000

    def __post_init__(self):
        if self.confirmation_blocks < 1:
            raise ValueError(f"confirmation_blocks must be >= 1, got {self.confirmation_blocks}")
        if self.auto_fund_sats <= 0:
            raise ValueError(f"auto_fund_sats must be positive, got {self.auto_fund_sats}")
        if self.deposit_sats <= 0:
            raise ValueError(f"deposit_sats must be positive, got {self.deposit_sats}")


@dataclass
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self):
        self.level = str(self.level).upper()
        if not isinstance(logging.getLevelName(self.level), int):
            raise ValueError(f"logging.level must be a logging level name, got '{self.level}'")


@dataclass
class LnsimConfig:
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    operations: OperationsConfig = field(default_factory=OperationsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    managed_images: List[ManagedImage] = field(default_factory=list)
    custom_images: List[CustomImage] = field(default_factory=list)


def _section(data, name):
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a dict")
    return section


def _build(cls, section, name):
    """Instantiate a config dataclass, rejecting unknown keys."""
    known = set(cls.__dataclass_fields__)
    unknown = set(section) - known
    if unknown:
        raise ValueError(f"Unknown field(s) in '{name}': {', '.join(sorted(unknown))}")
    return cls(**section)


def _parse_images(section):
    managed = []
    for i, item in enumerate(section.get('managed') or []):
        if not isinstance(item, dict):
            raise ValueError(f"node_images.managed[{i}] must be a dict, got {type(item)}")
        for key in ('implementation', 'version'):
            if key not in item:
                raise ValueError(f"node_images.managed[{i}]: Missing required field '{key}'")
        if item['implementation'] not in KNOWN_IMPLEMENTATIONS:
            raise ValueError(
                f"node_images.managed[{i}]: unknown implementation '{item['implementation']}'"
            )
        managed.append(ManagedImage(
            implementation=item['implementation'],
            version=str(item['version']),
            command=item.get('command', ''),
        ))

    custom = []
    for i, item in enumerate(section.get('custom') or []):
        if not isinstance(item, dict):
            raise ValueError(f"node_images.custom[{i}] must be a dict, got {type(item)}")
        for key in ('id', 'name', 'implementation', 'docker_image'):
            if key not in item:
                raise ValueError(f"node_images.custom[{i}]: Missing required field '{key}'")
        if item['implementation'] not in KNOWN_IMPLEMENTATIONS:
            raise ValueError(
                f"node_images.custom[{i}] ({item['name']}): "
                f"unknown implementation '{item['implementation']}'"
            )
        custom.append(CustomImage(
            id=str(item['id']),
            name=item['name'],
            implementation=item['implementation'],
            docker_image=item['docker_image'],
            command=item.get('command', ''),
        ))

    return managed, custom


def load_config(yaml_path) -> LnsimConfig:
    """
    Load configuration from a YAML file.

    Args:
        yaml_path: Path to YAML config file

    Returns:
        LnsimConfig with parsed configuration

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValueError: If fields are invalid
        yaml.YAMLError: If YAML syntax is invalid
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(path, 'r') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML syntax in {yaml_path}: {e}")

    # An empty file means "all defaults"
    if data is None:
        return LnsimConfig()

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a YAML dict, got {type(data)}")

    managed, custom = _parse_images(_section(data, 'node_images'))

    return LnsimConfig(
        orchestrator=_build(OrchestratorConfig, _section(data, 'orchestrator'), 'orchestrator'),
        operations=_build(OperationsConfig, _section(data, 'operations'), 'operations'),
        logging=_build(LoggingConfig, _section(data, 'logging'), 'logging'),
        managed_images=managed,
        custom_images=custom,
    )
