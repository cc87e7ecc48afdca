"""
lnsim.config - Configuration management

Provides YAML-based configuration parsing for lnsim.
"""

from .settings import LnsimConfig, OperationsConfig, OrchestratorConfig, load_config

__all__ = ['LnsimConfig', 'OperationsConfig', 'OrchestratorConfig', 'load_config']
