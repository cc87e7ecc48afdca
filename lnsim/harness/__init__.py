"""
lnsim.harness - Network lifecycle orchestration

Starting/stopping networks and nodes, readiness polling, auto-mining and
the process-level launcher.
"""

from .orchestrator import LifecycleOrchestrator
from .readiness import BackoffPolicy, CancelToken, poll_until_online
from .launcher import Launcher

__all__ = [
    'BackoffPolicy',
    'CancelToken',
    'Launcher',
    'LifecycleOrchestrator',
    'poll_until_online',
]
