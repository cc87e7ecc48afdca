"""
lnsim - Orchestration core for simulated Bitcoin/Lightning/Taproot-Assets networks

Turns a declarative graph of nodes into running docker containers, keeps
their state cached and runs multi-node operations across them.
"""

__version__ = "0.1.0"
