"""
lnsim.operations - Composite cross-node operations
"""

from .engine import CompositeEngine, MintAssetPayload, MintAssetResult, OperationResult

__all__ = ['CompositeEngine', 'MintAssetPayload', 'MintAssetResult', 'OperationResult']
