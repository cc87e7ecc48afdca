"""
lnsim.store - State Store
"""

from .state import FetchResult, StateStore

__all__ = ['FetchResult', 'StateStore']
