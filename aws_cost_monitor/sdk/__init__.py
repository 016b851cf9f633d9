"""
Remote cost sources for AWS Cost Monitor.

Provides the clients that fetch daily cost data from billing APIs.
"""

from .cost_explorer import CostExplorerSource, FetchCancelled, TransientFetchError

__all__ = ["CostExplorerSource", "FetchCancelled", "TransientFetchError"]
