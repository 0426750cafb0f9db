"""
Knowledge graph activation.

Components:
- activation: ActivationGraph (spread, decay, auto_connect, search/peek, graph_search)
- worker: SpreadingWorker draining queued spreading jobs in small batches
"""

from .activation import ActivationGraph, GraphHit
from .worker import SpreadingWorker, SpreadJob

__all__ = [
    "ActivationGraph",
    "GraphHit",
    "SpreadingWorker",
    "SpreadJob",
]
