"""
Runtime module for resilient-llm.

Provides the per-provider worker pools and the ``LlmRuntime`` composition root.
"""

from resilient_llm.runtime.core import LlmRuntime
from resilient_llm.runtime.pool import PoolStats, ProviderWorkerPool, WorkerPoolRegistry

__all__ = [
    "LlmRuntime",
    "PoolStats",
    "ProviderWorkerPool",
    "WorkerPoolRegistry",
]
