"""
Execution backends.
"""

from perfbench.connectors.base import BackendError, ExecutionBackend, QueryStream

__all__ = ["BackendError", "ExecutionBackend", "QueryStream"]
