"""
Orchestrator Package

Modules:
- models: Data classes (RunState, RunSlot, ResolvedTest)

The RunOrchestrator class lives in the parent module.
"""

from .models import ResolvedTest, RunSlot, RunState

__all__ = [
    "ResolvedTest",
    "RunSlot",
    "RunState",
]
